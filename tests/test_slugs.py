"""Tests for slug normalization and allocation."""

import re

import pytest

from alilm.errors import AllocationExhausted, ConstraintViolation
from alilm.services.slugs import SlugAllocator, base36, normalize


class InMemoryIndex:
    """Insert-if-absent over a set, recording every candidate tried."""

    def __init__(self, taken=()):
        self.taken = set(taken)
        self.tried = []

    async def reserve(self, candidate):
        self.tried.append(candidate)
        if candidate in self.taken:
            return False
        self.taken.add(candidate)
        return True


class TestNormalize:
    def test_lowercases_and_joins_words(self):
        assert normalize("Fiqh of  Salah") == "fiqh-of-salah"

    def test_strips_punctuation_and_collapses_separators(self):
        assert normalize("  Hello, World!! -- _again_ ") == "hello-world-again"

    def test_keeps_unicode_word_characters(self):
        assert normalize("Ṣalāh Times") == "ṣalāh-times"

    def test_truncates_without_trailing_separator(self):
        slug = normalize("abc def ghi", max_length=8)
        assert slug == "abc-def"
        assert len(slug) <= 8

    def test_empty_seed(self):
        assert normalize("") == ""
        assert normalize(None) == ""
        assert normalize("!!!") == ""


class TestAllocate:
    async def test_first_candidate_is_the_normalized_seed(self):
        index = InMemoryIndex()
        slug = await SlugAllocator().allocate("Tawheed", index.reserve)
        assert slug == "tawheed"
        assert index.tried == ["tawheed"]

    async def test_collisions_append_increasing_suffix(self):
        index = InMemoryIndex({"tawheed", "tawheed-1"})
        slug = await SlugAllocator().allocate("Tawheed", index.reserve)
        assert slug == "tawheed-2"
        assert index.tried == ["tawheed", "tawheed-1", "tawheed-2"]

    async def test_numbered_candidates_exhausted_falls_back_to_time_suffix(self):
        taken = {"tawheed"} | {f"tawheed-{n}" for n in range(1, 3)}
        index = InMemoryIndex(taken)
        slug = await SlugAllocator(max_attempts=3, fallback_attempts=2).allocate("Tawheed", index.reserve)
        assert re.fullmatch(r"tawheed-[0-9a-z]+-[0-9a-z]{4}", slug)
        assert len(index.tried) == 4

    async def test_no_seed_uses_kind_prefix_and_time(self):
        index = InMemoryIndex()
        slug = await SlugAllocator().allocate(None, index.reserve, prefix="deb")
        assert re.fullmatch(r"deb-[0-9a-z]+-[0-9a-z]{4}", slug)

    async def test_suffix_always_fits_max_length(self):
        seed = "x" * 100
        index = InMemoryIndex({"x" * 16})
        allocator = SlugAllocator(max_length=16)
        slug = await allocator.allocate(seed, index.reserve)
        assert slug == "x" * 14 + "-1"

        index = InMemoryIndex()
        allocator = SlugAllocator(max_length=16, max_attempts=0)
        slug = await allocator.allocate(seed, index.reserve)
        assert len(slug) <= 16

    async def test_exhaustion_raises_retryable_constraint_violation(self):
        async def always_taken(candidate):
            return False

        with pytest.raises(AllocationExhausted) as exc:
            await SlugAllocator(max_attempts=2, fallback_attempts=1).allocate("Tawheed", always_taken)
        assert isinstance(exc.value, ConstraintViolation)
        assert exc.value.retryable
        assert exc.value.details["attempts"] == 3


def test_base36():
    assert base36(0) == "0"
    assert base36(35) == "z"
    assert base36(36) == "10"
