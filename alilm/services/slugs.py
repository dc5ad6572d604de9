# alilm/services/slugs.py
"""
Slug allocation.

A slug is handed out by *reserving* it: `reserve(candidate)` must perform the
insert itself and return False when the unique (kind, slug) constraint says the
candidate is taken. There is no "look up the last one and add 1" step, so two
concurrent allocations for the same seed can never settle on the same slug.
"""
from __future__ import annotations

import logging
import re
import secrets
import time
from typing import Awaitable, Callable, Iterator, Optional

from alilm.errors import AllocationExhausted
from alilm.schemas import NodeKind
from alilm.settings.config import settings

logger = logging.getLogger(__name__)

KIND_PREFIX = {
    NodeKind.topic: "top",
    NodeKind.debate: "deb",
    NodeKind.reference: "ref",
}

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"

Reserve = Callable[[str], Awaitable[bool]]


def normalize(seed: Optional[str], max_length: Optional[int] = None) -> str:
    """'Fiqh of  Salah!' -> 'fiqh-of-salah'. Empty when nothing usable is left."""
    max_length = max_length or settings.SLUG_MAX_LENGTH
    s = (seed or "").strip().lower()
    s = re.sub(r"[^\w\s-]", "", s)
    s = re.sub(r"[\s_-]+", "-", s)
    s = s.strip("-")
    return s[:max_length].rstrip("-")


def base36(n: int) -> str:
    if n <= 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_ALPHABET[r])
    return "".join(reversed(out))


def time_component() -> str:
    return base36(int(time.time() * 1000))


def random_component(length: int = 4) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def _fit(base: str, suffix: str, max_length: int) -> str:
    # keep the whole suffix, shorten the base
    room = max_length - len(suffix)
    if room <= 0:
        return suffix.lstrip("-")[:max_length]
    return base[:room].rstrip("-") + suffix


class SlugAllocator:
    def __init__(
        self,
        max_length: Optional[int] = None,
        max_attempts: Optional[int] = None,
        fallback_attempts: Optional[int] = None,
    ):
        self.max_length = max_length or settings.SLUG_MAX_LENGTH
        self.max_attempts = max_attempts if max_attempts is not None else settings.SLUG_MAX_ATTEMPTS
        self.fallback_attempts = (
            fallback_attempts if fallback_attempts is not None else settings.SLUG_FALLBACK_ATTEMPTS
        )

    def _unique(self, base: str) -> str:
        return _fit(base, f"-{time_component()}-{random_component()}", self.max_length)

    def candidates(self, seed: Optional[str], prefix: str = "top") -> Iterator[str]:
        """Numbered candidates for a seed, then time+random ones."""
        base = normalize(seed, self.max_length)
        if base:
            for n in range(self.max_attempts):
                yield base if n == 0 else _fit(base, f"-{n}", self.max_length)
        else:
            base = prefix
        for _ in range(self.fallback_attempts):
            yield self._unique(base)

    async def allocate(self, seed: Optional[str], reserve: Reserve, *, prefix: str = "top") -> str:
        tried = 0
        for candidate in self.candidates(seed, prefix):
            tried += 1
            if await reserve(candidate):
                if tried > 1:
                    logger.debug("slug %r reserved after %d attempts (seed=%r)", candidate, tried, seed)
                return candidate
            logger.debug("slug candidate %r already taken", candidate)

        logger.warning("slug allocation exhausted for seed=%r after %d attempts", seed, tried)
        raise AllocationExhausted(
            "no free slug for this seed, retry the request",
            details={"seed": seed, "attempts": tried},
        )
