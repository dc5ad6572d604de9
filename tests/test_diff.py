"""Tests for change extraction between content snapshots."""

import pytest

from alilm.services.content import parse_blocks
from alilm.services.diff import KEYED, POSITIONAL, describe, diff_blocks

from conftest import block, unit


def blocks(*raw):
    return parse_blocks(list(raw))


class TestDescribe:
    def test_single_word_replacement(self):
        assert describe("foo", "bar") == "-foo +bar"

    def test_insertion_and_deletion(self):
        assert describe("the quick fox", "the fox jumps") == "-quick +jumps"

    def test_whitespace_only(self):
        assert describe("a  b", "a b") == "~whitespace"

    def test_identical(self):
        assert describe("same", "same") == ""


class TestPositional:
    def test_span_edit_reports_index_and_texts(self):
        old = blocks(block("b1", unit("u1", "a ", "b ", "foo")))
        new = blocks(block("b1", unit("u1", "a ", "b ", "bar")))
        [change] = diff_blocks(old, new, POSITIONAL)
        assert (change.block_id, change.unit_id, change.span_index) == ("b1", "u1", 2)
        assert (change.old_text, change.new_text, change.diff, change.kind) == ("foo", "bar", "-foo +bar", "edit")

    def test_identical_snapshots_have_no_changes(self):
        snapshot = blocks(block("b1", unit("u1", "x", "y")))
        assert diff_blocks(snapshot, snapshot, POSITIONAL) == []

    def test_new_and_removed_blocks_are_not_reported(self):
        old = blocks(block("b1", unit("u1", "x")), block("gone", unit("u9", "bye")))
        new = blocks(block("b1", unit("u1", "x")), block("b2", unit("u2", "hello")))
        assert diff_blocks(old, new, POSITIONAL) == []

    def test_mid_sequence_insert_shifts_later_units(self):
        old = blocks(block("b1", unit("u1", "one"), unit("u2", "two")))
        new = blocks(block("b1", unit("u1", "one"), unit("u9", "inserted"), unit("u2", "two")))
        changes = diff_blocks(old, new, POSITIONAL)
        # "two" is reported as overwritten by the inserted unit, the known weakness of index alignment
        assert [(c.unit_id, c.old_text, c.new_text) for c in changes] == [("u9", "two", "inserted")]

    def test_serialized_with_camel_case_keys(self):
        old = blocks(block("b1", unit("u1", "foo")))
        new = blocks(block("b1", unit("u1", "bar")))
        [change] = diff_blocks(old, new)
        dumped = change.model_dump(by_alias=True)
        assert {"blockId", "unitId", "spanIndex", "oldText", "newText"} <= set(dumped)


class TestKeyed:
    def test_mid_sequence_insert_is_an_add(self):
        old = blocks(block("b1", unit("u1", "one"), unit("u2", "two")))
        new = blocks(block("b1", unit("u1", "one"), unit("u9", "inserted"), unit("u2", "two")))
        changes = diff_blocks(old, new, KEYED)
        assert [(c.kind, c.unit_id, c.new_text) for c in changes] == [("add", "u9", "inserted")]

    def test_removed_unit(self):
        old = blocks(block("b1", unit("u1", "one"), unit("u2", "two")))
        new = blocks(block("b1", unit("u2", "two")))
        changes = diff_blocks(old, new, KEYED)
        assert [(c.kind, c.unit_id, c.old_text) for c in changes] == [("remove", "u1", "one")]

    def test_renamed_unit_in_same_slot_is_an_edit(self):
        old = blocks(block("b1", unit("u1", "foo")))
        new = blocks(block("b1", unit("u1b", "bar")))
        [change] = diff_blocks(old, new, KEYED)
        assert (change.kind, change.unit_id, change.old_text, change.new_text) == ("edit", "u1b", "foo", "bar")

    def test_whole_blocks_added_and_removed(self):
        old = blocks(block("gone", unit("u1", "bye")))
        new = blocks(block("b2", unit("u2", "hello")))
        changes = diff_blocks(old, new, KEYED)
        assert [(c.kind, c.block_id) for c in changes] == [("add", "b2"), ("remove", "gone")]

    def test_trailing_spans(self):
        old = blocks(block("b1", unit("u1", "a", "b")))
        new = blocks(block("b1", unit("u1", "a", "b", "c")))
        [change] = diff_blocks(old, new, KEYED)
        assert (change.kind, change.span_index, change.new_text) == ("add", 2, "c")

    def test_agrees_with_positional_on_in_place_edits(self):
        old = blocks(block("b1", unit("u1", "a ", "b ", "foo")))
        new = blocks(block("b1", unit("u1", "a ", "b ", "bar")))
        assert diff_blocks(old, new, KEYED) == diff_blocks(old, new, POSITIONAL)


def test_unknown_strategy():
    with pytest.raises(ValueError):
        diff_blocks([], [], "fuzzy")
