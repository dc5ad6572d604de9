# alilm/services/diff.py
"""
Change extraction between two content snapshots.

Two alignment policies are available:

positional (default)
    Blocks are matched by ``id``. Inside a matched block, units are aligned by
    index and spans inside aligned units are aligned by index; an ``edit``
    record is emitted whenever the span texts at the same position differ.
    Known limitation: inserting or removing a unit or span mid-sequence shifts
    every later position, so everything after the insertion point is reported
    as changed and attributed to the wrong neighbour. Spans or units that only
    exist on one side are not reported at all.

keyed
    Units are aligned by their stable ``id`` first; positional alignment is
    only used for units that are new on the right-hand side and sit where an
    unmatched old unit used to be. Blocks/units present in a single snapshot
    become pure ``add``/``remove`` records instead of textual edits.

The positional policy is the documented behaviour of stored change sets; the
keyed one changes what gets recorded and is opt-in through
``settings.DIFF_STRATEGY``.
"""
from __future__ import annotations

import difflib
import re
from typing import Dict, List, Optional, Sequence

from alilm.schemas import ContentBlock, ContentChange, ContentUnit

POSITIONAL = "positional"
KEYED = "keyed"

_TOKEN = re.compile(r"\w+|[^\w\s]")


def describe(old_text: str, new_text: str) -> str:
    """Human-readable word-level difference, e.g. ``"-foo +bar"``."""
    a = _TOKEN.findall(old_text or "")
    b = _TOKEN.findall(new_text or "")
    parts: List[str] = []
    for op, i1, i2, j1, j2 in difflib.SequenceMatcher(a=a, b=b, autojunk=False).get_opcodes():
        if op in ("delete", "replace"):
            parts.append("-" + " ".join(a[i1:i2]))
        if op in ("insert", "replace"):
            parts.append("+" + " ".join(b[j1:j2]))
    if not parts and old_text != new_text:
        parts.append("~whitespace")
    return " ".join(parts)


def _edit(block_id: str, unit_id: Optional[str], index: Optional[int], old: str, new: str, kind: str = "edit") -> ContentChange:
    return ContentChange(
        block_id=block_id,
        unit_id=unit_id,
        span_index=index,
        old_text=old,
        new_text=new,
        diff=describe(old, new),
        kind=kind,
    )


# ---------- positional ----------

def positional_diff(old: Sequence[ContentBlock], new: Sequence[ContentBlock]) -> List[ContentChange]:
    changes: List[ContentChange] = []
    old_blocks = {b.id: b for b in old}
    for new_block in new:
        old_block = old_blocks.get(new_block.id)
        if old_block is None:
            continue
        for unit_index, new_unit in enumerate(new_block.units):
            if unit_index >= len(old_block.units):
                break
            old_unit = old_block.units[unit_index]
            for span_index, new_span in enumerate(new_unit.spans):
                if span_index >= len(old_unit.spans):
                    break
                old_span = old_unit.spans[span_index]
                if old_span.text != new_span.text:
                    changes.append(_edit(new_block.id, new_unit.id, span_index, old_span.text, new_span.text))
    return changes


# ---------- keyed ----------

def _span_changes(block_id: str, unit_id: str, old_unit: ContentUnit, new_unit: ContentUnit) -> List[ContentChange]:
    out: List[ContentChange] = []
    for i in range(max(len(old_unit.spans), len(new_unit.spans))):
        old_span = old_unit.spans[i] if i < len(old_unit.spans) else None
        new_span = new_unit.spans[i] if i < len(new_unit.spans) else None
        if old_span is not None and new_span is not None:
            if old_span.text != new_span.text:
                out.append(_edit(block_id, unit_id, i, old_span.text, new_span.text))
        elif new_span is not None:
            out.append(_edit(block_id, unit_id, i, "", new_span.text, kind="add"))
        else:
            out.append(_edit(block_id, unit_id, i, old_span.text, "", kind="remove"))
    return out


def _whole_block(block: ContentBlock, kind: str) -> List[ContentChange]:
    if not block.units:
        return [ContentChange(block_id=block.id, kind=kind)]
    out = []
    for unit in block.units:
        old, new = ("", unit.content) if kind == "add" else (unit.content, "")
        out.append(_edit(block.id, unit.id, None, old, new, kind=kind))
    return out


def _keyed_units(old_block: ContentBlock, new_block: ContentBlock) -> List[ContentChange]:
    out: List[ContentChange] = []
    old_by_id: Dict[str, ContentUnit] = {u.id: u for u in old_block.units}
    new_ids = {u.id for u in new_block.units}
    matched = set()

    for index, new_unit in enumerate(new_block.units):
        old_unit = old_by_id.get(new_unit.id)
        if old_unit is None and index < len(old_block.units):
            # new id at a position whose old unit vanished: same slot, renamed unit
            candidate = old_block.units[index]
            if candidate.id not in new_ids and candidate.id not in matched:
                old_unit = candidate
        if old_unit is None:
            out.append(_edit(new_block.id, new_unit.id, None, "", new_unit.content, kind="add"))
            continue
        matched.add(old_unit.id)
        out.extend(_span_changes(new_block.id, new_unit.id, old_unit, new_unit))

    for old_unit in old_block.units:
        if old_unit.id not in matched and old_unit.id not in new_ids:
            out.append(_edit(old_block.id, old_unit.id, None, old_unit.content, "", kind="remove"))
    return out


def keyed_diff(old: Sequence[ContentBlock], new: Sequence[ContentBlock]) -> List[ContentChange]:
    changes: List[ContentChange] = []
    old_blocks = {b.id: b for b in old}
    new_ids = set()
    for new_block in new:
        new_ids.add(new_block.id)
        old_block = old_blocks.get(new_block.id)
        if old_block is None:
            changes.extend(_whole_block(new_block, "add"))
        else:
            changes.extend(_keyed_units(old_block, new_block))
    for old_block in old:
        if old_block.id not in new_ids:
            changes.extend(_whole_block(old_block, "remove"))
    return changes


_STRATEGIES = {POSITIONAL: positional_diff, KEYED: keyed_diff}


def diff_blocks(old: Sequence[ContentBlock], new: Sequence[ContentBlock], strategy: str = POSITIONAL) -> List[ContentChange]:
    try:
        fn = _STRATEGIES[strategy]
    except KeyError:
        raise ValueError(f"unknown diff strategy {strategy!r}") from None
    return fn(old, new)
