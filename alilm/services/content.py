# alilm/services/content.py
"""Parsing, serialization and cross-reference extraction for content trees."""
from __future__ import annotations

from typing import Any, Iterable, List, Optional, Sequence, Tuple

from pydantic import TypeAdapter, ValidationError

from alilm.errors import ValidationFailure
from alilm.schemas import ContentBlock, ContentUnit, Span, SpanType

_BLOCKS = TypeAdapter(List[ContentBlock])


def parse_blocks(raw: Optional[Iterable[Any]]) -> List[ContentBlock]:
    """Validate a content tree (dicts or models) and return typed blocks.

    Raises ValidationFailure for unknown block/span types, unit text that does
    not match its spans, typed spans without a target id, or duplicate ids.
    """
    if raw is None:
        return []
    items = [b.model_dump(by_alias=True) if isinstance(b, ContentBlock) else b for b in raw]
    try:
        blocks = _BLOCKS.validate_python(items)
    except ValidationError as exc:
        errors = [
            {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in exc.errors()
        ]
        raise ValidationFailure("malformed content tree", details={"errors": errors}) from exc

    seen = set()
    for b in blocks:
        if b.id in seen:
            raise ValidationFailure(
                "malformed content tree",
                details={"errors": [{"loc": ["blocks"], "msg": f"duplicate block id {b.id!r}", "type": "duplicate_id"}]},
            )
        seen.add(b.id)
    return blocks


def dump_blocks(blocks: Sequence[ContentBlock]) -> List[dict]:
    """JSON-ready snapshot with camelCase keys; this is what gets stored."""
    return [b.model_dump(mode="json", by_alias=True, exclude_none=True) for b in blocks]


def same_content(a: Sequence[ContentBlock], b: Sequence[ContentBlock]) -> bool:
    return dump_blocks(a) == dump_blocks(b)


def iter_spans(blocks: Sequence[ContentBlock]):
    for block in blocks:
        for unit in block.units:
            for index, span in enumerate(unit.spans):
                yield block, unit, index, span


def extract_references(blocks: Sequence[ContentBlock]) -> List[str]:
    out: List[str] = []
    for _, _, _, span in iter_spans(blocks):
        if span.type is SpanType.reference and span.data and span.data.ref_id:
            if span.data.ref_id not in out:
                out.append(span.data.ref_id)
    return out


def extract_debates(blocks: Sequence[ContentBlock]) -> List[str]:
    out: List[str] = []
    for _, _, _, span in iter_spans(blocks):
        if span.type is SpanType.debate and span.data and span.data.debate_id:
            if span.data.debate_id not in out:
                out.append(span.data.debate_id)
    return out


def extract_links(blocks: Sequence[ContentBlock]) -> Tuple[List[str], List[str]]:
    """(reference ids, debate ids), deduplicated in first-seen order."""
    return extract_references(blocks), extract_debates(blocks)


def plain_text(blocks: Sequence[ContentBlock], sep: str = "\n") -> str:
    return sep.join(u.content for b in blocks for u in b.units)


def make_unit(unit_id: str, spans: Sequence[Span | dict]) -> ContentUnit:
    """Build a unit whose `content` is derived from its spans."""
    parsed = [s if isinstance(s, Span) else Span.model_validate(s) for s in spans]
    return ContentUnit(id=unit_id, content="".join(s.text for s in parsed), spans=parsed)
