from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


# =========================
# CONTENT MODEL (Block -> Unit -> Span)
# =========================
class BlockType(str, enum.Enum):
    heading = "heading"
    paragraph = "paragraph"
    list = "list"
    quote = "quote"
    code = "code"

class SpanType(str, enum.Enum):
    text = "text"
    reference = "reference"
    debate = "debate"

class Stance(str, enum.Enum):
    supporting = "supporting"
    opposing = "opposing"
    neutral = "neutral"


class NodeKind(str, enum.Enum):
    topic = "topic"
    debate = "debate"
    reference = "reference"

class NodeStatus(str, enum.Enum):
    draft = "draft"
    published = "published"
    archived = "archived"

class LinkKind(str, enum.Enum):
    reference = "reference"
    debate = "debate"


class _Wire(BaseModel):
    # stored and served with camelCase keys (refId, blockId ...), accepted either way
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SpanData(_Wire):
    ref_id: Optional[str] = None
    debate_id: Optional[str] = None
    stance: Optional[Stance] = None


class Span(_Wire):
    """Smallest run of text. Reference/debate spans point at another record."""
    text: str
    type: SpanType = SpanType.text
    marks: Optional[List[str]] = None  # ["bold", "italic", "highlight", ...]
    data: Optional[SpanData] = None

    @model_validator(mode="after")
    def _typed_spans_carry_target(self) -> "Span":
        if self.type is SpanType.reference and not (self.data and self.data.ref_id):
            raise ValueError("reference span requires data.refId")
        if self.type is SpanType.debate and not (self.data and self.data.debate_id):
            raise ValueError("debate span requires data.debateId")
        return self


class ContentUnit(_Wire):
    """A sentence or list item. `content` is the flattened text used for search."""
    id: str = Field(min_length=1)
    content: str = ""
    spans: List[Span] = Field(default_factory=list)

    @model_validator(mode="after")
    def _content_matches_spans(self) -> "ContentUnit":
        joined = "".join(s.text for s in self.spans)
        if self.content != joined:
            raise ValueError(f"unit {self.id!r}: content does not match the concatenated span text")
        return self


class BlockMetadata(_Wire):
    level: Optional[int] = Field(default=None, ge=1, le=6)  # headings
    ordered: Optional[bool] = None                          # lists
    language: Optional[str] = None                          # code


class ContentBlock(_Wire):
    id: str = Field(min_length=1)
    type: BlockType
    units: List[ContentUnit] = Field(default_factory=list)
    metadata: Optional[BlockMetadata] = None

    @model_validator(mode="after")
    def _unit_ids_unique(self) -> "ContentBlock":
        seen = set()
        for u in self.units:
            if u.id in seen:
                raise ValueError(f"block {self.id!r}: duplicate unit id {u.id!r}")
            seen.add(u.id)
        return self


class ContentChange(_Wire):
    """One entry of a version's change set."""
    block_id: str
    unit_id: Optional[str] = None
    span_index: Optional[int] = None
    old_text: str = ""
    new_text: str = ""
    diff: str = ""
    kind: Literal["edit", "add", "remove"] = "edit"


# =========================
# NODE SCHEMAS
# =========================
class NodeCreate(BaseModel):
    kind: NodeKind = NodeKind.topic
    title: Optional[str] = Field(default=None, max_length=500)
    title_seed: Optional[str] = None  # slug seed when it should differ from the title
    parent_id: Optional[str] = None
    summary: Optional[str] = Field(default=None, max_length=2000)
    status: NodeStatus = NodeStatus.draft
    content_blocks: Optional[List[Dict[str, Any]]] = None

class NodeRead(BaseModel):
    id: str
    kind: NodeKind
    slug: str
    title: str
    summary: Optional[str] = None
    status: NodeStatus
    parent_id: Optional[str] = None
    level: int
    path: str
    live_content: List[ContentBlock] = []
    references: List[str] = []
    debates: List[str] = []
    version_count: int
    is_deleted: bool = False
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class NodeSummary(BaseModel):
    id: str
    kind: NodeKind
    slug: str
    title: str
    parent_id: Optional[str] = None
    level: int
    path: str

    class Config:
        from_attributes = True

class NodeMetadataUpdate(BaseModel):
    # unknown keys are kept so that attempts to touch slug/path are rejected, not dropped
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = Field(default=None, max_length=500)
    summary: Optional[str] = Field(default=None, max_length=2000)
    status: Optional[NodeStatus] = None

class NodePage(BaseModel):
    items: List[NodeSummary]
    total: int
    page: int
    limit: int

class MoveRequest(BaseModel):
    parent_id: Optional[str] = None  # None moves the node to the root


# =========================
# CONTENT / VERSION SCHEMAS
# =========================
class ContentCommit(BaseModel):
    content_blocks: List[Dict[str, Any]]

class VersionRead(BaseModel):
    version_id: int
    changed_at: datetime
    changed_by: Optional[str] = None
    changes: List[ContentChange] = []
    content_blocks: List[ContentBlock] = []

    class Config:
        from_attributes = True

class VersionSummary(BaseModel):
    version_id: int
    changed_at: datetime
    changed_by: Optional[str] = None
    change_count: int


# =========================
# HIERARCHY SCHEMAS
# =========================
class BreadcrumbItem(BaseModel):
    slug: str
    title: str

class TreeNode(BaseModel):
    slug: str
    title: str
    count: int = 0  # number of references cited
    has_children: bool = False
    children: List["TreeNode"] = []


TreeNode.model_rebuild()
