from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Text, DateTime, func,
    UniqueConstraint, Index, JSON, event, select, inspect as sa_inspect
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import validates
from sqlalchemy.orm.base import NO_VALUE
from sqlalchemy import Enum as SAEnum
from datetime import datetime, timezone
import uuid

from .database import Base
from .errors import ConstraintViolation
from .schemas import LinkKind, NodeKind, NodeStatus

# JSONB on Postgres, plain JSON on everything else (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------
# NODES
# ---------------------------
FIXED_FIELDS = ("id", "kind", "slug", "parent_id", "level", "path")


class Node(Base):
    __tablename__ = "node"

    id = Column(String(36), primary_key=True, default=new_id)
    kind = Column(SAEnum(NodeKind, native_enum=False), nullable=False, default=NodeKind.topic)
    slug = Column(String(128), nullable=False)  # unique per kind, see __table_args__
    title = Column(String(500), nullable=False)
    summary = Column(Text, nullable=True)
    status = Column(SAEnum(NodeStatus, native_enum=False), nullable=False, default=NodeStatus.draft)

    # ---- hierarchy (materialized path) ----
    parent_id = Column(String(36), ForeignKey("node.id", ondelete="RESTRICT"), nullable=True, index=True)
    level = Column(Integer, nullable=False, default=0)
    path = Column(Text, nullable=False)  # "/fiqh/salah"

    # ---- content: mirror of the latest NodeVersion.content_blocks ----
    live_content = Column(JSONType, nullable=False, default=list)
    references = Column(JSONType, nullable=False, default=list)  # ref ids found in live_content
    debates = Column(JSONType, nullable=False, default=list)     # debate ids found in live_content
    search_text = Column(Text, nullable=False, default="")       # unit text of live_content, for search
    version_count = Column(Integer, nullable=False, default=0)   # compare-and-swap counter

    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    created_by = Column(String(64), nullable=True)
    updated_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("kind", "slug", name="uq_node_kind_slug"),
        Index("ix_node_kind_path", "kind", "path", postgresql_ops={"path": "text_pattern_ops"}),
        Index("ix_node_kind_level", "kind", "level"),
    )

    # Identity and placement are fixed at creation. Re-parenting rewrites
    # path/level with a bulk UPDATE (services.hierarchy.move), never through
    # attribute assignment on a loaded row.
    @validates(*FIXED_FIELDS)
    def _guard_immutable(self, key, value):
        state = sa_inspect(self)
        if state.has_identity:
            current = state.attrs[key].loaded_value
            # expired (after a rollback): checked against the row at flush
            if current is not NO_VALUE and current != value:
                raise ConstraintViolation(
                    f"{key} cannot be modified after creation",
                    details={"field": key, "node_id": state.identity[0]},
                )
        return value

    def __repr__(self):
        return f"<Node {self.kind.value if self.kind else '?'}:{self.path}>"


@event.listens_for(Node, "before_update")
def _fixed_fields_match_row(mapper, connection, target):
    # assignments made while the attribute was expired skip the validator
    state = sa_inspect(target)
    changed = [key for key in FIXED_FIELDS if state.attrs[key].history.added]
    if not changed:
        return
    table = Node.__table__
    row = connection.execute(
        select(*[table.c[key] for key in changed]).where(table.c.id == state.identity[0])
    ).one()
    for key, stored in zip(changed, row):
        if getattr(target, key) != stored:
            raise ConstraintViolation(
                f"{key} cannot be modified after creation",
                details={"field": key, "node_id": state.identity[0]},
            )


# ---------------------------
# VERSIONING (append-only)
# ---------------------------
class NodeVersion(Base):
    __tablename__ = "node_version"

    id = Column(Integer, primary_key=True)
    node_id = Column(String(36), ForeignKey("node.id", ondelete="CASCADE"), index=True, nullable=False)
    version_id = Column(Integer, nullable=False)  # 1, 2, 3 ... per node
    changed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    changed_by = Column(String(64), nullable=True)
    changes = Column(JSONType, nullable=False, default=list)         # list[ContentChange]
    content_blocks = Column(JSONType, nullable=False, default=list)  # full snapshot, not a delta

    __table_args__ = (
        UniqueConstraint("node_id", "version_id", name="uq_node_version"),
    )

    def __repr__(self):
        return f"<NodeVersion {self.node_id} v{self.version_id}>"


@event.listens_for(NodeVersion, "before_delete")
@event.listens_for(NodeVersion, "before_update")
def _versions_are_immutable(mapper, connection, target):
    raise ConstraintViolation(
        "versions are append-only",
        details={"node_id": target.node_id, "version_id": target.version_id},
    )


# ---------------------------
# CROSS-REFERENCE INDEX
# ---------------------------
class NodeLink(Base):
    """One row per reference/debate id cited in a node's live content."""
    __tablename__ = "node_link"

    id = Column(Integer, primary_key=True)
    node_id = Column(String(36), ForeignKey("node.id", ondelete="CASCADE"), index=True, nullable=False)
    link_kind = Column(SAEnum(LinkKind, native_enum=False), nullable=False)
    target_id = Column(String(128), nullable=False)
    position = Column(Integer, nullable=False, default=0)  # first-seen order in content

    __table_args__ = (
        UniqueConstraint("node_id", "link_kind", "target_id", name="uq_node_link_once"),
        Index("ix_node_link_target", "link_kind", "target_id"),
    )
