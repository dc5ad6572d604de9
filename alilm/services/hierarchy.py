# alilm/services/hierarchy.py
"""
Materialized-path hierarchy.

Every node stores ``level`` (root = 0) and ``path`` (``/root-slug/.../own-slug``),
so ancestors, descendants and breadcrumbs are single indexed queries instead of
recursive walks.
"""
from __future__ import annotations

import logging
from typing import Dict, List, NamedTuple, Optional, Tuple

from sqlalchemy import String, func, literal, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from alilm import store
from alilm.errors import ConstraintViolation
from alilm.models import Node
from alilm.schemas import NodeKind
from alilm.settings.config import settings

logger = logging.getLogger(__name__)

SEPARATOR = "/"


class Anchor(NamedTuple):
    """Plain copy of the parent fields a child's placement depends on."""
    id: str
    level: int
    path: str

    @classmethod
    def of(cls, node: Optional[Node]) -> Optional["Anchor"]:
        if node is None:
            return None
        return cls(node.id, node.level, node.path)


async def resolve_parent(db: AsyncSession, parent_ref: str, kind: NodeKind) -> Node:
    """Parent by id or slug, same kind as the child. NotFound if missing or deleted."""
    return await store.get_by_ref(db, parent_ref, kind=kind, what="parent")


def compute_path(parent: Optional[Anchor], own: str) -> Tuple[int, str]:
    if parent is None:
        return 0, SEPARATOR + own
    return parent.level + 1, parent.path + SEPARATOR + own


def path_segments(path: str) -> List[str]:
    return [seg for seg in (path or "").split(SEPARATOR) if seg]


def _in_subtree(path: str):
    # `startswith(..., autoescape=True)` escapes % and _ so "/fiqh_x" stays literal
    return or_(Node.path == path, Node.path.startswith(path + SEPARATOR, autoescape=True))


async def children(db: AsyncSession, node_id: str) -> List[Node]:
    stmt = (
        select(Node)
        .where(Node.parent_id == node_id, Node.is_deleted.is_(False))
        .order_by(Node.title, Node.slug)
    )
    return await store.load(db, stmt)


async def subtree(db: AsyncSession, path: str, kind: Optional[NodeKind] = None) -> List[Node]:
    """The node at `path` and all its descendants, shallowest first."""
    stmt = select(Node).where(_in_subtree(path), Node.is_deleted.is_(False))
    if kind is not None:
        stmt = stmt.where(Node.kind == kind)
    return await store.load(db, stmt.order_by(Node.level, Node.path))


async def breadcrumb(db: AsyncSession, node: Node) -> List[Tuple[str, str]]:
    """[(slug, title), ...] from the root down to `node`, one lookup for all ancestors."""
    segments = path_segments(node.path)
    if not segments:
        return []
    rows = await db.execute(
        select(Node.slug, Node.title).where(
            Node.kind == node.kind,
            Node.slug.in_(segments),
            Node.is_deleted.is_(False),
        )
    )
    titles: Dict[str, str] = {slug: title for slug, title in rows.all()}
    return [(seg, titles.get(seg, seg)) for seg in segments]


async def lock_subtree(db: AsyncSession, node: Node) -> List[str]:
    """Ids of the subtree rooted at `node`, deleted rows included (they move too).

    The rows are locked FOR UPDATE on Postgres, so a concurrent create that
    holds a share lock on one of them finishes first and is seen by the path
    rewrite, and one that comes later finds its parent's path changed.
    """
    stmt = select(Node.id).where(Node.kind == node.kind, _in_subtree(node.path)).with_for_update()
    return list((await db.execute(stmt)).scalars().all())


async def move(
    db: AsyncSession,
    node: Node,
    new_parent: Optional[Node],
    *,
    actor: Optional[str] = None,
) -> bool:
    """Re-parent `node` and rewrite the path/level of its whole subtree.

    One bulk UPDATE keyed on the old path prefix, committed together with the
    new parent_id. Returns False when the node already sits under `new_parent`.
    """
    # re-read under lock: the path the rewrite is keyed on must be current
    await store.load(db, select(Node).where(Node.id == node.id).with_for_update())
    new_parent_id = new_parent.id if new_parent is not None else None
    if new_parent_id == node.parent_id:
        return False

    old_path = node.path
    if new_parent is not None:
        if new_parent.kind != node.kind:
            raise ConstraintViolation(
                "parent must be of the same kind",
                details={"node_id": node.id, "parent_id": new_parent.id},
            )
        if new_parent.id == node.id or new_parent.path.startswith(old_path + SEPARATOR):
            raise ConstraintViolation(
                "cannot move a node under itself or one of its descendants",
                details={"node_id": node.id, "parent_id": new_parent.id},
            )

    size = len(await lock_subtree(db, node))
    if size > 1 and not settings.ALLOW_REPARENT:
        raise ConstraintViolation(
            "re-parenting nodes that have descendants is disabled",
            details={"node_id": node.id, "subtree_size": size},
        )
    if size > settings.REPARENT_MAX_SUBTREE:
        raise ConstraintViolation(
            "subtree too large to re-parent",
            details={"node_id": node.id, "subtree_size": size, "limit": settings.REPARENT_MAX_SUBTREE},
        )

    new_level, new_path = compute_path(Anchor.of(new_parent), node.slug)
    delta = new_level - node.level

    await db.execute(
        update(Node)
        .where(Node.kind == node.kind, _in_subtree(old_path))
        .values(
            path=literal(new_path, String) + func.substr(Node.path, len(old_path) + 1, type_=String),
            level=Node.level + delta,
        )
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Node)
        .where(Node.id == node.id)
        .values(parent_id=new_parent_id, updated_by=actor)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("moved %s %s -> %s (%d rows rewritten)", node.kind.value, old_path, new_path, size)
    return True


async def knowledge_tree(db: AsyncSession, kind: NodeKind) -> List[dict]:
    """Whole live forest of one kind, built from a single query."""
    rows = await store.load(
        db,
        select(Node)
        .where(Node.kind == kind, Node.is_deleted.is_(False))
        .order_by(Node.level, Node.title, Node.slug),
    )

    entries: Dict[str, dict] = {}
    roots: List[dict] = []
    for n in rows:
        entry = {
            "slug": n.slug,
            "title": n.title,
            "count": len(n.references or []),
            "has_children": False,
            "children": [],
        }
        entries[n.id] = entry
        if n.parent_id is None:
            roots.append(entry)
            continue
        parent = entries.get(n.parent_id)
        if parent is None:
            # parent is soft-deleted: the branch is hidden with it
            continue
        parent["children"].append(entry)
        parent["has_children"] = True
    return roots

