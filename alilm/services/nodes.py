# alilm/services/nodes.py
"""
Operations callers use: create, edit content, read, navigate, move, delete.

Every function takes the caller's AsyncSession and commits its own work; none
of them keeps state between calls.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession

from alilm import store
from alilm.errors import ConcurrentModification, ConstraintViolation, ParentMoved, ValidationFailure
from alilm.models import Node, NodeVersion, new_id
from alilm.schemas import ContentChange, LinkKind, NodeKind, NodeMetadataUpdate, NodeStatus
from alilm.services import hierarchy, versioning
from alilm.services.content import parse_blocks
from alilm.services.slugs import KIND_PREFIX, SlugAllocator
from alilm.settings.config import settings

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"title", "summary", "status"}
# fields owned by the allocator, the hierarchy or the version history
PROTECTED_FIELDS = {
    "id", "slug", "kind", "path", "level", "parent_id",
    "live_content", "versions", "references", "debates", "version_count",
    "created_by", "created_at", "is_deleted",
}


async def create_node(
    db: AsyncSession,
    *,
    kind: Union[NodeKind, str] = NodeKind.topic,
    parent_id: Optional[str] = None,
    title_seed: Optional[str] = None,
    title: Optional[str] = None,
    summary: Optional[str] = None,
    status: Union[NodeStatus, str] = NodeStatus.draft,
    initial_content: Optional[Sequence[Any]] = None,
    actor: Optional[str] = None,
) -> Node:
    """Allocate a slug, place the node under `parent_id` and persist it.

    When `initial_content` is given (even an empty list) version 1 is written in
    the same transaction; otherwise the node starts with no history.
    """
    kind = NodeKind(kind)
    status = NodeStatus(status)
    anchor = None
    if parent_id:
        anchor = hierarchy.Anchor.of(await hierarchy.resolve_parent(db, parent_id, kind))

    blocks = parse_blocks(initial_content) if initial_content is not None else None
    seed = title_seed if title_seed is not None else title
    node_id = new_id()

    async def reserve(slug: str) -> bool:
        nonlocal anchor
        attempts = settings.COMMIT_MAX_RETRIES + 1
        for attempt in range(1, attempts + 1):
            level, path = hierarchy.compute_path(anchor, slug)
            node = Node(
                id=node_id,
                kind=kind,
                slug=slug,
                title=title or seed or slug,
                summary=summary,
                status=status,
                parent_id=anchor.id if anchor else None,
                level=level,
                path=path,
                live_content=[],
                references=[],
                debates=[],
                search_text="",
                version_count=0,
                is_deleted=False,
                created_by=actor,
                updated_by=actor,
            )
            extras = versioning.initial_version(node, blocks, actor) if blocks is not None else []
            try:
                return await store.insert_if_absent(
                    db, node, extras, parent_path=anchor.path if anchor else None
                )
            except ParentMoved:
                if attempt == attempts:
                    logger.warning("parent %s kept moving, giving up placing %r", anchor.id, slug)
                    raise
                logger.info("parent %s moved during create, re-placing %r (%d/%d)", anchor.id, slug, attempt, attempts - 1)
                anchor = hierarchy.Anchor.of(await hierarchy.resolve_parent(db, anchor.id, kind))
        raise ParentMoved("parent kept moving", details={"parent_id": anchor.id if anchor else None})

    slug = await SlugAllocator().allocate(seed, reserve, prefix=KIND_PREFIX[kind])
    node = await store.get_by_id(db, node_id)
    logger.info("created %s %s at %s (by %s)", kind.value, slug, node.path, actor)
    return node


async def get_node(
    db: AsyncSession,
    slug_or_id: str,
    kind: Optional[Union[NodeKind, str]] = None,
    *,
    include_deleted: bool = False,
) -> Node:
    return await store.get_by_ref(
        db, slug_or_id, kind=NodeKind(kind) if kind else None, include_deleted=include_deleted
    )


async def commit_content(
    db: AsyncSession,
    node_id: str,
    new_blocks: Sequence[Any],
    actor: Optional[str],
) -> Node:
    """Append a version with `new_blocks` as the live content.

    A lost compare-and-swap reloads the node and recomputes the diff against the
    winner's content, up to COMMIT_MAX_RETRIES extra attempts.
    """
    blocks = parse_blocks(new_blocks)
    node = await store.get_by_ref(db, node_id)
    attempts = settings.COMMIT_MAX_RETRIES + 1
    for attempt in range(1, attempts + 1):
        try:
            await versioning.commit(db, node, blocks, actor)
            return node
        except ConcurrentModification:
            if attempt == attempts:
                logger.warning("node %s: giving up after %d conflicting commits", node_id, attempt)
                raise
            logger.info("node %s: concurrent commit detected, retrying (%d/%d)", node_id, attempt, attempts - 1)
            node = await store.get_by_ref(db, node_id)
    raise ConcurrentModification("commit retries exhausted", details={"node_id": node_id})


async def rollback(db: AsyncSession, node_id: str, version_id: int, actor: Optional[str]) -> Node:
    """Restore an earlier snapshot as a new version; history is never rewritten."""
    node = await store.get_by_ref(db, node_id)
    version = await versioning.get_version(db, node.id, version_id)
    logger.info("node %s: restoring version %d (by %s)", node.id, version_id, actor)
    return await commit_content(db, node.id, version.content_blocks, actor)


async def get_version(db: AsyncSession, node_id: str, version_id: int) -> NodeVersion:
    # history outlives soft deletion
    node = await store.get_by_ref(db, node_id, include_deleted=True)
    return await versioning.get_version(db, node.id, version_id)


async def list_versions(db: AsyncSession, node_id: str) -> List[NodeVersion]:
    node = await store.get_by_ref(db, node_id, include_deleted=True)
    return await versioning.list_versions(db, node.id)


async def compare_versions(db: AsyncSession, node_id: str, a: int, b: int) -> List[ContentChange]:
    node = await store.get_by_ref(db, node_id, include_deleted=True)
    return await versioning.compare(db, node.id, a, b)


async def update_metadata(
    db: AsyncSession,
    node_id: str,
    fields: Union[NodeMetadataUpdate, Dict[str, Any]],
    actor: Optional[str],
) -> Node:
    """Edit title/summary/status. Does not create a version."""
    if isinstance(fields, NodeMetadataUpdate):
        values = {**fields.model_dump(exclude_unset=True), **(fields.model_extra or {})}
    else:
        values = dict(fields)

    if "parent_id" in values:
        raise ConstraintViolation("parent_id cannot be edited, use move", details={"field": "parent_id"})
    protected = sorted(set(values) & PROTECTED_FIELDS)
    if protected:
        raise ConstraintViolation(f"{protected[0]} cannot be modified", details={"fields": protected})
    unknown = sorted(set(values) - EDITABLE_FIELDS)
    if unknown:
        raise ValidationFailure(f"unknown field {unknown[0]!r}", details={"fields": unknown})

    if "title" in values and not (values["title"] or "").strip():
        raise ValidationFailure("title cannot be empty", details={"fields": ["title"]})
    if values.get("status") is not None:
        values["status"] = NodeStatus(values["status"])
    elif "status" in values:
        raise ValidationFailure("status cannot be null", details={"fields": ["status"]})

    node = await store.get_by_ref(db, node_id)
    for key, value in values.items():
        setattr(node, key, value)
    node.updated_by = actor
    await db.commit()
    await db.refresh(node)
    return node


async def delete_node(db: AsyncSession, node_id: str, actor: Optional[str]) -> Node:
    """Soft delete: history stays, hierarchy and lookups stop returning the node."""
    node = await store.get_by_ref(db, node_id)
    node.is_deleted = True
    node.updated_by = actor
    await db.commit()
    await db.refresh(node)
    logger.info("deleted %s %s (by %s)", node.kind.value, node.slug, actor)
    return node


async def move_node(db: AsyncSession, node_id: str, new_parent_ref: Optional[str], actor: Optional[str]) -> Node:
    node = await store.get_by_ref(db, node_id)
    new_parent = None
    if new_parent_ref:
        new_parent = await hierarchy.resolve_parent(db, new_parent_ref, node.kind)
    await hierarchy.move(db, node, new_parent, actor=actor)
    return await store.get_by_ref(db, node.id)


async def children(db: AsyncSession, node_id: str) -> List[Node]:
    node = await store.get_by_ref(db, node_id)
    return await hierarchy.children(db, node.id)


async def subtree(db: AsyncSession, path: str, kind: Optional[Union[NodeKind, str]] = None) -> List[Node]:
    return await hierarchy.subtree(db, path, NodeKind(kind) if kind else None)


async def breadcrumb(db: AsyncSession, node_id: str) -> List[Tuple[str, str]]:
    node = await store.get_by_ref(db, node_id)
    return await hierarchy.breadcrumb(db, node)


async def knowledge_tree(db: AsyncSession, kind: Union[NodeKind, str] = NodeKind.topic) -> List[dict]:
    return await hierarchy.knowledge_tree(db, NodeKind(kind))


async def nodes_citing(db: AsyncSession, link_kind: Union[LinkKind, str], target_id: str) -> List[Node]:
    """Live nodes whose content embeds a reference/debate span pointing at `target_id`."""
    return await store.nodes_citing(db, LinkKind(link_kind), target_id)


async def search_nodes(
    db: AsyncSession,
    kind: Optional[Union[NodeKind, str]] = None,
    q: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    *,
    status: Optional[Union[NodeStatus, str]] = None,
    sort: str = "-created_at",
) -> Tuple[List[Node], int]:
    """One page of live nodes whose title, summary or content text contains `q`.

    `sort` is a field name, "-" prefixed for descending. Returns the page and
    the total number of matches.
    """
    if page < 1 or not 1 <= limit <= settings.SEARCH_MAX_LIMIT:
        raise ValidationFailure(
            f"page must be >= 1 and limit between 1 and {settings.SEARCH_MAX_LIMIT}",
            details={"page": page, "limit": limit},
        )
    if sort.lstrip("-") not in store.SORTABLE:
        raise ValidationFailure(f"cannot sort by {sort!r}", details={"sort": sort, "allowed": sorted(store.SORTABLE)})
    return await store.search_nodes(
        db,
        kind=NodeKind(kind) if kind else None,
        q=(q or "").strip() or None,
        status=NodeStatus(status) if status else None,
        sort=sort,
        offset=(page - 1) * limit,
        limit=limit,
    )
