# alilm/store.py
"""Row-level primitives the core is layered on: lookups, insert-if-absent, compare-and-swap."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from alilm.errors import ConstraintViolation, NotFound, ParentMoved
from alilm.models import Node, NodeLink
from alilm.schemas import LinkKind, NodeKind


async def load(db: AsyncSession, stmt) -> List[Node]:
    """Run a Node select, overwriting identity-map copies.

    Moves rewrite path/level with bulk UPDATEs the session never sees, so a
    plain select could hand back stale objects already held by `db`.
    """
    result = await db.execute(stmt.execution_options(populate_existing=True))
    return list(result.scalars().all())


async def get_by_id(
    db: AsyncSession,
    node_id: str,
    *,
    kind: Optional[NodeKind] = None,
    include_deleted: bool = False,
) -> Optional[Node]:
    stmt = select(Node).where(Node.id == node_id)
    if kind is not None:
        stmt = stmt.where(Node.kind == kind)
    if not include_deleted:
        stmt = stmt.where(Node.is_deleted.is_(False))
    rows = await load(db, stmt)
    return rows[0] if rows else None


async def get_by_slug(
    db: AsyncSession,
    slug: str,
    *,
    kind: Optional[NodeKind] = None,
    include_deleted: bool = False,
) -> List[Node]:
    stmt = select(Node).where(Node.slug == slug)
    if kind is not None:
        stmt = stmt.where(Node.kind == kind)
    if not include_deleted:
        stmt = stmt.where(Node.is_deleted.is_(False))
    return await load(db, stmt)


async def get_by_ref(
    db: AsyncSession,
    ref: str,
    *,
    kind: Optional[NodeKind] = None,
    what: str = "node",
    include_deleted: bool = False,
) -> Node:
    """Resolve an id or a slug to a live node (or any node with `include_deleted`).

    Slugs are unique per kind only, so a bare slug that matches nodes of more
    than one kind is rejected instead of guessed.
    """
    node = await get_by_id(db, ref, kind=kind, include_deleted=include_deleted)
    if node is not None:
        return node
    matches = await get_by_slug(db, ref, kind=kind, include_deleted=include_deleted)
    if not matches:
        raise NotFound(f"{what} {ref!r} not found", details={"ref": ref, "kind": kind.value if kind else None})
    if len(matches) > 1:
        raise ConstraintViolation(
            f"slug {ref!r} is ambiguous, pass a kind or an id",
            details={"ref": ref, "kinds": sorted(n.kind.value for n in matches)},
        )
    return matches[0]


def is_slug_conflict(exc: IntegrityError) -> bool:
    # postgres names the constraint, sqlite names the columns
    text = str(exc.orig)
    return "uq_node_kind_slug" in text or "node.kind, node.slug" in text


async def insert_if_absent(
    db: AsyncSession,
    node: Node,
    extras: Sequence[Any] = (),
    *,
    parent_path: Optional[str] = None,
) -> bool:
    """Insert `node` (plus dependent rows) in one transaction.

    Returns False when the (kind, slug) constraint says the row already
    exists; any other integrity error propagates. Each attempt runs in its own
    session on the caller's bind, so a losing attempt rolls back without
    expiring objects the caller already holds. Load the row through `db`
    afterwards.

    With `parent_path`, the parent row is re-read after the insert, share
    locked, and must still be live at that path. Otherwise the attempt rolls
    back with ParentMoved. The insert comes first so that on SQLite the write
    lock is already held while the parent is checked.
    """
    async with AsyncSession(db.bind, expire_on_commit=False, autoflush=False) as attempt:
        attempt.add(node)
        try:
            await attempt.flush()
        except IntegrityError as exc:
            await attempt.rollback()
            if is_slug_conflict(exc):
                return False
            raise

        if parent_path is not None:
            stmt = (
                select(Node.id)
                .where(Node.id == node.parent_id, Node.path == parent_path, Node.is_deleted.is_(False))
                .with_for_update(read=True)
            )
            if (await attempt.execute(stmt)).first() is None:
                await attempt.rollback()
                raise ParentMoved(
                    "parent moved while the node was being placed",
                    details={"parent_id": node.parent_id, "expected_path": parent_path},
                )

        if extras:
            attempt.add_all(list(extras))
            await attempt.flush()
        await attempt.commit()
    return True


async def compare_and_swap(db: AsyncSession, node_id: str, expected_version_count: int, values: Dict[str, Any]) -> bool:
    """UPDATE node ... WHERE version_count = expected. True if the row was ours to change."""
    stmt = (
        update(Node)
        .where(Node.id == node_id, Node.version_count == expected_version_count)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


def build_links(node_id: str, references: Iterable[str], debates: Iterable[str]) -> List[NodeLink]:
    links = [
        NodeLink(node_id=node_id, link_kind=LinkKind.reference, target_id=ref_id, position=i)
        for i, ref_id in enumerate(references)
    ]
    links += [
        NodeLink(node_id=node_id, link_kind=LinkKind.debate, target_id=debate_id, position=i)
        for i, debate_id in enumerate(debates)
    ]
    return links


async def replace_links(db: AsyncSession, node_id: str, references: Iterable[str], debates: Iterable[str]) -> None:
    await db.execute(
        delete(NodeLink).where(NodeLink.node_id == node_id).execution_options(synchronize_session=False)
    )
    links = build_links(node_id, references, debates)
    if links:
        db.add_all(links)
        await db.flush()


async def nodes_citing(db: AsyncSession, link_kind: LinkKind, target_id: str) -> List[Node]:
    stmt = (
        select(Node)
        .join(NodeLink, NodeLink.node_id == Node.id)
        .where(
            NodeLink.link_kind == link_kind,
            NodeLink.target_id == target_id,
            Node.is_deleted.is_(False),
        )
        .order_by(Node.title, Node.id)
    )
    return await load(db, stmt)


SORTABLE = {
    "title": Node.title,
    "slug": Node.slug,
    "created_at": Node.created_at,
    "updated_at": Node.updated_at,
}


async def search_nodes(
    db: AsyncSession,
    *,
    kind: Optional[NodeKind] = None,
    q: Optional[str] = None,
    status: Optional[Any] = None,
    sort: str = "-created_at",
    offset: int = 0,
    limit: int = 10,
) -> Tuple[List[Node], int]:
    """Live nodes matching `q` in title, summary or unit text, one page plus the total."""
    conditions = [Node.is_deleted.is_(False)]
    if kind is not None:
        conditions.append(Node.kind == kind)
    if status is not None:
        conditions.append(Node.status == status)
    if q:
        conditions.append(or_(
            Node.title.icontains(q, autoescape=True),
            Node.summary.icontains(q, autoescape=True),
            Node.search_text.icontains(q, autoescape=True),
        ))

    total = (await db.execute(select(func.count(Node.id)).where(*conditions))).scalar_one()

    column = SORTABLE[sort.lstrip("-")]
    order = column.desc() if sort.startswith("-") else column.asc()
    stmt = select(Node).where(*conditions).order_by(order, Node.id).offset(offset).limit(limit)
    return await load(db, stmt), int(total)
