# alilm/services/versioning.py
"""
Append-only content history.

`commit` is the only writer of ``Node.live_content`` / ``references`` /
``debates``: it diffs against the current live content, appends a version with
the full snapshot, and swaps the node row only if ``version_count`` is still
what it read.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from alilm import store
from alilm.errors import ConcurrentModification, NotFound
from alilm.models import Node, NodeVersion, utcnow
from alilm.schemas import ContentBlock, ContentChange
from alilm.services.content import dump_blocks, extract_links, parse_blocks, plain_text
from alilm.services.diff import diff_blocks
from alilm.settings.config import settings

logger = logging.getLogger(__name__)


def _dump_changes(changes: Sequence[ContentChange]) -> List[dict]:
    return [c.model_dump(mode="json", by_alias=True) for c in changes]


def initial_version(node: Node, blocks: Sequence[ContentBlock], actor: Optional[str]) -> List[object]:
    """Seed a not-yet-persisted node with version 1. Returns the rows to insert with it."""
    snapshot = dump_blocks(blocks)
    references, debates = extract_links(blocks)
    node.live_content = snapshot
    node.references = references
    node.debates = debates
    node.search_text = plain_text(blocks)
    node.version_count = 1
    version = NodeVersion(
        node_id=node.id,
        version_id=1,
        changed_at=utcnow(),
        changed_by=actor,
        changes=[],
        content_blocks=snapshot,
    )
    return [version, *store.build_links(node.id, references, debates)]


async def commit(
    db: AsyncSession,
    node: Node,
    new_blocks: Sequence[ContentBlock],
    actor: Optional[str],
    *,
    strategy: Optional[str] = None,
) -> NodeVersion:
    """Append a version for `new_blocks` and make it the live content.

    Raises ConcurrentModification (session rolled back) if another writer
    committed since `node` was loaded.
    """
    strategy = strategy or settings.DIFF_STRATEGY
    node_id = node.id
    expected = node.version_count
    old_blocks = parse_blocks(node.live_content)
    changes = diff_blocks(old_blocks, new_blocks, strategy)
    snapshot = dump_blocks(new_blocks)
    references, debates = extract_links(new_blocks)
    version_id = expected + 1

    swapped = await store.compare_and_swap(
        db,
        node_id,
        expected,
        {
            "live_content": snapshot,
            "references": references,
            "debates": debates,
            "search_text": plain_text(new_blocks),
            "version_count": version_id,
            "updated_by": actor,
        },
    )
    if not swapped:
        await db.rollback()
        raise ConcurrentModification(
            "node changed since it was read",
            details={"node_id": node_id, "expected_version": expected},
        )

    version = NodeVersion(
        node_id=node_id,
        version_id=version_id,
        changed_at=utcnow(),
        changed_by=actor,
        changes=_dump_changes(changes),
        content_blocks=snapshot,
    )
    db.add(version)
    try:
        await store.replace_links(db, node_id, references, debates)
        await db.flush()
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConcurrentModification(
            "version already recorded",
            details={"node_id": node_id, "version_id": version_id},
        ) from exc

    await db.refresh(node)
    logger.debug("node %s: version %d committed by %s (%d changes)", node_id, version_id, actor, len(changes))
    return version


async def get_version(db: AsyncSession, node_id: str, version_id: int) -> NodeVersion:
    stmt = select(NodeVersion).where(NodeVersion.node_id == node_id, NodeVersion.version_id == version_id)
    version = (await db.execute(stmt)).scalars().first()
    if version is None:
        raise NotFound(
            f"version {version_id} not found",
            details={"node_id": node_id, "version_id": version_id},
        )
    return version


async def list_versions(db: AsyncSession, node_id: str) -> List[NodeVersion]:
    stmt = select(NodeVersion).where(NodeVersion.node_id == node_id).order_by(NodeVersion.version_id)
    return list((await db.execute(stmt)).scalars().all())


async def compare(
    db: AsyncSession,
    node_id: str,
    a: int,
    b: int,
    *,
    strategy: Optional[str] = None,
) -> List[ContentChange]:
    """Changes that turn stored version `a` into stored version `b`."""
    left = await get_version(db, node_id, a)
    right = await get_version(db, node_id, b)
    return diff_blocks(
        parse_blocks(left.content_blocks),
        parse_blocks(right.content_blocks),
        strategy or settings.DIFF_STRATEGY,
    )
