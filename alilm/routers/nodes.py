from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import (
    BreadcrumbItem, ContentChange, ContentCommit, LinkKind, MoveRequest, NodeCreate,
    NodeKind, NodeMetadataUpdate, NodePage, NodeRead, NodeStatus, NodeSummary, TreeNode, VersionRead, VersionSummary,
)
from ..services import nodes as svc

router = APIRouter(prefix="/api", tags=["nodes"])


def get_actor(x_actor_id: Optional[str] = Header(default=None)) -> Optional[str]:
    # identity is established upstream; the core only records who acted
    return (x_actor_id or "").strip() or None


# ---------------------------
# Nodes
# ---------------------------
@router.post("/nodes", response_model=NodeRead, status_code=201)
async def create_node(
    payload: NodeCreate,
    db: AsyncSession = Depends(get_db),
    actor: Optional[str] = Depends(get_actor),
):
    return await svc.create_node(
        db,
        kind=payload.kind,
        parent_id=payload.parent_id,
        title_seed=payload.title_seed,
        title=payload.title,
        summary=payload.summary,
        status=payload.status,
        initial_content=payload.content_blocks,
        actor=actor,
    )


@router.get("/nodes", response_model=NodePage)
async def search_nodes(
    kind: Optional[NodeKind] = Query(default=None),
    q: Optional[str] = Query(default=None),
    status: Optional[NodeStatus] = Query(default=None),
    sort: str = Query(default="-created_at"),
    page: int = Query(default=1),
    limit: int = Query(default=10),
    db: AsyncSession = Depends(get_db),
):
    items, total = await svc.search_nodes(db, kind, q, page, limit, status=status, sort=sort)
    return NodePage(
        items=[NodeSummary.model_validate(n) for n in items], total=total, page=page, limit=limit
    )


@router.get("/nodes/{ref}", response_model=NodeRead)
async def read_node(ref: str, kind: Optional[NodeKind] = Query(default=None), db: AsyncSession = Depends(get_db)):
    return await svc.get_node(db, ref, kind)


@router.patch("/nodes/{ref}", response_model=NodeRead)
async def update_node(
    ref: str,
    payload: NodeMetadataUpdate,
    kind: Optional[NodeKind] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    actor: Optional[str] = Depends(get_actor),
):
    node = await svc.get_node(db, ref, kind)
    return await svc.update_metadata(db, node.id, payload, actor)


@router.delete("/nodes/{ref}", status_code=204)
async def delete_node(
    ref: str,
    kind: Optional[NodeKind] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    actor: Optional[str] = Depends(get_actor),
):
    node = await svc.get_node(db, ref, kind)
    await svc.delete_node(db, node.id, actor)
    return Response(status_code=204)


# ---------------------------
# Content & versions
# ---------------------------
@router.put("/nodes/{ref}/content", response_model=NodeRead)
async def commit_content(
    ref: str,
    payload: ContentCommit,
    kind: Optional[NodeKind] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    actor: Optional[str] = Depends(get_actor),
):
    node = await svc.get_node(db, ref, kind)
    return await svc.commit_content(db, node.id, payload.content_blocks, actor)


@router.get("/nodes/{ref}/versions", response_model=List[VersionSummary])
async def list_versions(ref: str, kind: Optional[NodeKind] = Query(default=None), db: AsyncSession = Depends(get_db)):
    node = await svc.get_node(db, ref, kind, include_deleted=True)
    return [
        VersionSummary(
            version_id=v.version_id,
            changed_at=v.changed_at,
            changed_by=v.changed_by,
            change_count=len(v.changes or []),
        )
        for v in await svc.list_versions(db, node.id)
    ]


@router.get("/nodes/{ref}/versions/{version_id}", response_model=VersionRead)
async def read_version(
    ref: str,
    version_id: int,
    kind: Optional[NodeKind] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    node = await svc.get_node(db, ref, kind, include_deleted=True)
    return await svc.get_version(db, node.id, version_id)


@router.post("/nodes/{ref}/versions/{version_id}/restore", response_model=NodeRead)
async def restore_version(
    ref: str,
    version_id: int,
    kind: Optional[NodeKind] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    actor: Optional[str] = Depends(get_actor),
):
    node = await svc.get_node(db, ref, kind)
    return await svc.rollback(db, node.id, version_id, actor)


@router.get("/nodes/{ref}/versions/{a}/diff/{b}", response_model=List[ContentChange])
async def diff_versions(
    ref: str,
    a: int,
    b: int,
    kind: Optional[NodeKind] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    node = await svc.get_node(db, ref, kind, include_deleted=True)
    return await svc.compare_versions(db, node.id, a, b)


# ---------------------------
# Hierarchy
# ---------------------------
@router.get("/nodes/{ref}/children", response_model=List[NodeSummary])
async def list_children(ref: str, kind: Optional[NodeKind] = Query(default=None), db: AsyncSession = Depends(get_db)):
    node = await svc.get_node(db, ref, kind)
    return await svc.children(db, node.id)


@router.get("/nodes/{ref}/subtree", response_model=List[NodeSummary])
async def list_subtree(ref: str, kind: Optional[NodeKind] = Query(default=None), db: AsyncSession = Depends(get_db)):
    node = await svc.get_node(db, ref, kind)
    return await svc.subtree(db, node.path, node.kind)


@router.get("/nodes/{ref}/breadcrumb", response_model=List[BreadcrumbItem])
async def node_breadcrumb(ref: str, kind: Optional[NodeKind] = Query(default=None), db: AsyncSession = Depends(get_db)):
    node = await svc.get_node(db, ref, kind)
    return [BreadcrumbItem(slug=s, title=t) for s, t in await svc.breadcrumb(db, node.id)]


@router.post("/nodes/{ref}/move", response_model=NodeRead)
async def move_node(
    ref: str,
    payload: MoveRequest,
    kind: Optional[NodeKind] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    actor: Optional[str] = Depends(get_actor),
):
    node = await svc.get_node(db, ref, kind)
    return await svc.move_node(db, node.id, payload.parent_id, actor)


@router.get("/tree/{kind}", response_model=List[TreeNode])
async def knowledge_tree(kind: NodeKind, db: AsyncSession = Depends(get_db)):
    return await svc.knowledge_tree(db, kind)


@router.get("/citations/{link_kind}/{target_id}", response_model=List[NodeSummary])
async def citations(link_kind: LinkKind, target_id: str, db: AsyncSession = Depends(get_db)):
    return await svc.nodes_citing(db, link_kind, target_id)
