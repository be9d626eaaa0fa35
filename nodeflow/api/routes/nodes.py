"""
Node Type API Routes.
"""

from fastapi import APIRouter

from nodeflow.api.schemas import NodeTypeInfo, NodeTypeListResponse
from nodeflow.nodes.registry import node_registry


router = APIRouter(prefix="/nodes", tags=["Nodes"])


@router.get("/types", response_model=NodeTypeListResponse)
async def list_node_types() -> NodeTypeListResponse:
    """List the registered node types and the ports each one declares."""
    node_types = [NodeTypeInfo(**info) for info in node_registry.describe()]
    return NodeTypeListResponse(node_types=node_types, total=len(node_types))
