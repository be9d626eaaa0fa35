"""
Tools API Routes.

Endpoints for listing and invoking registered agent tools.
"""

from typing import Optional
from fastapi import APIRouter, HTTPException
import logging

from nodeflow.api.schemas import (
    ToolInfo,
    ToolListResponse,
    ToolExecuteRequest,
    ToolExecuteResponse,
    ErrorResponse,
)
from nodeflow.tools.registry import tool_registry


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tools", tags=["Tools"])


@router.get(
    "",
    response_model=ToolListResponse,
)
async def list_tools(category: Optional[str] = None) -> ToolListResponse:
    """
    List all registered tools.

    Tools are functions that agent nodes can call during execution.
    """
    if category:
        tools = [tool.to_dict() for tool in tool_registry.get_by_category(category)]
    else:
        tools = tool_registry.list_tools()

    tool_infos = [ToolInfo(**t) for t in tools]
    return ToolListResponse(tools=tool_infos, total=len(tool_infos))


@router.get(
    "/{tool_id}",
    response_model=ToolInfo,
    responses={404: {"model": ErrorResponse}},
)
async def get_tool(tool_id: str) -> ToolInfo:
    """Get information about a specific tool."""
    tool = tool_registry.get(tool_id)
    if not tool:
        raise HTTPException(
            status_code=404,
            detail=f"Tool '{tool_id}' not found"
        )
    return ToolInfo(**tool.to_dict())


@router.post(
    "/{tool_id}/execute",
    response_model=ToolExecuteResponse,
    responses={404: {"model": ErrorResponse}},
)
async def execute_tool(tool_id: str, request: ToolExecuteRequest) -> ToolExecuteResponse:
    """
    Invoke a tool directly.

    Tool failures (invalid input, errors raised by the tool) are reported
    in the response body with `success: false`, not as HTTP errors.
    """
    if not tool_registry.has(tool_id):
        raise HTTPException(
            status_code=404,
            detail=f"Tool '{tool_id}' not found"
        )

    result = await tool_registry.execute_tool(tool_id, request.input)
    logger.info(f"Executed tool {tool_id}: success={result.success}")
    return ToolExecuteResponse(**result.to_dict())
