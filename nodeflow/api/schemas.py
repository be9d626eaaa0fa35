"""
Pydantic Schemas for API Request/Response Models.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# ============================================================
# Workflow Schemas
# ============================================================

class WorkflowCreateResponse(BaseModel):
    """Response after storing a workflow."""
    workflow_id: str
    name: str
    message: str = Field(default="Workflow created successfully")
    node_count: int
    connection_count: int
    warnings: List[str] = Field(default_factory=list, description="Issues reported by workflow validation")


class WorkflowInfoResponse(BaseModel):
    """Response with workflow information."""
    workflow_id: str
    name: str
    description: Optional[str]
    node_count: int
    connection_count: int
    nodes: List[Dict[str, Any]]
    execution_order: List[str]
    created_at: str
    updated_at: str
    mermaid_diagram: Optional[str] = Field(None, description="Mermaid diagram of the workflow")


class WorkflowListResponse(BaseModel):
    """Response listing all workflows."""
    workflows: List[WorkflowInfoResponse]
    total: int


class ValidationIssueModel(BaseModel):
    path: str
    message: str


class WorkflowValidateResponse(BaseModel):
    """Result of a pre-flight validation."""
    valid: bool
    issues: List[ValidationIssueModel]


# ============================================================
# Run Schemas
# ============================================================

class PolicyModel(BaseModel):
    """Run-wide failure handling overrides."""
    error_policy: Optional[str] = Field(None, description='"stop" or "continue"')
    timeout: Optional[float] = Field(None, gt=0, description="Per-node timeout in seconds")
    max_retries: Optional[int] = Field(None, ge=0)
    retry_backoff: Optional[float] = Field(None, ge=0)


class WorkflowRunRequest(BaseModel):
    """Request to run a stored workflow."""
    workflow_id: str = Field(..., description="ID of the workflow to run")
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Run metadata, available to {{$context.*}} expressions",
    )
    policy: Optional[PolicyModel] = None
    async_execution: bool = Field(
        False,
        description="If true, run in background and return immediately",
    )

    class Config:
        json_schema_extra = {
            "example": {
                "workflow_id": "demo-workflow",
                "metadata": {"user": "alice"},
                "policy": {"error_policy": "stop"},
                "async_execution": False,
            }
        }


class ExecutionLogEntry(BaseModel):
    """A single entry in the execution log."""
    step: int
    node_id: str
    started_at: str
    completed_at: Optional[str]
    duration_ms: Optional[float]
    attempts: int
    result: str
    error: Optional[str]
    branch: Optional[int]


class RunErrorModel(BaseModel):
    type: str
    node_id: Optional[str]
    message: str


class WorkflowRunResponse(BaseModel):
    """Run record, returned after a run and when polling."""
    run_id: str = Field(..., description="Unique identifier for this run")
    workflow_id: str
    status: str
    current_node: Optional[str] = None
    results: Dict[str, Any]
    errors: List[RunErrorModel]
    skipped: List[str]
    node_statuses: Dict[str, str]
    execution_log: List[ExecutionLogEntry]
    started_at: Optional[str]
    completed_at: Optional[str]
    total_duration_ms: Optional[float]


class RunListResponse(BaseModel):
    """Response listing runs."""
    runs: List[WorkflowRunResponse]
    total: int


class RunControlResponse(BaseModel):
    run_id: str
    status: str
    message: str


# ============================================================
# Tool Schemas
# ============================================================

class ToolInfo(BaseModel):
    """Information about a registered tool."""
    id: str
    name: str
    description: str
    category: str
    parameters: Dict[str, Any]


class ToolListResponse(BaseModel):
    """Response listing all registered tools."""
    tools: List[ToolInfo]
    total: int


class ToolExecuteRequest(BaseModel):
    input: Dict[str, Any] = Field(default_factory=dict, description="Tool input")

    class Config:
        json_schema_extra = {
            "example": {"input": {"expression": "2 + 3 * 4"}}
        }


class ToolExecuteResponse(BaseModel):
    success: bool
    data: Any = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ============================================================
# Node Type Schemas
# ============================================================

class NodeTypeInfo(BaseModel):
    type: str
    name: str
    category: str
    description: str
    input_ports: List[Dict[str, Any]]
    output_ports: List[Dict[str, Any]]


class NodeTypeListResponse(BaseModel):
    node_types: List[NodeTypeInfo]
    total: int


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int
