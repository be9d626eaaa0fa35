"""
Nodeflow - FastAPI Application Entry Point.

A low-code workflow automation engine: workflows are graphs of typed nodes
(triggers, HTTP requests, code, conditions, AI agents) executed in
dependency order.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from nodeflow.config import settings
from nodeflow.api.routes import nodes, tools, websocket, workflows
from nodeflow.nodes.registry import initialize_builtin_types
from nodeflow.workflows.demo import DEMO_WORKFLOW_ID, register_demo_workflow

# Import builtin tools to register them
import nodeflow.tools.builtin  # noqa: F401


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    initialize_builtin_types()
    await register_demo_workflow()

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="""
## Workflow Automation API

A low-code workflow engine: connect nodes into a graph and run it.

### Features
- **Nodes**: Timer triggers, HTTP requests, Python code, conditions and AI agents
- **Connections**: Data flows along connections, optionally from/to named ports
- **Branching**: Condition nodes select a branch; connections can carry guards
- **Expressions**: `{{$result.node.field}}`, `{{$input.x}}`, `{{$context.x}}` in settings
- **Failure handling**: Per-node timeout, retries and stop/continue policy
- **Real-time Updates**: WebSocket streaming with pause / resume / cancel

### Quick Start
1. List node types: `GET /nodes/types`
2. Store a workflow: `POST /workflows`
3. Run it: `POST /workflows/run`
4. Check a run: `GET /workflows/runs/{run_id}`

### Demo Workflow
A pre-registered order review workflow is available with ID: `demo-workflow`
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(workflows.router)
app.include_router(nodes.router)
app.include_router(tools.router)
app.include_router(websocket.router)


# ============================================================
# Root Endpoints
# ============================================================

@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info and links."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "A low-code workflow automation engine",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "workflows": "/workflows",
            "runs": "/workflows/runs",
            "node_types": "/nodes/types",
            "tools": "/tools",
            "websocket_run": "/ws/run/{workflow_id}",
        },
        "demo_workflow": DEMO_WORKFLOW_ID,
    }


@app.get("/health", tags=["Root"])
async def health():
    """Health check endpoint."""
    from nodeflow.storage.memory import run_storage, workflow_storage

    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "workflows_count": len(workflow_storage),
        "runs_count": len(run_storage),
    }


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
            "status_code": 500,
        },
    )
