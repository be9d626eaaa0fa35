"""
API package - FastAPI routes and schemas.
"""

from nodeflow.api.routes import nodes, tools, websocket, workflows

__all__ = ["nodes", "tools", "websocket", "workflows"]
