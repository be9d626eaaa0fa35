"""
HTTP request node.

Settings may use expressions so that the URL, headers or body are
computed from upstream results, e.g.

    {"url": "{{$result.config.base_url}}/users",
     "headers": {"Authorization": "Bearer {{$result.auth.token}}"}}
"""

from typing import Any, Dict, Optional
import logging

import httpx

from nodeflow.config import settings as app_settings
from nodeflow.engine.node import BaseNode, ExecutionResult
from nodeflow.engine.policy import NodePolicy
from nodeflow.engine.ports import PortType
from nodeflow.engine.state import ExecutionContext
from nodeflow.nodes.registry import register_node


logger = logging.getLogger(__name__)

BODY_METHODS = {"POST", "PUT", "PATCH"}


@register_node("http-request")
class HttpRequestNode(BaseNode):
    """
    Sends an HTTP request.

    Settings:
        url: Request URL
        method: HTTP method (default GET)
        headers: Extra request headers
        timeout: Seconds before the request is abandoned
        body_template: Request body text (overrides the data input)

    Inputs:
        data: JSON body for POST/PUT/PATCH when no body_template is set
        params: Query string parameters
    """

    display_name = "HTTP Request"
    category = "network"

    def __init__(
        self,
        node_id: str,
        settings: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
        policy: Optional[NodePolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(node_id, settings, name=name, policy=policy)
        self.transport = transport

    def define_ports(self) -> None:
        self.add_input_port("data", PortType.ANY, description="Request body")
        self.add_input_port("params", PortType.OBJECT, description="Query parameters")
        self.add_output_port("status", PortType.NUMBER)
        self.add_output_port("data", PortType.ANY, description="Decoded response body")
        self.add_output_port("success", PortType.BOOLEAN)

    def build_request(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """Turn resolved settings and inputs into httpx request arguments."""
        url = self.settings.get("url")
        if not url:
            raise ValueError(f"HTTP node '{self.node_id}' has no url")

        method = str(self.settings.get("method", "GET")).upper()
        request: Dict[str, Any] = {
            "method": method,
            "url": url,
            "headers": {"Content-Type": "application/json", **(self.settings.get("headers") or {})},
        }

        params = {k: v for k, v in (inputs.get("params") or {}).items() if v is not None}
        if params:
            request["params"] = params

        body_template = self.settings.get("body_template")
        if body_template:
            request["content"] = body_template
        elif inputs.get("data") is not None and method in BODY_METHODS:
            request["json"] = inputs["data"]

        return request

    async def execute(self, inputs: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
        request = self.build_request(inputs)
        timeout = self.settings.get("timeout") or app_settings.HTTP_TIMEOUT

        logger.info(f"HTTP {request['method']} request to: {request['url']}")

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                response = await client.request(**request)
        except httpx.HTTPError as e:
            return ExecutionResult.fail(f"HTTP request failed: {e}")

        if "application/json" in response.headers.get("content-type", ""):
            body = response.json()
        else:
            body = response.text

        return ExecutionResult.ok(
            {
                "status": response.status_code,
                "data": body,
                "success": response.is_success,
            },
            url=str(response.url),
        )
