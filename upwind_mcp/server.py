"""
MCP server exposing the Upwind API as tools, built on FastMCP v2.

This module creates and runs the MCP server with:
- Eight tools over threat detections, threat policies, vulnerability findings
  and CI/CD events (catalogue in tools.py)
- A logging middleware that records every tool call with a request id
- A health endpoint for the HTTP (SSE) transport
- Structured JSON logging on stderr (stdout belongs to the stdio transport)

Architecture:
    The flow for every tools/call:

    1. ToolCallLoggingMiddleware tags the call with a short request id
    2. The tool function forwards its arguments to UpwindClient
    3. UpwindClient resolves the organization id (argument, else token claim)
       and sends one request with a bearer token from TokenManager
    4. The JSON result is returned as one pretty-printed text block
    5. Failures are translated into ToolError in tool_errors(), which FastMCP
       reports to the client as an error result

    Errors are tool results with isError=true rather than JSON-RPC error
    responses. The MCP SDK wraps every tool failure that way before it reaches
    the protocol layer, so an invalid-params JSON-RPC error is not reachable
    from a tool. The "Invalid params: ..." prefix keeps the category readable.

Running the server:
    UPWIND_CLIENT_ID=... UPWIND_CLIENT_SECRET=... python -m upwind_mcp.server

    stdio is the default transport. With UPWIND_TRANSPORT=sse the server listens
    on http://localhost:3000 with:
    - SSE endpoint at /sse
    - Client messages posted to /message
    - Health check at /health
"""

import datetime
import json
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from typing import Annotated, Any, Iterator, Literal

import fastmcp
import httpx
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.middleware import CallNext, Middleware, MiddlewareContext
from fastmcp.tools.tool import ToolResult
from mcp.types import CallToolRequestParams
from pydantic import Field, ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from upwind_mcp.auth import AuthenticationError
from upwind_mcp.client import InvalidParametersError, RemoteApiError, UpwindClient
from upwind_mcp.config import Settings, get_settings
from upwind_mcp.models import (
    DetectionCategory,
    EventReporter,
    EventType,
    PolicyManager,
    Severity,
)
from upwind_mcp.tools import ORGANIZATION_ID_DESCRIPTION, TOOL_SPECS

logger = logging.getLogger("upwind-mcp")

SSE_MESSAGE_PATH = "/message"

# ---------------------------------------------------------------------------
# Structured JSON Logging
# ---------------------------------------------------------------------------
# One JSON object per line. Structured fields are attached with
# logger.info("msg", extra={"log_data": {...}}) and merged into the entry.
#
# Everything goes to stderr: with the stdio transport, stdout carries the
# JSON-RPC stream and a stray log line would corrupt it.


class JSONLogFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Example output:

        {"timestamp": "2026-02-06 10:30:00,123", "level": "INFO", "logger": "upwind-mcp",
         "message": "Tool call completed", "request_id": "3f2a9c1d", "tool": "upwind_list_threat_policies"}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "log_data"):
            log_entry.update(record.log_data)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def configure_logging(level: str) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONLogFormatter())

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )


# ---------------------------------------------------------------------------
# Tool call logging middleware
# ---------------------------------------------------------------------------


class ToolCallLoggingMiddleware(Middleware):
    """
    Logs every tools/call with a request id, outcome and duration.

    Arguments are not logged: they may contain CI metadata or identifiers the
    operator does not want in log storage.
    """

    async def on_call_tool(
        self,
        context: MiddlewareContext[CallToolRequestParams],
        call_next: CallNext[CallToolRequestParams, ToolResult],
    ) -> ToolResult:
        request_id = str(uuid.uuid4())[:8]
        tool_name = context.message.name
        started = time.perf_counter()

        try:
            result = await call_next(context)
        except Exception as e:
            logger.warning(
                "Tool call failed",
                extra={
                    "log_data": {
                        "request_id": request_id,
                        "tool": tool_name,
                        "outcome": "error",
                        "error": str(e),
                        "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                    }
                },
            )
            raise

        logger.info(
            "Tool call completed",
            extra={
                "log_data": {
                    "request_id": request_id,
                    "tool": tool_name,
                    "outcome": "ok",
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                }
            },
        )
        return result


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


@contextmanager
def tool_errors(tool_name: str) -> Iterator[None]:
    """
    Translate client failures into ToolError with a message the agent can act on.

    - InvalidParametersError -> "Invalid params: ..."
    - RemoteApiError         -> "Upwind API error (<status>): <message>"
    - AuthenticationError    -> "Failed to authenticate with Upwind: ..."
    - anything else          -> "Unexpected error: ..." (logged with traceback)
    """
    try:
        yield
    except InvalidParametersError as e:
        raise ToolError(f"Invalid params: {e}") from e
    except (RemoteApiError, AuthenticationError) as e:
        raise ToolError(str(e)) from e
    except Exception as e:
        logger.exception("Unexpected error in tool %s", tool_name)
        raise ToolError(f"Unexpected error: {e}") from e


def as_text(result: Any) -> str:
    return json.dumps(result, indent=2)


OrganizationId = Annotated[str | None, Field(description=ORGANIZATION_ID_DESCRIPTION)]


# ---------------------------------------------------------------------------
# Server factory
# ---------------------------------------------------------------------------


def create_server(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastMCP:
    """
    Build the MCP server and its Upwind client.

    Args:
        settings: Credentials, endpoints and timeouts
        transport: Optional httpx transport for outbound calls (tests use
                   httpx.MockTransport to stand in for Upwind)
    """
    # Read by FastMCP when it builds the SSE app.
    fastmcp.settings.message_path = SSE_MESSAGE_PATH
    client = UpwindClient.from_settings(settings, transport=transport)

    mcp = FastMCP(
        name="upwind-mcp-server",
        instructions=(
            "Tools for the Upwind cloud security platform: review and archive threat "
            "detections, enable or disable threat policies, query vulnerability "
            "findings and report CI/CD events. The organization id is optional; "
            "it defaults to the organization of the configured API client."
        ),
        middleware=[ToolCallLoggingMiddleware()],
    )

    def register(name: str):
        spec = TOOL_SPECS[name]
        return mcp.tool(name=name, description=spec.description, annotations=spec.annotations)

    # --- Threat detections ---

    @register("upwind_list_threat_detections")
    async def list_threat_detections(
        organization_id: OrganizationId = None,
        severity: Annotated[Severity | None, Field(description="Filter by severity level")] = None,
        type: Annotated[str | None, Field(description="Filter by detection type")] = None,
        category: Annotated[
            DetectionCategory | None, Field(description="Filter by detection category")
        ] = None,
        min_first_seen_time: Annotated[
            str | None, Field(description="Filter by earliest first seen time (ISO8601 format)")
        ] = None,
        max_first_seen_time: Annotated[
            str | None, Field(description="Filter by latest first seen time (ISO8601 format)")
        ] = None,
        min_last_seen_time: Annotated[
            str | None, Field(description="Filter by earliest last seen time (ISO8601 format)")
        ] = None,
        max_last_seen_time: Annotated[
            str | None, Field(description="Filter by latest last seen time (ISO8601 format)")
        ] = None,
    ) -> str:
        with tool_errors("upwind_list_threat_detections"):
            detections = await client.list_threat_detections(
                organization_id,
                severity=severity,
                detection_type=type,
                category=category,
                min_first_seen_time=min_first_seen_time,
                max_first_seen_time=max_first_seen_time,
                min_last_seen_time=min_last_seen_time,
                max_last_seen_time=max_last_seen_time,
            )
        return as_text(detections)

    @register("upwind_get_threat_detection")
    async def get_threat_detection(
        detection_id: Annotated[str, Field(description="The unique identifier for the threat detection")],
        organization_id: OrganizationId = None,
    ) -> str:
        with tool_errors("upwind_get_threat_detection"):
            detection = await client.get_threat_detection(detection_id, organization_id)
        return as_text(detection)

    @register("upwind_update_threat_detection")
    async def update_threat_detection(
        detection_id: Annotated[str, Field(description="The unique identifier for the threat detection")],
        status: Annotated[Literal["ARCHIVED"], Field(description="New status for the threat detection")],
        organization_id: OrganizationId = None,
    ) -> str:
        with tool_errors("upwind_update_threat_detection"):
            detection = await client.update_threat_detection(detection_id, status, organization_id)
        return as_text(detection)

    # --- Threat policies ---

    @register("upwind_list_threat_policies")
    async def list_threat_policies(
        organization_id: OrganizationId = None,
        managed_by: Annotated[
            PolicyManager | None, Field(description="Filter by policy management entity")
        ] = None,
    ) -> str:
        with tool_errors("upwind_list_threat_policies"):
            policies = await client.list_threat_policies(organization_id, managed_by=managed_by)
        return as_text(policies)

    @register("upwind_update_threat_policy")
    async def update_threat_policy(
        policy_id: Annotated[str, Field(description="The unique identifier for the threat policy")],
        enabled: Annotated[bool, Field(description="Whether the policy should be enabled")],
        organization_id: OrganizationId = None,
    ) -> str:
        with tool_errors("upwind_update_threat_policy"):
            policy = await client.update_threat_policy(policy_id, enabled, organization_id)
        return as_text(policy)

    # --- Vulnerability findings ---

    @register("upwind_list_vulnerability_findings")
    async def list_vulnerability_findings(
        organization_id: OrganizationId = None,
        per_page: Annotated[
            int | None, Field(description="Number of results per page (default: 100)")
        ] = None,
        page_token: Annotated[str | None, Field(description="Token for pagination")] = None,
        cloud_account_id: Annotated[
            str | None, Field(description="Filter by cloud account ID")
        ] = None,
        cluster_id: Annotated[str | None, Field(description="Filter by cluster ID")] = None,
        namespace: Annotated[str | None, Field(description="Filter by namespace")] = None,
        ingress_active_communication: Annotated[
            bool | None,
            Field(description="Filter for resources with active internet ingress communication"),
        ] = None,
        in_use: Annotated[bool | None, Field(description="Filter for packages currently in use")] = None,
        exploitable: Annotated[
            bool | None, Field(description="Filter for packages with known exploits")
        ] = None,
        fix_available: Annotated[
            bool | None, Field(description="Filter for packages with available fixes")
        ] = None,
        severity: Annotated[Severity | None, Field(description="Filter by severity level")] = None,
        image_name: Annotated[
            str | None, Field(description="Filter by image name (e.g., nginx:latest)")
        ] = None,
    ) -> str:
        with tool_errors("upwind_list_vulnerability_findings"):
            findings = await client.list_vulnerability_findings(
                organization_id,
                per_page=per_page,
                page_token=page_token,
                cloud_account_id=cloud_account_id,
                cluster_id=cluster_id,
                namespace=namespace,
                ingress_active_communication=ingress_active_communication,
                in_use=in_use,
                exploitable=exploitable,
                fix_available=fix_available,
                severity=severity,
                image_name=image_name,
            )
        return as_text(findings)

    @register("upwind_get_vulnerability_finding")
    async def get_vulnerability_finding(
        finding_id: Annotated[
            str, Field(description="The unique identifier for the vulnerability finding")
        ],
        organization_id: OrganizationId = None,
    ) -> str:
        with tool_errors("upwind_get_vulnerability_finding"):
            finding = await client.get_vulnerability_finding(finding_id, organization_id)
        return as_text(finding)

    # --- Events ---

    @register("upwind_create_event")
    async def create_event(
        type: Annotated[EventType, Field(description="Type of event")],
        reporter: Annotated[EventReporter, Field(description="Entity creating the event")],
        data: Annotated[
            dict[str, Any], Field(description="Event data (structure depends on event type)")
        ],
        organization_id: OrganizationId = None,
    ) -> str:
        with tool_errors("upwind_create_event"):
            events = await client.create_event(type, reporter, data, organization_id)
        return as_text(events)

    # -----------------------------------------------------------------------
    # Health endpoint (SSE transport only)
    # -----------------------------------------------------------------------

    @mcp.custom_route("/health", methods=["GET"])
    async def health_check(request: Request) -> Response:
        """Liveness probe: is the server process alive and responsive?"""
        return JSONResponse(
            {
                "status": "ok",
                "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            }
        )

    return mcp


# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------


def load_settings() -> Settings:
    """Read settings, exiting with a readable message if credentials are missing."""
    try:
        return get_settings()
    except ValidationError as e:
        if any(err["type"] == "missing" for err in e.errors()):
            sys.exit(
                "UPWIND_CLIENT_ID and UPWIND_CLIENT_SECRET environment variables are required"
            )
        sys.exit(f"Invalid configuration: {e}")


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    mcp = create_server(settings)

    if settings.transport == "sse":
        logger.info(
            "Starting Upwind MCP server on %s:%d (transport=sse)",
            settings.host,
            settings.port,
        )
        mcp.run(
            transport="sse",
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level,
        )
    else:
        logger.info("Starting Upwind MCP server (transport=stdio)")
        mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
