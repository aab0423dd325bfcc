"""
Tool catalogue: names, descriptions and behaviour hints.

server.py registers the tool functions; this module is the single place that
says what each tool is called and whether it changes anything upstream:

    TOOL_SPECS = {
        "tool_name": ToolSpec(description=..., read_only=...),
    }

MCP clients use the hints (readOnlyHint, idempotentHint) to decide which
calls need user confirmation, so every mutating Upwind operation must be
listed with read_only=False.
"""

from dataclasses import dataclass

from mcp.types import ToolAnnotations


@dataclass(frozen=True)
class ToolSpec:
    """
    Static metadata for one tool.

    Attributes:
        description: Shown to the agent in tools/list
        read_only: True if the tool never changes state in Upwind
        idempotent: True if repeating the call with the same arguments has no further effect
    """

    description: str
    read_only: bool = True
    idempotent: bool = True

    @property
    def annotations(self) -> ToolAnnotations:
        return ToolAnnotations(
            readOnlyHint=self.read_only,
            destructiveHint=False,
            idempotentHint=self.idempotent,
            openWorldHint=True,
        )


TOOL_SPECS: dict[str, ToolSpec] = {
    "upwind_list_threat_detections": ToolSpec(
        "List threat detections for an organization with optional filtering",
    ),
    "upwind_get_threat_detection": ToolSpec(
        "Get detailed information about a specific threat detection",
    ),
    "upwind_update_threat_detection": ToolSpec(
        "Update a threat detection status (e.g., archive)",
        read_only=False,
    ),
    "upwind_list_threat_policies": ToolSpec(
        "List threat policies for an organization",
    ),
    "upwind_update_threat_policy": ToolSpec(
        "Update a threat policy (e.g., enable/disable)",
        read_only=False,
    ),
    "upwind_list_vulnerability_findings": ToolSpec(
        "List vulnerability findings for an organization with filtering options",
    ),
    "upwind_get_vulnerability_finding": ToolSpec(
        "Get detailed information about a specific vulnerability finding",
    ),
    "upwind_create_event": ToolSpec(
        "Create a new event (e.g., for CI/CD integration)",
        read_only=False,
        idempotent=False,
    ),
}

ORGANIZATION_ID_DESCRIPTION = (
    "The unique identifier for the organization "
    "(optional - will use organization from auth token if not provided)"
)
