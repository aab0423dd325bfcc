"""
Async client for the Upwind REST API.

One method per remote operation. Every method:
1. Resolves the organization id (explicit argument, else the id discovered
   from the access token, else InvalidParametersError with no request sent)
2. Builds the query string or JSON body from the arguments that were given
3. Sends exactly one request with a fresh bearer token from TokenManager
4. Returns the parsed JSON body unchanged

Non-2xx responses are normalized into RemoteApiError. Transport errors
(httpx.HTTPError) and AuthenticationError propagate as-is.
"""

import logging
from typing import Any, Literal
from urllib.parse import quote

import httpx

from upwind_mcp.auth import Credentials, TokenManager
from upwind_mcp.config import Settings
from upwind_mcp.models import (
    CdEventData,
    CiEventData,
    DetectionCategory,
    EventList,
    EventReporter,
    EventRequest,
    EventType,
    PolicyManager,
    Severity,
    ThreatDetection,
    ThreatDetectionUpdateRequest,
    ThreatPolicy,
    ThreatPolicyUpdateRequest,
    VulnerabilityFinding,
)

logger = logging.getLogger("upwind-mcp.client")


class InvalidParametersError(Exception):
    """Raised when a required identifier is missing after all fallbacks."""


class RemoteApiError(Exception):
    """
    The Upwind API answered with a non-2xx status.

    Attributes:
        error: Short error code from the response body ("Unknown error" if absent)
        message: Human-readable message from the response body
        status_code: HTTP status code
    """

    def __init__(self, error: str, message: str, status_code: int):
        self.error = error
        self.message = message
        self.status_code = status_code
        super().__init__(f"Upwind API error ({status_code}): {message}")

    @classmethod
    def from_response(cls, response: httpx.Response) -> "RemoteApiError":
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}

        return cls(
            error=body.get("error") or "Unknown error",
            message=body.get("message") or f"Request failed with status code {response.status_code}",
            status_code=response.status_code,
        )


def _query(**params: Any) -> dict[str, Any]:
    """Drop filters that were not given. Booleans are sent as true/false by httpx."""
    return {name: value for name, value in params.items() if value is not None}


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class UpwindClient:
    """
    Thin façade over the Upwind REST API.

    Args:
        tokens: Supplies bearer tokens and organization discovery
        http_client: Client bound to the API base URL
    """

    def __init__(self, tokens: TokenManager, http_client: httpx.AsyncClient):
        self.tokens = tokens
        self._http = http_client

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "UpwindClient":
        """
        Wire a client and its token manager from configuration.

        Both share one connection pool. ``transport`` replaces the network
        layer (tests pass an httpx.MockTransport).
        """
        http_client = httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            transport=transport,
        )
        tokens = TokenManager(
            Credentials(
                client_id=settings.client_id,
                client_secret=settings.client_secret,
                auth_url=settings.auth_url,
            ),
            http_client=http_client,
        )
        return cls(tokens, http_client)

    async def resolve_organization_id(self, organization_id: str | None) -> str:
        """
        Return the explicit organization id, or the one carried by the access token.

        Raises:
            InvalidParametersError: If neither is available
        """
        if organization_id:
            return organization_id

        discovered = await self.tokens.discover_organization_id()
        if not discovered:
            raise InvalidParametersError(
                "Organization ID not provided and could not be determined from auth token"
            )
        return discovered

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        token = await self.tokens.ensure_valid_token()
        response = await self._http.request(
            method,
            path,
            params=params,
            json=json,
            headers={"Authorization": f"Bearer {token}"},
        )

        if response.is_error:
            error = RemoteApiError.from_response(response)
            logger.warning(
                "Upwind API request failed",
                extra={
                    "log_data": {
                        "method": method,
                        "path": path,
                        "status_code": error.status_code,
                        "error": error.error,
                    }
                },
            )
            raise error

        logger.debug("%s %s -> %d", method, path, response.status_code)
        if not response.content:
            return None
        return response.json()

    async def _org_path(self, organization_id: str | None, *segments: str) -> str:
        org = await self.resolve_organization_id(organization_id)
        return "/".join(["/v1/organizations", _segment(org), *segments])

    # --- Threat detections ---

    async def list_threat_detections(
        self,
        organization_id: str | None = None,
        *,
        severity: Severity | None = None,
        detection_type: str | None = None,
        category: DetectionCategory | None = None,
        min_first_seen_time: str | None = None,
        max_first_seen_time: str | None = None,
        min_last_seen_time: str | None = None,
        max_last_seen_time: str | None = None,
    ) -> list[ThreatDetection]:
        path = await self._org_path(organization_id, "threat-detections")
        params = _query(
            **{
                "severity": severity,
                "type": detection_type,
                "category": category,
                "min-first-seen-time": min_first_seen_time,
                "max-first-seen-time": max_first_seen_time,
                "min-last-seen-time": min_last_seen_time,
                "max-last-seen-time": max_last_seen_time,
            }
        )
        return await self._request("GET", path, params=params)

    async def get_threat_detection(
        self, detection_id: str, organization_id: str | None = None
    ) -> ThreatDetection:
        path = await self._org_path(organization_id, "threat-detections", _segment(detection_id))
        return await self._request("GET", path)

    async def update_threat_detection(
        self, detection_id: str, status: Literal["ARCHIVED"], organization_id: str | None = None
    ) -> ThreatDetection:
        path = await self._org_path(organization_id, "threat-detections", _segment(detection_id))
        body: ThreatDetectionUpdateRequest = {"status": status}
        return await self._request("PATCH", path, json=body)

    # --- Threat policies ---

    async def list_threat_policies(
        self,
        organization_id: str | None = None,
        *,
        managed_by: PolicyManager | None = None,
    ) -> list[ThreatPolicy]:
        path = await self._org_path(organization_id, "threat-policies")
        return await self._request("GET", path, params=_query(**{"managed-by": managed_by}))

    async def update_threat_policy(
        self, policy_id: str, enabled: bool, organization_id: str | None = None
    ) -> ThreatPolicy:
        path = await self._org_path(organization_id, "threat-policies", _segment(policy_id))
        body: ThreatPolicyUpdateRequest = {"enabled": enabled}
        return await self._request("PATCH", path, json=body)

    # --- Vulnerability findings ---

    async def list_vulnerability_findings(
        self,
        organization_id: str | None = None,
        *,
        per_page: int | None = None,
        page_token: str | None = None,
        cloud_account_id: str | None = None,
        cluster_id: str | None = None,
        namespace: str | None = None,
        ingress_active_communication: bool | None = None,
        in_use: bool | None = None,
        exploitable: bool | None = None,
        fix_available: bool | None = None,
        severity: Severity | None = None,
        image_name: str | None = None,
    ) -> list[VulnerabilityFinding]:
        path = await self._org_path(organization_id, "vulnerability-findings")
        params = _query(
            **{
                "per-page": per_page,
                "page-token": page_token,
                "cloud-account-id": cloud_account_id,
                "cluster-id": cluster_id,
                "namespace": namespace,
                "ingress-active-communication": ingress_active_communication,
                "in-use": in_use,
                "exploitable": exploitable,
                "fix-available": fix_available,
                "severity": severity,
                "image-name": image_name,
            }
        )
        return await self._request("GET", path, params=params)

    async def get_vulnerability_finding(
        self, finding_id: str, organization_id: str | None = None
    ) -> VulnerabilityFinding:
        path = await self._org_path(organization_id, "vulnerability-findings", _segment(finding_id))
        return await self._request("GET", path)

    # --- Events ---

    async def create_event(
        self,
        event_type: EventType,
        reporter: EventReporter,
        data: CiEventData | CdEventData | dict[str, Any],
        organization_id: str | None = None,
    ) -> list[EventList]:
        path = await self._org_path(organization_id, "events")
        body: EventRequest = {"type": event_type, "reporter": reporter, "data": data}
        return await self._request("POST", path, json=body)

    async def aclose(self) -> None:
        await self._http.aclose()
