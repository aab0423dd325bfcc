"""
Record shapes returned and accepted by the Upwind API.

These are TypedDicts rather than validated models: API responses are passed
through to the agent verbatim, and new fields added upstream must not break
a tool call. The Literal aliases double as enums in the generated tool schemas.
"""

from typing import Any, Literal, TypedDict

Severity = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]
DetectionCategory = Literal["NETWORK", "PROCESS", "CLOUD_LOGS"]
DetectionStatus = Literal["PENDING", "OPEN", "ARCHIVED"]
PolicyManager = Literal["UPWIND"]
EventType = Literal["IMAGE_BUILD", "IMAGE_DEPLOY"]
EventReporter = Literal["GITHUB_ACTIONS", "CIRCLE_CI", "CUSTOM_CI", "CUSTOM_CD"]


# --- Shared ---


class InternetExposureDetails(TypedDict):
    active_communication: bool


class InternetExposure(TypedDict):
    ingress: InternetExposureDetails


class Resource(TypedDict):
    id: str
    external_id: str
    name: str
    type: str
    path: str
    cloud_provider: Literal["AWS", "GCP", "AZURE"]
    cloud_account_id: str
    region: str
    cluster_id: str
    namespace: str
    internet_exposure: InternetExposure


# --- Threat detections ---


class MitreAttackDetails(TypedDict):
    tactic_id: str
    tactic_name: str
    technique_id: str
    technique_name: str


class ThreatDetectionEvent(TypedDict):
    id: str
    event_type: Literal["AUDIT_LOG_EVENT", "NETWORK_ACTIVITY", "PROCESS_EXECUTION"]
    description: str
    event_time: str
    data: Any


class ThreatDetectionTrigger(TypedDict):
    policy_id: str
    policy_name: str
    events: list[ThreatDetectionEvent]


class ThreatDetection(TypedDict):
    id: str
    type: str
    category: DetectionCategory
    severity: Severity
    status: DetectionStatus
    title: str
    description: str
    first_seen_time: str
    last_seen_time: str
    occurrence_count: int
    resource: Resource
    mitre_attacks: list[MitreAttackDetails]
    triggers: list[ThreatDetectionTrigger]


class ThreatDetectionUpdateRequest(TypedDict):
    status: Literal["ARCHIVED"]


# --- Threat policies ---


class ThreatPolicy(TypedDict):
    id: str
    display_name: str
    category: Literal["PROCESS_EXECUTION"]
    severity: Severity
    scope: Literal["ALL_RESOURCES", "SUBSET"]
    open_issues: int
    managed_by: PolicyManager
    enabled: bool


class ThreatPolicyUpdateRequest(TypedDict):
    enabled: bool


# --- Vulnerability findings ---


class ImpactMetrics(TypedDict):
    affected_resource_count: int
    affected_image_count: int


class Vulnerability(TypedDict):
    name: str
    description: str
    nvd_cve_id: str
    nvd_description: str
    nvd_publish_time: str
    nvd_cvss_v3_severity: Severity
    nvd_cvss_v3_score: str
    impact_metrics: ImpactMetrics


class Image(TypedDict):
    name: str
    digest: str
    uri: str
    registry: str
    repository: str
    os_version: str
    os_name: str
    tag: str


class Package(TypedDict):
    name: str
    framework: str
    type: str
    version: str
    in_use: bool


class RemediationItem(TypedDict):
    type: Literal["OFFICIAL_FIX"]
    data: str


class VulnerabilityFinding(TypedDict):
    id: str
    status: Literal["OPEN", "ARCHIVED"]
    source: Literal["SENSOR", "CLOUD_SCANNER"]
    first_seen_time: str
    last_scan_time: str
    vulnerability: Vulnerability
    image: Image
    package: Package
    resource: Resource
    remediation: list[RemediationItem]


# --- Events (CI/CD) ---


class CiEventData(TypedDict):
    image: str
    image_sha: str
    commit_sha: str
    version_control_platform: Literal["GITHUB", "GITLAB", "BITBUCKET"]
    repository: str
    branch: str
    pull_request_ids: list[int]
    build_time: str


class CdEventData(TypedDict):
    resource_name: str
    resource_namespace: str
    resource_kind: str
    cluster_id: str
    start_time: str
    end_time: str
    initiator: str


class EventRequest(TypedDict):
    type: EventType
    reporter: EventReporter
    data: CiEventData | CdEventData | dict[str, Any]


class EventList(TypedDict):
    id: str
    type: str
    reporter: str
    data: CiEventData | CdEventData
