"""Data models for Azure Patch Rollout.

This module defines the records flowing through the staged rollout pipeline:
installation records read from Resource Graph, the aggregated reference that
seeds every stage, the caller supplied stage descriptors and the outcomes
reported by the deployment driver. It also defines the error taxonomy shared
by the pipeline modules.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from azure_patch_rollout.documents import JsonValue

# Resource Graph returns 1 to 7 fractional digits; datetime.fromisoformat needs 3 or 6 on 3.10
_FRACTION_PATTERN = re.compile(r"\.(\d+)")


class RolloutError(Exception):
    """Base exception for the staged rollout pipeline."""

    pass


class InputError(RolloutError):
    """Exception raised when invocation input is malformed.

    Covers stage descriptor JSON that does not parse, missing or invalid
    stage fields and reference run ids that are not maintenance
    configuration resource ids. Raised before any Azure call is made.
    """

    pass


class AuthenticationFailure(RolloutError):
    """Exception raised when no Azure credential or token can be obtained."""

    pass


class QueryFailure(RolloutError):
    """Exception raised when the Resource Graph query fails.

    Raised for service errors as well as responses whose shape does not
    match the installed patches projection.
    """

    pass


class InconsistentReferenceData(RolloutError):
    """Exception raised when reference records disagree on scalar fields.

    Only raised in strict mode; otherwise the disagreement is logged and the
    first observed value is used.
    """

    def __init__(self, fields: dict[str, list[str]]):
        self.fields = fields
        details = ", ".join(f"{name}={values}" for name, values in sorted(fields.items()))
        super().__init__(f"Reference records disagree on: {details}")


class DeploymentFailure(RolloutError):
    """Exception raised when a stage maintenance configuration fails to deploy."""

    pass


class AssignmentFailure(RolloutError):
    """Exception describing a rejected configuration assignment request."""

    def __init__(self, scope: str, status_code: Optional[int], body: str):
        self.scope = scope
        self.status_code = status_code
        self.body = body
        super().__init__(f"Assignment for scope {scope} failed with status {status_code}: {body}")


class OsType(Enum):
    """Operating system families reported by patch installation results."""

    WINDOWS = "Windows"
    LINUX = "Linux"

    @classmethod
    def parse(cls, value: Any) -> "OsType":
        """Parse an OS type case-insensitively."""
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        raise ValueError(f"Unknown OS type: {value!r}")


class OutcomeStatus(Enum):
    """Status of a single deployment call."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp into a timezone-aware UTC datetime.

    Naive timestamps are treated as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        text = _FRACTION_PATTERN.sub(lambda match: "." + match.group(1)[:6].ljust(6, "0"), text, count=1)
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class InstallationRecord:
    """One installed package row from the installed patches query."""

    os_type: OsType
    last_deployment_start: datetime
    maintenance_duration: str
    patch_name: str
    patch_version: str
    kb_id: str
    reboot_setting: str
    location: str
    mc_tags: str

    REQUIRED_COLUMNS = (
        "osType",
        "lastDeploymentStart",
        "maintenanceDuration",
        "patchName",
        "rebootSetting",
        "location",
    )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "InstallationRecord":
        """Create an InstallationRecord from a Resource Graph row.

        Raises:
            QueryFailure: If the row is missing columns or carries values
                that cannot be interpreted
        """
        if not isinstance(row, dict):
            raise QueryFailure(f"Expected an object row, got {type(row).__name__}")

        missing = [column for column in cls.REQUIRED_COLUMNS if row.get(column) in (None, "")]
        if missing:
            raise QueryFailure(f"Row is missing required columns: {', '.join(missing)}")

        try:
            os_type = OsType.parse(row["osType"])
            started = parse_timestamp(row["lastDeploymentStart"])
        except ValueError as e:
            raise QueryFailure(f"Malformed installation row: {e}") from e

        return cls(
            os_type=os_type,
            last_deployment_start=started,
            maintenance_duration=str(row["maintenanceDuration"]),
            patch_name=str(row["patchName"]),
            patch_version=str(row.get("patchVersion") or ""),
            kb_id=str(row.get("kbId") or ""),
            reboot_setting=str(row["rebootSetting"]),
            location=str(row["location"]),
            mc_tags=str(row.get("mcTags") or ""),
        )


@dataclass(frozen=True)
class StageDescriptor:
    """A future, offset-scheduled re-application of the reference package set."""

    stage_name: str
    offset_days: int
    scope: tuple[str, ...]
    filter: dict[str, JsonValue] = field(default_factory=dict)


@dataclass(frozen=True)
class AggregatedReference:
    """Canonical values derived once per run from the installation records."""

    reference_timestamp: datetime
    duration: str
    reboot_setting: str
    location: str
    tags: dict[str, JsonValue]
    windows_kb_ids: frozenset[str]
    linux_package_masks: frozenset[str]

    @property
    def package_count(self) -> int:
        return len(self.windows_kb_ids) + len(self.linux_package_masks)


@dataclass(frozen=True)
class StageWindow:
    """Maintenance window of a stage, truncated to minute precision in UTC."""

    start: datetime
    end: datetime

    WIRE_FORMAT = "%Y-%m-%d %H:%M"

    @property
    def start_text(self) -> str:
        return self.start.strftime(self.WIRE_FORMAT)

    @property
    def end_text(self) -> str:
        return self.end.strftime(self.WIRE_FORMAT)


@dataclass(frozen=True)
class RenderedConfiguration:
    """Maintenance configuration deployment ready for submission."""

    stage_name: str
    subscription_id: str
    resource_group: str
    resource_id: str
    window: StageWindow
    template: dict[str, JsonValue]


@dataclass(frozen=True)
class RenderedAssignment:
    """Configuration assignment request ready for submission."""

    stage_name: str
    scope: str
    assignment_name: str
    path: str
    body: dict[str, JsonValue]


@dataclass(frozen=True)
class StagePlan:
    """A rendered stage: one configuration and its ordered assignments."""

    configuration: RenderedConfiguration
    assignments: tuple[RenderedAssignment, ...]


@dataclass
class ConfigurationOutcome:
    """Outcome of deploying one stage maintenance configuration."""

    stage_name: str
    status: OutcomeStatus
    deployment_name: Optional[str] = None
    message: str = ""


@dataclass
class AssignmentOutcome:
    """Outcome of one configuration assignment request."""

    scope: str
    assignment_name: str
    status: OutcomeStatus
    status_code: Optional[int] = None
    message: str = ""


@dataclass
class StageOutcome:
    """Outcome of one stage: its configuration and every scope assignment."""

    stage_name: str
    configuration: ConfigurationOutcome
    assignments: list[AssignmentOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        if self.configuration.status != OutcomeStatus.SUCCEEDED:
            return False
        return all(outcome.status == OutcomeStatus.SUCCEEDED for outcome in self.assignments)


@dataclass
class RolloutReport:
    """Result of a staged rollout run."""

    reference_run_id: str
    records_found: int = 0
    reference: Optional[AggregatedReference] = None
    plans: list[StagePlan] = field(default_factory=list)
    stages: list[StageOutcome] = field(default_factory=list)
    dry_run: bool = False

    @property
    def stages_needed(self) -> bool:
        return self.reference is not None

    @property
    def succeeded(self) -> bool:
        return all(stage.succeeded for stage in self.stages)
