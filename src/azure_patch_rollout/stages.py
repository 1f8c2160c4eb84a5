"""Stage generation for staged patch rollouts.

Each stage re-applies the reference package set in a one-day maintenance
window offset from the reference run. A stage renders to one maintenance
configuration deployment, created next to the reference configuration, and
one dynamic scope assignment per target scope.
"""

import json
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

from azure_patch_rollout.config import (
    ASSIGNMENT_SUFFIX,
    CLASSIFICATIONS_TO_INCLUDE,
    MAINTENANCE_API_VERSION,
    RECUR_EVERY,
    WINDOW_TIME_ZONE,
)
from azure_patch_rollout.documents import JsonValue
from azure_patch_rollout.models import (
    AggregatedReference,
    InputError,
    RenderedAssignment,
    RenderedConfiguration,
    StageDescriptor,
    StagePlan,
    StageWindow,
)
from azure_patch_rollout.resource_ids import (
    MAINTENANCE_CONFIGURATION_TYPE,
    configuration_resource_id,
    parse_configuration_id,
)

logger = logging.getLogger(__name__)

DEPLOYMENT_TEMPLATE_SCHEMA = "https://schema.management.azure.com/schemas/2019-04-01/deploymentTemplate.json#"
CONFIGURATION_ASSIGNMENTS_PATH = "providers/Microsoft.Maintenance/configurationAssignments"

STAGE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


def _stage_from_dict(item: Any, position: int) -> StageDescriptor:
    if not isinstance(item, dict):
        raise InputError(f"Stage {position} must be an object")

    name = item.get("stageName")
    if not isinstance(name, str) or not STAGE_NAME_PATTERN.match(name):
        raise InputError(f"Stage {position} has an invalid stageName: {name!r}")

    offset = item.get("offsetDays")
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise InputError(f"Stage {name} offsetDays must be a non-negative integer, got {offset!r}")

    scope = item.get("scope")
    if isinstance(scope, str):
        scope = [scope]
    if not isinstance(scope, list) or not scope or not all(isinstance(s, str) and s.strip() for s in scope):
        raise InputError(f"Stage {name} scope must be a non-empty list of resource ids")

    stage_filter = item.get("filter")
    if stage_filter is None:
        stage_filter = {}
    if not isinstance(stage_filter, dict):
        raise InputError(f"Stage {name} filter must be an object")

    return StageDescriptor(
        stage_name=name,
        offset_days=offset,
        scope=tuple(s.strip().rstrip("/") for s in scope),
        filter=stage_filter,
    )


def parse_stages(stages_json: str) -> list[StageDescriptor]:
    """Parse the stage descriptor document.

    Args:
        stages_json: JSON array of objects with stageName, offsetDays, scope
            and filter

    Returns:
        Stage descriptors in document order

    Raises:
        InputError: If the document or any stage is malformed
    """
    try:
        document = json.loads(stages_json)
    except (TypeError, json.JSONDecodeError) as e:
        raise InputError(f"Stages are not valid JSON: {e}") from e

    if isinstance(document, dict):
        document = [document]
    if not isinstance(document, list):
        raise InputError("Stages must be a JSON array of stage objects")

    return [_stage_from_dict(item, position) for position, item in enumerate(document, start=1)]


def compute_window(reference_timestamp: datetime, offset_days: int) -> StageWindow:
    """Compute the one-day maintenance window of a stage.

    The window starts ``offset_days`` after the reference timestamp and ends
    one day later, both in UTC and truncated to the minute.
    """
    reference = reference_timestamp
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    reference = reference.astimezone(timezone.utc).replace(second=0, microsecond=0)
    return StageWindow(
        start=reference + timedelta(days=offset_days),
        end=reference + timedelta(days=offset_days + 1),
    )


def assignment_name(stage_name: str) -> str:
    """Name of the dynamic scope assignment of a stage."""
    return f"{stage_name}{ASSIGNMENT_SUFFIX}"


def render_configuration(
    reference: AggregatedReference, stage: StageDescriptor, reference_run_id: str
) -> RenderedConfiguration:
    """Render the maintenance configuration deployment of a stage.

    The configuration is created in the subscription and resource group of
    the reference configuration and named after the stage.

    Raises:
        InputError: If the reference run id is malformed
    """
    target = parse_configuration_id(reference_run_id)
    window = compute_window(reference.reference_timestamp, stage.offset_days)

    properties: dict[str, JsonValue] = {
        "maintenanceScope": "InGuestPatch",
        "extensionProperties": {"InGuestPatchMode": "User"},
        "installPatches": {
            "rebootSetting": reference.reboot_setting,
            "windowsParameters": {
                "classificationsToInclude": list(CLASSIFICATIONS_TO_INCLUDE),
                "kbNumbersToInclude": sorted(reference.windows_kb_ids),
                "kbNumbersToExclude": None,
            },
            "linuxParameters": {
                "classificationsToInclude": list(CLASSIFICATIONS_TO_INCLUDE),
                "packageNameMasksToInclude": sorted(reference.linux_package_masks),
                "packageNameMasksToExclude": None,
            },
        },
        "maintenanceWindow": {
            "startDateTime": window.start_text,
            "expirationDateTime": window.end_text,
            "duration": reference.duration,
            "timeZone": WINDOW_TIME_ZONE,
            "recurEvery": RECUR_EVERY,
        },
    }

    template: dict[str, JsonValue] = {
        "$schema": DEPLOYMENT_TEMPLATE_SCHEMA,
        "contentVersion": "1.0.0.0",
        "resources": [
            {
                "type": MAINTENANCE_CONFIGURATION_TYPE,
                "apiVersion": MAINTENANCE_API_VERSION,
                "name": stage.stage_name,
                "location": reference.location,
                "tags": dict(reference.tags),
                "properties": properties,
            }
        ],
    }

    return RenderedConfiguration(
        stage_name=stage.stage_name,
        subscription_id=target.subscription_id,
        resource_group=target.resource_group,
        resource_id=configuration_resource_id(target.subscription_id, target.resource_group, stage.stage_name),
        window=window,
        template=template,
    )


def render_assignments(stage: StageDescriptor, configuration: RenderedConfiguration) -> tuple[RenderedAssignment, ...]:
    """Render one dynamic scope assignment per scope of a stage, in scope order."""
    name = assignment_name(stage.stage_name)
    return tuple(
        RenderedAssignment(
            stage_name=stage.stage_name,
            scope=scope,
            assignment_name=name,
            path=f"{scope}/{CONFIGURATION_ASSIGNMENTS_PATH}/{name}",
            body={
                "properties": {
                    "maintenanceConfigurationId": configuration.resource_id,
                    "resourceId": scope,
                    "filter": stage.filter,
                }
            },
        )
        for scope in stage.scope
    )


def generate_stage_plans(
    reference: AggregatedReference, stages: Sequence[StageDescriptor], reference_run_id: str
) -> list[StagePlan]:
    """Render every stage in descriptor order.

    Stage names are neither reordered nor de-duplicated; a repeated name
    updates the same configuration when deployed.
    """
    plans = []
    for stage in stages:
        configuration = render_configuration(reference, stage, reference_run_id)
        assignments = render_assignments(stage, configuration)
        logger.info(
            f"Rendered stage {stage.stage_name}: window {configuration.window.start_text} - "
            f"{configuration.window.end_text} UTC, {len(assignments)} assignments"
        )
        plans.append(StagePlan(configuration=configuration, assignments=assignments))
    return plans
