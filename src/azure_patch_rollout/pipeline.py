"""Staged rollout pipeline.

Ties the pipeline together: stage descriptors are parsed first so malformed
input fails before any Azure call, then the reference run is queried,
aggregated, rendered into stage plans and deployed stage by stage.
"""

import logging
from typing import Any, Optional, Sequence

from azure.core.credentials import TokenCredential

from azure_patch_rollout.aggregation import aggregate_records
from azure_patch_rollout.config import STRICT_REFERENCE
from azure_patch_rollout.deployment import DeploymentDriver
from azure_patch_rollout.documents import to_document
from azure_patch_rollout.inventory import ResourceGraphInventory
from azure_patch_rollout.models import RolloutReport
from azure_patch_rollout.resource_ids import parse_configuration_id
from azure_patch_rollout.stages import generate_stage_plans, parse_stages

logger = logging.getLogger(__name__)


class StagedRollout:
    """Replicates a reference run's package set into offset stages."""

    def __init__(
        self,
        inventory: ResourceGraphInventory,
        driver: Optional[DeploymentDriver] = None,
        strict: bool = STRICT_REFERENCE,
    ):
        """Initialize the pipeline.

        Args:
            inventory: Resource Graph inventory used to find installed packages
            driver: Deployment driver, only needed when not running dry
            strict: Fail when reference records disagree on scalar fields
        """
        self.inventory = inventory
        self.driver = driver
        self.strict = strict

    @classmethod
    def from_credential(cls, credential: TokenCredential, strict: bool = STRICT_REFERENCE) -> "StagedRollout":
        return cls(ResourceGraphInventory(credential), DeploymentDriver.from_credential(credential), strict=strict)

    async def run(
        self,
        reference_run_id: str,
        stages_json: str,
        subscriptions: Optional[Sequence[str]] = None,
        dry_run: bool = False,
    ) -> RolloutReport:
        """Run the staged rollout.

        Args:
            reference_run_id: Resource id of the reference maintenance configuration
            stages_json: JSON array of stage descriptors
            subscriptions: Subscriptions to search for installation results
            dry_run: Render the stages without deploying them

        Returns:
            Report with the aggregated reference, the rendered plans and, unless
            dry_run is set, the per-stage outcomes

        Raises:
            InputError: If the stages or the reference id are malformed
            QueryFailure: If the inventory query fails
            InconsistentReferenceData: In strict mode, if reference records disagree
        """
        stages = parse_stages(stages_json)
        parse_configuration_id(reference_run_id)
        if not dry_run and self.driver is None:
            raise ValueError("A deployment driver is required unless dry_run is set")

        report = RolloutReport(reference_run_id=reference_run_id, dry_run=dry_run)
        logger.info(f"Starting staged rollout of {reference_run_id} with {len(stages)} stages")

        records = await self.inventory.query_installed_patches(reference_run_id, subscriptions)
        report.records_found = len(records)

        reference = aggregate_records(records, strict=self.strict)
        if reference is None:
            logger.info("No further stages needed")
            return report
        report.reference = reference
        logger.info(
            f"Reference run started {reference.reference_timestamp.isoformat()} with "
            f"{len(reference.windows_kb_ids)} Windows KBs and {len(reference.linux_package_masks)} Linux packages"
        )

        report.plans = generate_stage_plans(reference, stages, reference_run_id)
        if dry_run:
            logger.info(f"Dry run, rendered {len(report.plans)} stages without deploying")
            return report

        report.stages = await self.driver.deploy_plans(report.plans)
        failed = [stage.stage_name for stage in report.stages if not stage.succeeded]
        if failed:
            logger.warning(f"Staged rollout finished with failures in stages: {', '.join(failed)}")
        else:
            logger.info(f"Staged rollout finished, {len(report.stages)} stages created or updated")
        return report


def report_to_document(report: RolloutReport) -> dict[str, Any]:
    """Convert a report into a JSON document for CLI and tool output."""
    document = to_document(report)
    document["stages_needed"] = report.stages_needed
    document["succeeded"] = report.succeeded
    return document
