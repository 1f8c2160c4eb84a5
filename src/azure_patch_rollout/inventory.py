"""Installed patch inventory from Azure Resource Graph.

This module queries Resource Graph for the packages installed by the last run
of a reference maintenance configuration. Patch installation results are
joined with their installed software patches and with the configuration
itself, so every row carries the reference window, reboot policy, location
and tags next to the package.

Resource Graph returns at most one page per call, so results are always
collected page by page until a short page signals the end. Every page
re-evaluates the query, so rows are ordered on every projected column to keep
page boundaries stable.
"""

import asyncio
import logging
from typing import Any, Optional, Sequence

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError
from azure.mgmt.resourcegraph import ResourceGraphClient
from azure.mgmt.resourcegraph.models import QueryRequest, QueryRequestOptions, ResultFormat

from azure_patch_rollout.config import PAGE_SIZE
from azure_patch_rollout.models import InstallationRecord, QueryFailure
from azure_patch_rollout.resource_ids import parse_configuration_id

logger = logging.getLogger(__name__)

INSTALLED_STATE = "Installed"

INSTALLED_PATCHES_QUERY = """
patchinstallationresources
| where type in~ ("microsoft.compute/virtualmachines/patchinstallationresults", "microsoft.hybridcompute/machines/patchinstallationresults")
| extend maintenanceRunId = tolower(tostring(split(tostring(properties.maintenanceRunId), "?api-version")[0]))
| where maintenanceRunId == "{reference_run_id}"
| extend machineId = tostring(split(tolower(id), "/patchinstallationresults/")[0])
| project machineId, maintenanceRunId, osType = tostring(properties.osType), lastDeploymentStart = todatetime(properties.startDateTime)
| join kind=inner (
    patchinstallationresources
    | where type in~ ("microsoft.compute/virtualmachines/patchinstallationresults/softwarepatches", "microsoft.hybridcompute/machines/patchinstallationresults/softwarepatches")
    | where tostring(properties.installationState) == "{installed_state}"
    | extend machineId = tostring(split(tolower(id), "/patchinstallationresults/")[0])
    | project machineId, patchName = tostring(properties.patchName), patchVersion = tostring(properties.version), kbId = tostring(properties.kbId)
) on machineId
| join kind=inner (
    maintenanceresources
    | where type =~ "microsoft.maintenance/maintenanceconfigurations"
    | where tolower(id) == "{reference_run_id}"
    | project maintenanceRunId = tolower(id), maintenanceDuration = tostring(properties.maintenanceWindow.duration), rebootSetting = tostring(properties.installPatches.rebootSetting), location, mcTags = tostring(tags)
) on maintenanceRunId
| project osType, lastDeploymentStart, maintenanceDuration, patchName, patchVersion, kbId, rebootSetting, location, mcTags
| distinct osType, lastDeploymentStart, maintenanceDuration, patchName, patchVersion, kbId, rebootSetting, location, mcTags
| order by osType asc, patchName asc, patchVersion asc, kbId asc, lastDeploymentStart asc, maintenanceDuration asc, rebootSetting asc, location asc, mcTags asc
"""


def build_installed_patches_query(reference_run_id: str) -> str:
    """Build the installed patches query for a reference maintenance configuration.

    Args:
        reference_run_id: Resource id of the reference maintenance configuration

    Returns:
        The Resource Graph query

    Raises:
        InputError: If the id is not a maintenance configuration resource id
    """
    configuration = parse_configuration_id(reference_run_id)
    return INSTALLED_PATCHES_QUERY.format(
        reference_run_id=configuration.resource_id.lower(),
        installed_state=INSTALLED_STATE,
    ).strip()


class ResourceGraphInventory:
    """Client for querying installed patches through Azure Resource Graph."""

    def __init__(
        self,
        credential: Optional[TokenCredential] = None,
        page_size: int = PAGE_SIZE,
        client: Optional[ResourceGraphClient] = None,
    ):
        """Initialize the inventory client.

        Args:
            credential: Credential used to build a ResourceGraphClient
            page_size: Rows requested per page
            client: Pre-built ResourceGraphClient, mainly for tests
        """
        if client is None and credential is None:
            raise ValueError("Either a credential or a client is required")
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.client = client or ResourceGraphClient(credential)
        self.page_size = page_size

    async def fetch_page(self, query: str, subscriptions: Optional[Sequence[str]], skip: int) -> list[dict[str, Any]]:
        """Fetch one page of query results.

        Raises:
            QueryFailure: If the service errors or returns an unexpected shape
        """
        options = QueryRequestOptions(top=self.page_size, result_format=ResultFormat.OBJECT_ARRAY)
        if skip:
            options.skip = skip
        request = QueryRequest(
            subscriptions=list(subscriptions) if subscriptions else None,
            query=query,
            options=options,
        )

        try:
            response = await asyncio.to_thread(self.client.resources, request)
        except AzureError as e:
            logger.error(f"Resource Graph query failed at offset {skip}: {e}")
            raise QueryFailure(f"Resource Graph query failed: {e}") from e

        rows = getattr(response, "data", None)
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise QueryFailure(f"Unexpected Resource Graph response shape at offset {skip}")
        logger.debug(f"Fetched {len(rows)} rows at offset {skip}")
        return rows

    async def _collect_pages(
        self, query: str, subscriptions: Optional[Sequence[str]], accumulated: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        skip = 0
        while True:
            page = await self.fetch_page(query, subscriptions, skip)
            accumulated.extend(page)
            if len(page) < self.page_size:
                return accumulated
            skip += self.page_size

    async def query_all(self, query: str, subscriptions: Optional[Sequence[str]] = None) -> list[dict[str, Any]]:
        """Run a query and collect every page of results."""
        return await self._collect_pages(query, subscriptions, [])

    async def query_installed_patches(
        self, reference_run_id: str, subscriptions: Optional[Sequence[str]] = None
    ) -> list[InstallationRecord]:
        """Get the packages installed by the last run of a maintenance configuration.

        Args:
            reference_run_id: Resource id of the reference maintenance configuration
            subscriptions: Subscriptions to search (defaults to all accessible)

        Returns:
            Installation records in the order Resource Graph returned them

        Raises:
            InputError: If the reference id is malformed
            QueryFailure: If the query fails or returns malformed rows
        """
        query = build_installed_patches_query(reference_run_id)
        searched = f"{len(subscriptions)} subscriptions" if subscriptions else "all accessible subscriptions"
        logger.info(f"Querying installed patches for {reference_run_id} across {searched}")

        rows = await self.query_all(query, subscriptions)
        records = [InstallationRecord.from_row(row) for row in rows]

        logger.info(f"Found {len(records)} installed package records")
        return records
