"""Helpers for Azure resource identifiers."""

import re
from dataclasses import dataclass

from azure_patch_rollout.models import InputError

MAINTENANCE_CONFIGURATION_TYPE = "Microsoft.Maintenance/maintenanceConfigurations"

# /subscriptions/{id}/resourceGroups/{name}/providers/Microsoft.Maintenance/maintenanceConfigurations/{name}
_CONFIGURATION_ID_PATTERN = re.compile(
    r"^/subscriptions/(?P<subscription>[0-9A-Za-z-]+)"
    r"/resourceGroups/(?P<group>[-\w.()]+)"
    r"/providers/Microsoft\.Maintenance/maintenanceConfigurations/(?P<name>[-\w.]+)$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ConfigurationId:
    """Parsed maintenance configuration resource id."""

    subscription_id: str
    resource_group: str
    name: str

    @property
    def resource_id(self) -> str:
        return configuration_resource_id(self.subscription_id, self.resource_group, self.name)


def parse_configuration_id(resource_id: str) -> ConfigurationId:
    """Parse a maintenance configuration resource id.

    The subscription is path segment 2 and the resource group path segment 4.

    Raises:
        InputError: If the id does not have the maintenance configuration shape
    """
    match = _CONFIGURATION_ID_PATTERN.match((resource_id or "").strip().rstrip("/"))
    if not match:
        raise InputError(f"Not a maintenance configuration resource id: {resource_id!r}")
    segments = match.group(0).split("/")
    return ConfigurationId(subscription_id=segments[2], resource_group=segments[4], name=match.group("name"))


def configuration_resource_id(subscription_id: str, resource_group: str, name: str) -> str:
    """Build the resource id of a maintenance configuration."""
    return f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}/providers/{MAINTENANCE_CONFIGURATION_TYPE}/{name}"
