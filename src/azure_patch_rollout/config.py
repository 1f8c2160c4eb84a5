"""Configuration settings for Azure Patch Rollout.

This module contains configuration settings for the staged rollout pipeline
and the MCP server that exposes it.

Environment variables:
- PATCH_ROLLOUT_PAGE_SIZE: Rows requested per Resource Graph page (default: 1000)
- PATCH_ROLLOUT_ARM_ENDPOINT: Azure Resource Manager endpoint (default: "https://management.azure.com")
- PATCH_ROLLOUT_MAINTENANCE_API_VERSION: Microsoft.Maintenance API version (default: "2023-04-01")
- PATCH_ROLLOUT_STRICT_REFERENCE: Fail when reference records disagree (default: "false")
- PATCH_ROLLOUT_TRANSPORT: Transport protocol to use ("stdio" or "sse", default: "stdio")
- LOG_LEVEL: Root log level (default: "INFO")
"""

import os

# Server information
SERVER_INFO = {"name": "Azure Patch Rollout", "version": "1.0.0"}

# Resource Graph settings
PAGE_SIZE = int(os.environ.get("PATCH_ROLLOUT_PAGE_SIZE", "1000"))

# Azure Resource Manager settings
ARM_ENDPOINT = os.environ.get("PATCH_ROLLOUT_ARM_ENDPOINT", "https://management.azure.com").rstrip("/")
ARM_SCOPE = f"{ARM_ENDPOINT}/.default"
MAINTENANCE_API_VERSION = os.environ.get("PATCH_ROLLOUT_MAINTENANCE_API_VERSION", "2023-04-01")

# Aggregation settings
STRICT_REFERENCE = os.environ.get("PATCH_ROLLOUT_STRICT_REFERENCE", "false").lower() in ("1", "true", "yes")

# Transport protocol
TRANSPORT = os.environ.get("PATCH_ROLLOUT_TRANSPORT", "stdio")

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Fixed maintenance policy for every rendered stage
CLASSIFICATIONS_TO_INCLUDE = ["Critical", "Security"]
RECUR_EVERY = "Week"
WINDOW_TIME_ZONE = "UTC"
ASSIGNMENT_SUFFIX = "dynamicassignment1"

# Instructions displayed to client during initialization
INSTRUCTIONS = """
Azure Patch Rollout replicates the package set installed by a reference
maintenance run into later, offset maintenance windows ("stages").
- Use the preview_stage_rollout tool to render the stage configurations and
  assignments without deploying anything
- Use the run_stage_rollout tool to create or update the stage maintenance
  configurations and their dynamic scope assignments
- reference_run_id is the resource id of the maintenance configuration whose
  last run is used as the reference:
  /subscriptions/{id}/resourceGroups/{name}/providers/Microsoft.Maintenance/maintenanceConfigurations/{name}
- stages_json is a JSON array of objects with stageName, offsetDays, scope and filter
"""
