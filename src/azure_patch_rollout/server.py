"""MCP server for Azure Patch Rollout.

This module defines the MCP server instance and the tool functions that
preview and run staged patch rollouts, so the pipeline can be driven from an
MCP client as well as from the batch command line.
"""

import asyncio
import logging
import sys
from typing import Any, Optional

from mcp.server.fastmcp import Context, FastMCP
from pydantic import Field

from azure_patch_rollout.auth import check_credential, get_credential
from azure_patch_rollout.config import INSTRUCTIONS, LOG_FORMAT, SERVER_INFO
from azure_patch_rollout.models import InconsistentReferenceData, InputError, QueryFailure, RolloutError
from azure_patch_rollout.pipeline import StagedRollout, report_to_document

logger = logging.getLogger("azure-patch-rollout")

_rollout: Optional[StagedRollout] = None


def get_rollout() -> StagedRollout:
    """Get the pipeline shared by the tools, creating it on first use."""
    global _rollout
    if _rollout is None:
        _rollout = StagedRollout.from_credential(get_credential())
    return _rollout


def run_startup_checks() -> None:
    """Run startup checks to ensure Azure credentials are available."""
    logger.info("Running startup checks...")
    if not asyncio.run(check_credential(get_credential())):
        logger.error("No Azure credential is available. Sign in with 'az login' or configure a managed identity.")
        sys.exit(1)
    logger.info("Azure credential is available")


mcp = FastMCP(
    SERVER_INFO["name"],
    instructions=INSTRUCTIONS,
)


async def _run(
    reference_run_id: str,
    stages_json: str,
    subscriptions: Optional[list[str]],
    dry_run: bool,
    ctx: Context | None,
) -> dict[str, Any]:
    action = "Previewing" if dry_run else "Running"
    logger.info(f"{action} staged rollout for {reference_run_id}")
    if ctx:
        await ctx.info(f"{action} staged rollout for {reference_run_id}")

    try:
        report = await get_rollout().run(reference_run_id, stages_json, subscriptions=subscriptions, dry_run=dry_run)
    except InputError as e:
        logger.warning(f"Invalid rollout input: {e}")
        return {"status": "error", "message": f"Invalid input: {str(e)}"}
    except (QueryFailure, InconsistentReferenceData) as e:
        logger.warning(f"Reference run could not be read: {e}")
        return {"status": "error", "message": f"Reference run error: {str(e)}"}
    except RolloutError as e:
        logger.error(f"Error in staged rollout: {e}")
        return {"status": "error", "message": str(e)}

    if ctx:
        if not report.stages_needed:
            await ctx.info("No installed packages found, no stages needed")
        elif report.succeeded:
            await ctx.info(f"{len(report.plans)} stages processed")
        else:
            await ctx.warning("Some stages or scopes failed")

    document = report_to_document(report)
    document["status"] = "success" if report.succeeded else "partial"
    return document


@mcp.tool()
async def preview_stage_rollout(
    reference_run_id: str = Field(description="Resource id of the reference maintenance configuration"),
    stages_json: str = Field(description="JSON array of stages with stageName, offsetDays, scope and filter"),
    subscriptions: Optional[list[str]] = Field(description="Subscriptions to search (defaults to all accessible)", default=None),
    ctx: Context | None = None,
) -> dict[str, Any]:
    """Render the stage maintenance configurations and assignments without deploying them.

    Queries the packages installed by the reference run, aggregates them into
    Windows KB and Linux package filters and renders every stage's
    configuration window and scope assignments.

    Returns:
        The rollout report with the aggregated reference and rendered plans
    """
    return await _run(reference_run_id, stages_json, subscriptions, True, ctx)


@mcp.tool()
async def run_stage_rollout(
    reference_run_id: str = Field(description="Resource id of the reference maintenance configuration"),
    stages_json: str = Field(description="JSON array of stages with stageName, offsetDays, scope and filter"),
    subscriptions: Optional[list[str]] = Field(description="Subscriptions to search (defaults to all accessible)", default=None),
    ctx: Context | None = None,
) -> dict[str, Any]:
    """Create or update the stage maintenance configurations and their scope assignments.

    Failed assignments are reported per scope and do not stop the other
    scopes or stages.

    Returns:
        The rollout report with per-stage and per-scope outcomes
    """
    return await _run(reference_run_id, stages_json, subscriptions, False, ctx)


def configure_logging(level: str) -> None:
    """Configure root logging to stderr, leaving stdout to the MCP transport."""
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stderr)])
