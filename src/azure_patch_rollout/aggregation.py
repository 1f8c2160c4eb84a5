"""Aggregation of installation records into a rollout reference.

The reference configuration's scalar properties (start time, duration, reboot
setting, location and tags) are the same on every record of a run and are
taken from the first record. Packages are reduced to two inclusion filters:
Windows KB ids and Linux ``name=version`` masks.

Linux versions are compared with a natural ordering: a version is split into
runs of digits and non-digits and digit runs are compared as integers, so
``1.10`` is newer than ``1.9``.
"""

import json
import logging
import re
from collections import defaultdict
from typing import Optional, Sequence

from azure_patch_rollout.documents import JsonValue
from azure_patch_rollout.models import (
    AggregatedReference,
    InconsistentReferenceData,
    InstallationRecord,
    OsType,
    QueryFailure,
)

logger = logging.getLogger(__name__)

_VERSION_TOKEN = re.compile(r"(\d+)")

REFERENCE_FIELDS = (
    "last_deployment_start",
    "maintenance_duration",
    "reboot_setting",
    "location",
    "mc_tags",
)


def version_key(version: str) -> tuple[tuple[tuple[int, int, str], ...], str]:
    """Sort key implementing the natural version ordering.

    Digit runs sort as integers and above any text run at the same position.
    The raw string is the final tie breaker so distinct versions never
    compare equal.
    """
    tokens = []
    for part in _VERSION_TOKEN.split(version):
        if not part:
            continue
        if part.isdigit():
            tokens.append((1, int(part), ""))
        else:
            tokens.append((0, 0, part))
    return tuple(tokens), version


def newest_version(versions: Sequence[str]) -> str:
    """Return the greatest version under the natural ordering."""
    return sorted(versions, key=version_key, reverse=True)[0]


def parse_tags(raw: str) -> dict[str, JsonValue]:
    """Parse the JSON encoded tag map of the reference configuration.

    Raises:
        QueryFailure: If the tags are not a JSON object
    """
    if not raw or not raw.strip():
        return {}
    try:
        tags = json.loads(raw)
    except json.JSONDecodeError as e:
        raise QueryFailure(f"Reference tags are not valid JSON: {e}") from e
    if tags is None:
        return {}
    if not isinstance(tags, dict):
        raise QueryFailure(f"Reference tags must be a JSON object, got {type(tags).__name__}")
    return tags


def find_inconsistencies(records: Sequence[InstallationRecord]) -> dict[str, list[str]]:
    """Find scalar reference fields on which the records disagree.

    Returns:
        Field name to the distinct observed values, in first-seen order
    """
    divergent: dict[str, list[str]] = {}
    for name in REFERENCE_FIELDS:
        seen: list[str] = []
        for record in records:
            value = str(getattr(record, name))
            if value not in seen:
                seen.append(value)
        if len(seen) > 1:
            divergent[name] = seen
    return divergent


def linux_package_masks(records: Sequence[InstallationRecord]) -> frozenset[str]:
    """Build ``name=version`` masks using the newest version of each package.

    Rows without a version cannot form a mask and are skipped with a warning.
    """
    versions: dict[str, list[str]] = defaultdict(list)
    for record in records:
        if record.os_type != OsType.LINUX:
            continue
        if not record.patch_version:
            logger.warning(f"Skipping Linux package {record.patch_name} with no installed version")
            continue
        versions[record.patch_name].append(record.patch_version)
    return frozenset(f"{name}={newest_version(observed)}" for name, observed in versions.items())


def windows_kb_ids(records: Sequence[InstallationRecord]) -> frozenset[str]:
    """Collect the non-empty KB ids of Windows records."""
    return frozenset(record.kb_id for record in records if record.os_type == OsType.WINDOWS and record.kb_id)


def aggregate_records(records: Sequence[InstallationRecord], strict: bool = False) -> Optional[AggregatedReference]:
    """Reduce installation records to one aggregated reference.

    Args:
        records: Records of one reference run
        strict: Raise instead of warning when scalar reference fields disagree

    Returns:
        The aggregated reference, or None when there are no records and no
        stages are needed

    Raises:
        InconsistentReferenceData: In strict mode, if reference fields disagree
        QueryFailure: If the reference tags are malformed
    """
    if not records:
        logger.info("No installed packages found for the reference run")
        return None

    divergent = find_inconsistencies(records)
    if divergent:
        if strict:
            raise InconsistentReferenceData(divergent)
        for name, values in divergent.items():
            logger.warning(f"Reference records disagree on {name}: {values}; using {values[0]!r}")

    first = records[0]
    kb_ids = windows_kb_ids(records)
    masks = linux_package_masks(records)
    logger.info(f"Aggregated {len(kb_ids)} Windows KBs and {len(masks)} Linux packages")

    return AggregatedReference(
        reference_timestamp=first.last_deployment_start,
        duration=first.maintenance_duration,
        reboot_setting=first.reboot_setting,
        location=first.location,
        tags=parse_tags(first.mc_tags),
        windows_kb_ids=kb_ids,
        linux_package_masks=masks,
    )
