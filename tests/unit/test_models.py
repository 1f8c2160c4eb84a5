"""Tests for the data models and document helpers."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

import pytest

from azure_patch_rollout.documents import dumps_document, to_document
from azure_patch_rollout.models import (
    AssignmentFailure,
    InstallationRecord,
    OsType,
    QueryFailure,
    parse_timestamp,
)
from azure_patch_rollout.resource_ids import parse_configuration_id


class TestInstallationRecord:
    """Test InstallationRecord.from_row."""

    def test_from_row(self, row_factory):
        """Test converting a Resource Graph row."""
        record = InstallationRecord.from_row(row_factory(osType="windows", kbId="KB5034441"))

        assert record.os_type == OsType.WINDOWS
        assert record.kb_id == "KB5034441"
        assert record.last_deployment_start == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert record.mc_tags == '{"env":"reference"}'

    def test_from_row_optional_columns(self, row_factory):
        """Test that empty optional columns become empty strings."""
        record = InstallationRecord.from_row(row_factory(kbId=None, patchVersion=None, mcTags=None))

        assert record.kb_id == ""
        assert record.patch_version == ""
        assert record.mc_tags == ""

    def test_from_row_unknown_os(self, row_factory):
        """Test that unknown OS types are rejected."""
        with pytest.raises(QueryFailure):
            InstallationRecord.from_row(row_factory(osType="Solaris"))

    def test_from_row_bad_timestamp(self, row_factory):
        """Test that unparseable timestamps are rejected."""
        with pytest.raises(QueryFailure):
            InstallationRecord.from_row(row_factory(lastDeploymentStart="yesterday"))

    def test_from_row_not_a_dict(self):
        """Test that non-object rows are rejected."""
        with pytest.raises(QueryFailure):
            InstallationRecord.from_row(["Windows", "2024-01-01"])


def test_parse_timestamp_variants():
    """Test timestamp formats returned by Resource Graph."""
    expected = datetime(2024, 1, 1, 6, 30, 15, 123456, tzinfo=timezone.utc)

    assert parse_timestamp("2024-01-01T06:30:15.1234567Z") == expected
    assert parse_timestamp("2024-01-01T08:30:15.123456+02:00") == expected
    assert parse_timestamp("2024-01-01T06:30:15.123456") == expected
    assert parse_timestamp(datetime(2024, 1, 1, 6, 30, 15, 123456)) == expected


@pytest.mark.parametrize(
    "text,microsecond",
    [
        ("2024-01-01T06:30:15.1Z", 100000),
        ("2024-01-01T06:30:15.12Z", 120000),
        ("2024-01-01T06:30:15.1234Z", 123400),
        ("2024-01-01T06:30:15.12345Z", 123450),
        ("2024-01-01T06:30:15Z", 0),
    ],
)
def test_parse_timestamp_short_fractions(text, microsecond):
    """Test that fractions shorter than six digits are padded."""
    assert parse_timestamp(text) == datetime(2024, 1, 1, 6, 30, 15, microsecond, tzinfo=timezone.utc)


def test_parse_configuration_id(reference_run_id):
    """Test that subscription and resource group come from segments 2 and 4."""
    parsed = parse_configuration_id(reference_run_id)

    assert parsed.subscription_id == "00000000-0000-0000-0000-000000000001"
    assert parsed.resource_group == "rg-patching"
    assert parsed.name == "mc-reference"
    assert parsed.resource_id == reference_run_id


def test_assignment_failure_message():
    """Test the assignment failure description."""
    failure = AssignmentFailure("/subscriptions/sub-1", 403, "AuthorizationFailed")

    assert failure.status_code == 403
    assert "403" in str(failure)
    assert "AuthorizationFailed" in str(failure)


class Color(Enum):
    RED = "red"


@dataclass
class Sample:
    name: str
    color: Color
    when: datetime
    labels: frozenset
    items: tuple


def test_to_document():
    """Test conversion of pipeline types into JSON values."""
    sample = Sample(
        name="stage",
        color=Color.RED,
        when=datetime(2024, 1, 8, tzinfo=timezone.utc),
        labels=frozenset({"b", "a"}),
        items=(1, {"nested": [True, None]}),
    )

    assert to_document(sample) == {
        "name": "stage",
        "color": "red",
        "when": "2024-01-08T00:00:00+00:00",
        "labels": ["a", "b"],
        "items": [1, {"nested": [True, None]}],
    }


def test_to_document_rejects_unknown_types():
    """Test that unsupported values are refused."""
    with pytest.raises(TypeError):
        to_document({"value": object()})

    with pytest.raises(TypeError):
        to_document({1: "non-string key"})


def test_dumps_document():
    """Test serialization at the boundary."""
    assert dumps_document({"filter": {"tagSettings": {"filterOperator": "All"}}}) == (
        '{"filter": {"tagSettings": {"filterOperator": "All"}}}'
    )
