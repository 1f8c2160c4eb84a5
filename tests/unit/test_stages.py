"""Tests for the stage generator module."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from azure_patch_rollout.models import InputError
from azure_patch_rollout.stages import (
    assignment_name,
    compute_window,
    generate_stage_plans,
    parse_stages,
    render_assignments,
    render_configuration,
)

SUB_1 = "/subscriptions/00000000-0000-0000-0000-00000000000a"
SUB_2 = "/subscriptions/00000000-0000-0000-0000-00000000000b"

TAG_FILTER = {
    "resourceTypes": ["microsoft.compute/virtualmachines"],
    "resourceGroups": ["rg-web", "rg-api"],
    "locations": ["westeurope"],
    "osTypes": ["Windows", "Linux"],
    "tagSettings": {"tags": {"ring": ["preprod", "canary"]}, "filterOperator": "Any"},
}


def _stages(*stages):
    return json.dumps(list(stages))


class TestParseStages:
    """Test stage descriptor parsing."""

    def test_parse_stages(self):
        """Test that stages keep order, scope order and the filter."""
        stages = parse_stages(
            _stages(
                {"stageName": "preprod", "offsetDays": 7, "scope": [SUB_1, SUB_2, SUB_1], "filter": TAG_FILTER},
                {"stageName": "prod", "offsetDays": 14, "scope": [SUB_2]},
            )
        )

        assert [stage.stage_name for stage in stages] == ["preprod", "prod"]
        assert stages[0].offset_days == 7
        assert stages[0].scope == (SUB_1, SUB_2, SUB_1)
        assert stages[0].filter == TAG_FILTER
        assert stages[1].filter == {}

    def test_parse_single_stage_object(self):
        """Test that a single stage object is accepted."""
        stages = parse_stages(json.dumps({"stageName": "prod", "offsetDays": 0, "scope": SUB_1}))

        assert len(stages) == 1
        assert stages[0].scope == (SUB_1,)

    @pytest.mark.parametrize(
        "document",
        [
            "not json",
            '"a string"',
            _stages({"offsetDays": 7, "scope": [SUB_1]}),
            _stages({"stageName": "bad name!", "offsetDays": 7, "scope": [SUB_1]}),
            _stages({"stageName": "prod", "offsetDays": -1, "scope": [SUB_1]}),
            _stages({"stageName": "prod", "offsetDays": "7", "scope": [SUB_1]}),
            _stages({"stageName": "prod", "offsetDays": True, "scope": [SUB_1]}),
            _stages({"stageName": "prod", "offsetDays": 7, "scope": []}),
            _stages({"stageName": "prod", "offsetDays": 7, "scope": [SUB_1], "filter": ["x"]}),
            _stages("prod"),
        ],
    )
    def test_parse_stages_invalid(self, document):
        """Test that malformed stage documents raise InputError."""
        with pytest.raises(InputError):
            parse_stages(document)


class TestComputeWindow:
    """Test stage window computation."""

    def test_window_offset(self):
        """Test a seven day offset from midnight."""
        window = compute_window(datetime(2024, 1, 1, tzinfo=timezone.utc), 7)

        assert window.start == datetime(2024, 1, 8, tzinfo=timezone.utc)
        assert window.end == datetime(2024, 1, 9, tzinfo=timezone.utc)
        assert window.start_text == "2024-01-08 00:00"
        assert window.end_text == "2024-01-09 00:00"

    def test_window_truncated_to_minute(self):
        """Test that seconds and fractions are dropped."""
        window = compute_window(datetime(2024, 3, 5, 22, 15, 59, 999999, tzinfo=timezone.utc), 0)

        assert window.start == datetime(2024, 3, 5, 22, 15, tzinfo=timezone.utc)
        assert window.end - window.start == timedelta(days=1)

    def test_window_converted_to_utc(self):
        """Test that non-UTC references are converted."""
        reference = datetime(2024, 1, 1, 2, 0, tzinfo=timezone(timedelta(hours=2)))
        window = compute_window(reference, 1)

        assert window.start_text == "2024-01-02 00:00"


def test_assignment_name_is_pure():
    """Test that the assignment name depends on the stage name only."""
    assert assignment_name("preprod") == "preproddynamicassignment1"
    assert assignment_name("preprod") == assignment_name("preprod")


class TestRendering:
    """Test configuration and assignment rendering."""

    def test_render_configuration(self, reference, reference_run_id):
        """Test the maintenance configuration template."""
        stage = parse_stages(_stages({"stageName": "preprod", "offsetDays": 7, "scope": [SUB_1]}))[0]

        configuration = render_configuration(reference, stage, reference_run_id)

        assert configuration.subscription_id == "00000000-0000-0000-0000-000000000001"
        assert configuration.resource_group == "rg-patching"
        assert configuration.resource_id == (
            "/subscriptions/00000000-0000-0000-0000-000000000001/resourceGroups/rg-patching"
            "/providers/Microsoft.Maintenance/maintenanceConfigurations/preprod"
        )

        resource = configuration.template["resources"][0]
        assert resource["type"] == "Microsoft.Maintenance/maintenanceConfigurations"
        assert resource["name"] == "preprod"
        assert resource["location"] == "westeurope"
        assert resource["tags"] == {"env": "reference"}

        properties = resource["properties"]
        assert properties["maintenanceScope"] == "InGuestPatch"
        patches = properties["installPatches"]
        assert patches["rebootSetting"] == "IfRequired"
        assert patches["windowsParameters"] == {
            "classificationsToInclude": ["Critical", "Security"],
            "kbNumbersToInclude": ["KB1", "KB2"],
            "kbNumbersToExclude": None,
        }
        assert patches["linuxParameters"] == {
            "classificationsToInclude": ["Critical", "Security"],
            "packageNameMasksToInclude": ["openssl=3.0.2-0ubuntu1.12"],
            "packageNameMasksToExclude": None,
        }
        assert properties["maintenanceWindow"] == {
            "startDateTime": "2024-01-08 00:00",
            "expirationDateTime": "2024-01-09 00:00",
            "duration": "03:55",
            "timeZone": "UTC",
            "recurEvery": "Week",
        }

    def test_render_assignments_keep_scope_order_and_filter(self, reference, reference_run_id):
        """Test one assignment per scope with the filter passed verbatim."""
        stage = parse_stages(
            _stages({"stageName": "preprod", "offsetDays": 7, "scope": [SUB_2, SUB_1, SUB_2], "filter": TAG_FILTER})
        )[0]
        configuration = render_configuration(reference, stage, reference_run_id)

        assignments = render_assignments(stage, configuration)

        assert [a.scope for a in assignments] == [SUB_2, SUB_1, SUB_2]
        assert {a.assignment_name for a in assignments} == {"preproddynamicassignment1"}
        assert assignments[1].path == (
            f"{SUB_1}/providers/Microsoft.Maintenance/configurationAssignments/preproddynamicassignment1"
        )
        assert assignments[1].body == {
            "properties": {
                "maintenanceConfigurationId": configuration.resource_id,
                "resourceId": SUB_1,
                "filter": TAG_FILTER,
            }
        }

    def test_generate_stage_plans_keeps_order_and_duplicates(self, reference, reference_run_id):
        """Test that stages are rendered in order without de-duplication."""
        stages = parse_stages(
            _stages(
                {"stageName": "prod", "offsetDays": 14, "scope": [SUB_2]},
                {"stageName": "preprod", "offsetDays": 7, "scope": [SUB_1, SUB_2]},
                {"stageName": "prod", "offsetDays": 21, "scope": [SUB_1]},
            )
        )

        plans = generate_stage_plans(reference, stages, reference_run_id)

        assert [plan.configuration.stage_name for plan in plans] == ["prod", "preprod", "prod"]
        assert [len(plan.assignments) for plan in plans] == [1, 2, 1]
        assert plans[0].configuration.window.start_text == "2024-01-15 00:00"
        assert plans[2].configuration.window.start_text == "2024-01-22 00:00"

    def test_render_is_deterministic(self, reference, reference_run_id):
        """Test that rendering twice yields identical descriptors."""
        stages = parse_stages(_stages({"stageName": "preprod", "offsetDays": 7, "scope": [SUB_1]}))

        first = generate_stage_plans(reference, stages, reference_run_id)
        second = generate_stage_plans(reference, stages, reference_run_id)

        assert first == second
