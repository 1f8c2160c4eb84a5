"""Configuration for pytest."""

import os
from datetime import datetime, timezone

import pytest

from azure_patch_rollout.models import AggregatedReference

REFERENCE_RUN_ID = (
    "/subscriptions/00000000-0000-0000-0000-000000000001/resourceGroups/rg-patching"
    "/providers/Microsoft.Maintenance/maintenanceConfigurations/mc-reference"
)


def pytest_addoption(parser):
    """Add command-line options to pytest."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests that require Azure credentials and a reference maintenance configuration",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: mark test as requiring Azure credentials")


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified."""
    if config.getoption("--run-integration"):
        # Run all tests
        return

    skip_integration = pytest.mark.skip(reason="Integration tests need --run-integration option")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def make_row(**overrides):
    """Build one installed patches row as Resource Graph returns it."""
    row = {
        "osType": "Windows",
        "lastDeploymentStart": "2024-01-01T00:00:00Z",
        "maintenanceDuration": "03:55",
        "patchName": "2024-01 Cumulative Update",
        "patchVersion": "",
        "kbId": "KB1",
        "rebootSetting": "IfRequired",
        "location": "westeurope",
        "mcTags": '{"env":"reference"}',
    }
    row.update(overrides)
    return row


@pytest.fixture
def row_factory():
    """Factory for installed patches rows."""
    return make_row


@pytest.fixture
def reference_run_id():
    """Resource id of the reference maintenance configuration."""
    return REFERENCE_RUN_ID


@pytest.fixture
def reference():
    """Aggregated reference with both OS families."""
    return AggregatedReference(
        reference_timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        duration="03:55",
        reboot_setting="IfRequired",
        location="westeurope",
        tags={"env": "reference"},
        windows_kb_ids=frozenset({"KB2", "KB1"}),
        linux_package_masks=frozenset({"openssl=3.0.2-0ubuntu1.12"}),
    )


@pytest.fixture
def reference_run_from_env():
    """Return the reference run id to use for integration tests.

    This fixture requires PATCH_ROLLOUT_TEST_REFERENCE_RUN_ID environment variable to be set.
    """
    run_id = os.environ.get("PATCH_ROLLOUT_TEST_REFERENCE_RUN_ID")
    if not run_id:
        pytest.skip("PATCH_ROLLOUT_TEST_REFERENCE_RUN_ID environment variable not set")
    return run_id


@pytest.fixture
def ensure_azure_credentials():
    """Ensure Azure credentials are configured."""
    if not (os.environ.get("AZURE_CLIENT_ID") or os.path.exists(os.path.expanduser("~/.azure/azureProfile.json"))):
        pytest.skip("Azure credentials not configured")
