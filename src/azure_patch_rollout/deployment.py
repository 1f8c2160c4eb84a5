"""Deployment of rendered stages to Azure.

Stage maintenance configurations are submitted as resource group scoped ARM
deployments; scope assignments are created with an idempotent PUT through the
generic resources API. Both are create-or-update operations, so running the
same stages again updates the existing resources.

A failed configuration skips that stage's assignments. A failed assignment is
recorded and the next scope is processed. Nothing is rolled back.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError, HttpResponseError
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.resource.resources.models import Deployment, DeploymentMode, DeploymentProperties, GenericResource

from azure_patch_rollout.config import ARM_ENDPOINT, ARM_SCOPE, MAINTENANCE_API_VERSION
from azure_patch_rollout.models import (
    AssignmentFailure,
    AssignmentOutcome,
    ConfigurationOutcome,
    DeploymentFailure,
    OutcomeStatus,
    RenderedAssignment,
    RenderedConfiguration,
    StageOutcome,
    StagePlan,
)
from azure_patch_rollout.resource_ids import parse_configuration_id

logger = logging.getLogger(__name__)

MAX_DEPLOYMENT_NAME_LENGTH = 64


def resource_client(credential: TokenCredential, subscription_id: str) -> ResourceManagementClient:
    """Create a ResourceManagementClient against the configured ARM endpoint."""
    return ResourceManagementClient(credential, subscription_id, base_url=ARM_ENDPOINT, credential_scopes=[ARM_SCOPE])


def deployment_name(stage_name: str, now: Optional[datetime] = None) -> str:
    """Build a unique ARM deployment name for a stage configuration.

    The timestamp suffix keeps deployment history entries apart across runs
    while the maintenance configuration keeps the stage name.
    """
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M%S")
    suffix = f"-{stamp}"
    return stage_name[: MAX_DEPLOYMENT_NAME_LENGTH - len(suffix)] + suffix


class ConfigurationDeployer:
    """Deploys maintenance configurations as resource group deployments."""

    def __init__(
        self,
        credential: TokenCredential,
        client_factory: Optional[Callable[[TokenCredential, str], ResourceManagementClient]] = None,
    ):
        self.credential = credential
        self.client_factory = client_factory or resource_client
        self.subscription_id: Optional[str] = None
        self.client: Optional[ResourceManagementClient] = None

    def use_subscription(self, subscription_id: str) -> ResourceManagementClient:
        """Switch the active subscription context when it differs."""
        if self.client is None or self.subscription_id != subscription_id:
            if self.subscription_id is not None:
                logger.info(f"Switching subscription context from {self.subscription_id} to {subscription_id}")
            self.client = self.client_factory(self.credential, subscription_id)
            self.subscription_id = subscription_id
        return self.client

    def _deploy(self, configuration: RenderedConfiguration, name: str) -> None:
        client = self.use_subscription(configuration.subscription_id)
        deployment = Deployment(
            properties=DeploymentProperties(mode=DeploymentMode.INCREMENTAL, template=configuration.template)
        )
        poller = client.deployments.begin_create_or_update(configuration.resource_group, name, deployment)
        poller.result()

    async def deploy(self, configuration: RenderedConfiguration) -> str:
        """Create or update a stage maintenance configuration.

        Returns:
            The deployment name used

        Raises:
            DeploymentFailure: If the deployment fails
        """
        name = deployment_name(configuration.stage_name)
        logger.info(
            f"Deploying maintenance configuration {configuration.stage_name} to resource group "
            f"{configuration.resource_group} in subscription {configuration.subscription_id} as {name}"
        )
        try:
            await asyncio.to_thread(self._deploy, configuration, name)
        except AzureError as e:
            raise DeploymentFailure(f"Deployment {name} failed: {e}") from e
        return name


def _status_and_body(pipeline_response, deserialized, headers) -> tuple[int, str]:
    response = pipeline_response.http_response
    return response.status_code, response.text()


class AssignmentClient:
    """Creates configuration assignments through the ARM generic resources API.

    Requests go through the azure-core pipeline of a ResourceManagementClient,
    which authenticates, retries throttled calls and polls until the
    assignment is provisioned.
    """

    def __init__(
        self,
        credential: TokenCredential,
        api_version: str = MAINTENANCE_API_VERSION,
        client_factory: Optional[Callable[[TokenCredential, str], ResourceManagementClient]] = None,
    ):
        self.credential = credential
        self.api_version = api_version
        self.client_factory = client_factory or resource_client
        self.clients: dict[str, ResourceManagementClient] = {}

    def client_for(self, assignment: RenderedAssignment) -> ResourceManagementClient:
        """Get the client for the subscription of the assigned configuration."""
        configuration_id = assignment.body["properties"]["maintenanceConfigurationId"]
        subscription_id = parse_configuration_id(configuration_id).subscription_id
        if subscription_id not in self.clients:
            self.clients[subscription_id] = self.client_factory(self.credential, subscription_id)
        return self.clients[subscription_id]

    def _put(self, assignment: RenderedAssignment) -> tuple[int, str]:
        poller = self.client_for(assignment).resources.begin_create_or_update_by_id(
            assignment.path,
            self.api_version,
            GenericResource(properties=assignment.body["properties"]),
            cls=_status_and_body,
        )
        return poller.result()

    async def put(self, assignment: RenderedAssignment) -> tuple[int, str]:
        """Create or update an assignment.

        Returns:
            The HTTP status code and response body

        Raises:
            AssignmentFailure: If the service rejects the assignment or the
                request could not be sent
        """
        try:
            return await asyncio.to_thread(self._put, assignment)
        except HttpResponseError as e:
            body = e.response.text() if e.response is not None else str(e)
            raise AssignmentFailure(assignment.scope, e.status_code, body) from e
        except AzureError as e:
            raise AssignmentFailure(assignment.scope, None, str(e)) from e


class DeploymentDriver:
    """Submits rendered stages, tolerating per-stage and per-scope failures."""

    def __init__(self, deployer: ConfigurationDeployer, assignments: AssignmentClient):
        self.deployer = deployer
        self.assignments = assignments

    @classmethod
    def from_credential(cls, credential: TokenCredential) -> "DeploymentDriver":
        return cls(ConfigurationDeployer(credential), AssignmentClient(credential))

    @staticmethod
    def _failed(assignment: RenderedAssignment, failure: AssignmentFailure) -> AssignmentOutcome:
        logger.error(
            f"Assignment {assignment.assignment_name} for scope {failure.scope} failed "
            f"with status {failure.status_code}: {failure.body}"
        )
        return AssignmentOutcome(
            scope=assignment.scope,
            assignment_name=assignment.assignment_name,
            status=OutcomeStatus.FAILED,
            status_code=failure.status_code,
            message=failure.body,
        )

    async def assign(self, assignment: RenderedAssignment) -> AssignmentOutcome:
        """Submit one assignment and report its outcome."""
        try:
            status_code, _ = await self.assignments.put(assignment)
        except AssignmentFailure as e:
            return self._failed(assignment, e)

        logger.info(f"Assignment {assignment.assignment_name} for scope {assignment.scope} succeeded with status {status_code}")
        return AssignmentOutcome(
            scope=assignment.scope,
            assignment_name=assignment.assignment_name,
            status=OutcomeStatus.SUCCEEDED,
            status_code=status_code,
        )

    async def deploy_plan(self, plan: StagePlan) -> StageOutcome:
        """Deploy one stage configuration and then each of its assignments."""
        stage_name = plan.configuration.stage_name
        logger.info(f"Creating or updating stage {stage_name}")

        try:
            name = await self.deployer.deploy(plan.configuration)
        except DeploymentFailure as e:
            logger.error(f"Stage {stage_name} configuration failed, skipping {len(plan.assignments)} assignments: {e}")
            return StageOutcome(
                stage_name=stage_name,
                configuration=ConfigurationOutcome(stage_name=stage_name, status=OutcomeStatus.FAILED, message=str(e)),
                assignments=[
                    AssignmentOutcome(
                        scope=assignment.scope,
                        assignment_name=assignment.assignment_name,
                        status=OutcomeStatus.SKIPPED,
                        message="Configuration deployment failed",
                    )
                    for assignment in plan.assignments
                ],
            )

        outcome = StageOutcome(
            stage_name=stage_name,
            configuration=ConfigurationOutcome(stage_name=stage_name, status=OutcomeStatus.SUCCEEDED, deployment_name=name),
        )
        for assignment in plan.assignments:
            outcome.assignments.append(await self.assign(assignment))

        failed = sum(1 for a in outcome.assignments if a.status != OutcomeStatus.SUCCEEDED)
        logger.info(f"Stage {stage_name} finished: {len(outcome.assignments) - failed} assignments succeeded, {failed} failed")
        return outcome

    async def deploy_plans(self, plans: Sequence[StagePlan]) -> list[StageOutcome]:
        """Deploy stages one after another in order."""
        outcomes = []
        for plan in plans:
            outcomes.append(await self.deploy_plan(plan))
        return outcomes
