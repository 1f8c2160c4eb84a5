"""Azure authentication and subscription discovery.

The pipeline only needs an authenticated credential and the subscriptions to
search. In an automation account the credential resolves to the managed
identity; locally it falls back to the Azure CLI login.
"""

import asyncio
import logging
from typing import Optional

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError, ClientAuthenticationError
from azure.identity import CredentialUnavailableError, DefaultAzureCredential
from azure.mgmt.resource import SubscriptionClient

from azure_patch_rollout.config import ARM_SCOPE
from azure_patch_rollout.models import AuthenticationFailure

logger = logging.getLogger(__name__)


def get_credential(managed_identity_client_id: Optional[str] = None) -> TokenCredential:
    """Create the credential used for every Azure call.

    Args:
        managed_identity_client_id: Client id of a user-assigned managed identity

    Returns:
        A DefaultAzureCredential
    """
    if managed_identity_client_id:
        return DefaultAzureCredential(managed_identity_client_id=managed_identity_client_id)
    return DefaultAzureCredential()


def get_management_token(credential: TokenCredential) -> str:
    """Get a bearer token for Azure Resource Manager.

    Raises:
        AuthenticationFailure: If no token can be acquired
    """
    try:
        return credential.get_token(ARM_SCOPE).token
    except (CredentialUnavailableError, ClientAuthenticationError) as e:
        raise AuthenticationFailure(f"Unable to acquire a management token: {e}") from e


async def check_credential(credential: TokenCredential) -> bool:
    """Check that the credential can acquire a management token."""
    try:
        await asyncio.to_thread(get_management_token, credential)
        return True
    except AuthenticationFailure as e:
        logger.error(f"Credential check failed: {e}")
        return False


async def list_enabled_subscriptions(credential: TokenCredential) -> list[str]:
    """List the ids of all enabled subscriptions visible to the credential.

    Raises:
        AuthenticationFailure: If the subscriptions cannot be listed
    """
    client = SubscriptionClient(credential)

    def _list() -> list[str]:
        return [
            subscription.subscription_id
            for subscription in client.subscriptions.list()
            if subscription.state == "Enabled"
        ]

    try:
        subscriptions = await asyncio.to_thread(_list)
    except AzureError as e:
        raise AuthenticationFailure(f"Unable to list subscriptions: {e}") from e

    logger.info(f"Found {len(subscriptions)} enabled subscriptions")
    return subscriptions
