"""Azure Patch Rollout.

Staged rollout of Azure Update Manager patch policies: the packages installed
by a reference maintenance run are re-applied in later, offset maintenance
windows scoped to other subscriptions and resources.
"""

__version__ = "1.0.0"
