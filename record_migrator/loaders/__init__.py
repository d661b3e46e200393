"""Target org clients."""

from .base import BaseTargetStore, CreateOutcome, UpdateOutcome
from .dry_run_loader import DryRunTargetStore
from .salesforce_loader import SalesforceTargetStore

__all__ = [
    "BaseTargetStore",
    "CreateOutcome",
    "UpdateOutcome",
    "DryRunTargetStore",
    "SalesforceTargetStore",
]
