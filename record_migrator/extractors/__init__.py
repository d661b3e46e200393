"""Source org access for relationship discovery."""

from .base import BaseSourceOrg
from .salesforce_extractor import SalesforceSourceOrg

__all__ = [
    "BaseSourceOrg",
    "SalesforceSourceOrg",
]
