"""Source org access over the Salesforce REST API."""

import logging
from typing import Any, Dict, Optional

import requests
from simple_salesforce import Salesforce
from simple_salesforce.exceptions import SalesforceError, SalesforceResourceNotFound

from .base import BaseSourceOrg
from ..errors import RecordFetchError
from ..models.record import SourceRecord

logger = logging.getLogger(__name__)


class SalesforceSourceOrg(BaseSourceOrg):
    """Reads describe metadata and records from the source org."""

    def __init__(self, sf: Salesforce):
        """
        Initialize the source org client.

        Args:
            sf: Authenticated simple_salesforce connection
        """
        self.sf = sf

    def describe(self, object_type: str) -> Dict[str, Any]:
        """Describe an object type in the source org."""
        return getattr(self.sf, object_type).describe()

    def fetch_by_id(self, object_type: str, record_id: str) -> Optional[SourceRecord]:
        """Fetch one record with all of its fields."""
        try:
            data = getattr(self.sf, object_type).get(record_id)
        except SalesforceResourceNotFound:
            logger.debug(f"{object_type} {record_id} not found in source org")
            return None
        except (SalesforceError, requests.RequestException) as e:
            raise RecordFetchError(object_type, record_id, str(e)) from e

        return SourceRecord.from_api_record(data, object_type=object_type)
