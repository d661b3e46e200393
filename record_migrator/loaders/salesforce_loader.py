"""Salesforce target org client."""

import time
import logging
import threading
from typing import Any, Dict, List, Optional

import requests
from simple_salesforce import Salesforce
from simple_salesforce.exceptions import (
    SalesforceAuthenticationFailed,
    SalesforceError,
    SalesforceExpiredSession,
    SalesforceGeneralError,
    SalesforceRefusedRequest,
)
from simple_salesforce.format import format_soql

from .base import BaseTargetStore, CreateOutcome, UpdateOutcome
from ..errors import TargetStoreUnavailableError

logger = logging.getLogger(__name__)

# sObject Collections accept at most 200 records per request
MAX_COLLECTION_SIZE = 200


class SalesforceTargetStore(BaseTargetStore):
    """
    Target org client on the REST API.

    Creates go through sObject Collections with allOrNone=false, so one
    record's failure never rolls back its siblings in the same request.
    """

    def __init__(
        self,
        sf: Salesforce,
        target_name: str = "target",
        batch_size: int = 200,
        rate_limit: float = 0.0,  # Requests per second, 0 for unlimited
        allow_duplicates: bool = False
    ):
        """
        Initialize the target store.

        Args:
            sf: Authenticated simple_salesforce connection to the target org
            target_name: Name of the target org, for logs and reports
            batch_size: Records per create request (capped at 200)
            rate_limit: Max requests per second
            allow_duplicates: Save records even when duplicate rules match
        """
        super().__init__(target_name, min(batch_size, MAX_COLLECTION_SIZE))
        self.sf = sf
        self.rate_limit = rate_limit
        self.headers: Dict[str, str] = {}
        if allow_duplicates:
            self.headers["Sforce-Duplicate-Rule-Header"] = "allowSave=true"
        self._last_request_time = 0.0
        self._rate_lock = threading.Lock()

    def _rate_limit_wait(self):
        """Wait to respect rate limits."""
        if self.rate_limit <= 0:
            return
        with self._rate_lock:
            elapsed = time.time() - self._last_request_time
            wait_time = (1.0 / self.rate_limit) - elapsed
            if wait_time > 0:
                time.sleep(wait_time)
            self._last_request_time = time.time()

    def create_many(self, object_type: str, payloads: List[Dict[str, Any]]) -> List[CreateOutcome]:
        """Create records in chunks of at most batch_size."""
        outcomes: List[CreateOutcome] = []

        for i in range(0, len(payloads), self.batch_size):
            chunk = payloads[i:i + self.batch_size]
            outcomes.extend(self._create_chunk(object_type, chunk))

        return outcomes

    def _create_chunk(self, object_type: str, chunk: List[Dict[str, Any]]) -> List[CreateOutcome]:
        body = {
            "allOrNone": False,
            "records": [dict(payload, attributes={"type": object_type}) for payload in chunk],
        }

        self._rate_limit_wait()

        try:
            response = self.sf.restful(
                "composite/sobjects", method="POST", json=body, headers=self.headers
            )
        except (SalesforceExpiredSession, SalesforceAuthenticationFailed) as e:
            raise TargetStoreUnavailableError(f"Target org session is no longer valid: {e}", e) from e
        except requests.RequestException as e:
            raise TargetStoreUnavailableError(f"Target org unreachable: {e}", e) from e
        except SalesforceError as e:
            _raise_if_unavailable(e)
            # The whole request was rejected; every record in it failed
            message = _error_message(e)
            logger.error(f"Create request for {len(chunk)} {object_type} records rejected: {message}")
            return [CreateOutcome(error=message) for _ in chunk]

        results = response or []
        outcomes = []
        for index in range(len(chunk)):
            if index >= len(results):
                outcomes.append(CreateOutcome(error="No result returned for record"))
                continue
            item = results[index]
            if item.get("success"):
                outcomes.append(CreateOutcome(target_id=item.get("id")))
            else:
                errors = item.get("errors") or []
                outcomes.append(CreateOutcome(
                    error="; ".join(_format_api_error(err) for err in errors) or "Unknown error",
                    error_code=errors[0].get("statusCode") if errors else None,
                ))
        return outcomes

    def update_by_id(self, object_type: str, target_id: str, fields: Dict[str, Any]) -> UpdateOutcome:
        """Update fields on an existing target record."""
        self._rate_limit_wait()

        try:
            getattr(self.sf, object_type).update(target_id, fields, headers=self.headers)
        except (SalesforceExpiredSession, SalesforceAuthenticationFailed) as e:
            raise TargetStoreUnavailableError(f"Target org session is no longer valid: {e}", e) from e
        except requests.RequestException as e:
            raise TargetStoreUnavailableError(f"Target org unreachable: {e}", e) from e
        except SalesforceError as e:
            _raise_if_unavailable(e)
            return UpdateOutcome(success=False, error=_error_message(e))

        return UpdateOutcome(success=True)

    def query_by_field(
        self,
        object_type: str,
        field_name: str,
        value: Any,
        filters: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        """Find the id of the target record whose field equals value."""
        soql = format_soql(
            "SELECT Id FROM {object_type:literal} WHERE {field_name:literal} = {value}",
            object_type=object_type,
            field_name=field_name,
            value=value,
        )
        for filter_field, filter_value in sorted((filters or {}).items()):
            soql += format_soql(
                " AND {filter_field:literal} = {filter_value}",
                filter_field=filter_field,
                filter_value=filter_value,
            )
        soql += " LIMIT 2"

        self._rate_limit_wait()

        try:
            result = self.sf.query(soql)
        except (SalesforceExpiredSession, SalesforceAuthenticationFailed) as e:
            raise TargetStoreUnavailableError(f"Target org session is no longer valid: {e}", e) from e
        except requests.RequestException as e:
            raise TargetStoreUnavailableError(f"Target org unreachable: {e}", e) from e
        except SalesforceError as e:
            _raise_if_unavailable(e)
            # A malformed lookup (e.g. an id of the wrong shape) matches nothing
            logger.warning(f"Lookup {object_type}.{field_name} = {value!r} failed: {_error_message(e)}")
            return None

        records = result.get("records", [])
        if not records:
            return None
        if len(records) > 1:
            logger.warning(
                f"{object_type}.{field_name} = {value!r} matches several target records; using {records[0]['Id']}"
            )
        return records[0]["Id"]

    def validate_connection(self) -> bool:
        """Validate connection to the target org."""
        try:
            self.sf.restful("limits")
            return True
        except (SalesforceError, requests.RequestException) as e:
            logger.error(f"Target org connection validation failed: {e}")
            return False


def _format_api_error(error: Dict[str, Any]) -> str:
    message = error.get("message", "")
    code = error.get("statusCode") or error.get("errorCode")
    fields = error.get("fields") or []
    text = f"{code}: {message}" if code else message
    if fields:
        text += f" (fields: {', '.join(fields)})"
    return text


def _error_message(error: SalesforceError) -> str:
    content = getattr(error, "content", None)
    if isinstance(content, list) and content and isinstance(content[0], dict):
        return "; ".join(_format_api_error(item) for item in content)
    return str(error)


def _raise_if_unavailable(error: SalesforceError):
    """Server-side outages and exhausted API limits end the run rather than fail records."""
    if isinstance(error, SalesforceGeneralError) and error.status >= 500:
        raise TargetStoreUnavailableError(f"Target org unavailable: {_error_message(error)}", error) from error
    if isinstance(error, SalesforceRefusedRequest) and "REQUEST_LIMIT_EXCEEDED" in _error_message(error):
        raise TargetStoreUnavailableError(f"Target org API limit exceeded: {_error_message(error)}", error) from error
