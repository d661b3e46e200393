"""Shared fixtures: an in-memory source org and target store."""

import itertools
import threading
from typing import Any, Callable, Dict, List, Optional

import pytest

from record_migrator.errors import RecordFetchError, TargetStoreUnavailableError
from record_migrator.extractors.base import BaseSourceOrg
from record_migrator.loaders.base import BaseTargetStore, CreateOutcome, UpdateOutcome
from record_migrator.models.record import SourceRecord


def text_field(name, createable=True):
    return {"name": name, "label": name, "type": "string", "createable": createable, "nillable": True}


def ref_field(name, reference_to, nillable=True, createable=True, relationship_name=None):
    return {
        "name": name,
        "label": name,
        "type": "reference",
        "referenceTo": list(reference_to),
        "nillable": nillable,
        "createable": createable,
        "relationshipName": relationship_name,
    }


def id_field():
    return {"name": "Id", "label": "Record ID", "type": "id", "createable": False, "nillable": False, "idLookup": True}


SCHEMA = {
    "Account": {
        "keyPrefix": "001",
        "fields": [
            id_field(),
            text_field("Name"),
            dict(text_field("External_Id__c"), externalId=True, idLookup=True),
            ref_field("ParentId", ["Account"], relationship_name="Parent"),
            ref_field("OwnerId", ["User"], nillable=False, relationship_name="Owner"),
            ref_field("RecordTypeId", ["RecordType"], relationship_name="RecordType"),
            ref_field("CreatedById", ["User"], nillable=False, createable=False),
        ],
    },
    "Contact": {
        "keyPrefix": "003",
        "fields": [
            id_field(),
            text_field("LastName"),
            ref_field("AccountId", ["Account"], relationship_name="Account"),
            ref_field("ReportsToId", ["Contact"], relationship_name="ReportsTo"),
            ref_field("OwnerId", ["User"], nillable=False, relationship_name="Owner"),
        ],
    },
    "Case": {
        "keyPrefix": "500",
        "fields": [
            id_field(),
            text_field("Subject"),
            ref_field("ContactId", ["Contact"], nillable=False, relationship_name="Contact"),
            ref_field("AccountId", ["Account"], relationship_name="Account"),
        ],
    },
    "Task": {
        "keyPrefix": "00T",
        "fields": [
            id_field(),
            text_field("Subject"),
            ref_field("WhatId", ["Account", "Opportunity"], relationship_name="What"),
            ref_field("WhoId", ["Contact", "Lead"], relationship_name="Who"),
        ],
    },
    "Opportunity": {
        "keyPrefix": "006",
        "fields": [id_field(), text_field("Name"), ref_field("AccountId", ["Account"])],
    },
    "Lead": {"keyPrefix": "00Q", "fields": [id_field(), text_field("LastName")]},
    "RecordType": {
        "keyPrefix": "012",
        "fields": [id_field(), text_field("DeveloperName"), text_field("SobjectType", createable=False)],
    },
    "User": {"keyPrefix": "005", "fields": [id_field(), text_field("Username")]},
}


def make_record(object_type: str, record_id: str, **fields) -> SourceRecord:
    data = {"attributes": {"type": object_type}, "Id": record_id}
    data.update(fields)
    return SourceRecord.from_api_record(data)


class FakeSourceOrg(BaseSourceOrg):
    """Source org backed by dictionaries."""

    def __init__(self, schema: Optional[Dict[str, Any]] = None):
        self.schema = dict(SCHEMA if schema is None else schema)
        self.records: Dict[tuple, SourceRecord] = {}
        self.failing: Dict[str, str] = {}  # record id -> error reason
        self.fetch_calls: List[tuple] = []
        self.describe_calls: List[str] = []

    def add(self, object_type: str, record_id: str, **fields) -> SourceRecord:
        record = make_record(object_type, record_id, **fields)
        self.records[record.key] = record
        return record

    def describe(self, object_type: str) -> Dict[str, Any]:
        self.describe_calls.append(object_type)
        if object_type not in self.schema:
            raise KeyError(f"Unknown object type: {object_type}")
        return self.schema[object_type]

    def fetch_by_id(self, object_type: str, record_id: str) -> Optional[SourceRecord]:
        self.fetch_calls.append((object_type, record_id))
        if record_id in self.failing:
            raise RecordFetchError(object_type, record_id, self.failing[record_id])
        return self.records.get((object_type, record_id))


class FakeTargetStore(BaseTargetStore):
    """
    Target store that mints ids and records every call.

    fail_when(object_type, payload) returns an error message for records
    that should fail, or None.
    """

    def __init__(self, batch_size: int = 200):
        super().__init__("fake-target", batch_size)
        self.created: Dict[str, List[Dict[str, Any]]] = {}
        self.create_calls: List[tuple] = []
        self.updates: List[tuple] = []
        self.lookups: Dict[tuple, str] = {}
        self.queries: List[tuple] = []
        self.fail_when: Callable[[str, Dict[str, Any]], Optional[str]] = lambda object_type, payload: None
        self.unavailable_for: set = set()  # object types whose create raises an outage
        self.on_create: Optional[Callable[[str], None]] = None
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create_many(self, object_type: str, payloads: List[Dict[str, Any]]) -> List[CreateOutcome]:
        if object_type in self.unavailable_for:
            raise TargetStoreUnavailableError("connection refused")
        if self.on_create:
            self.on_create(object_type)
        outcomes = []
        with self._lock:
            self.create_calls.append((object_type, len(payloads)))
            for payload in payloads:
                error = self.fail_when(object_type, payload)
                if error:
                    outcomes.append(CreateOutcome(error=error, error_code="FIELD_CUSTOM_VALIDATION_EXCEPTION"))
                    continue
                target_id = f"T{object_type[:3].upper()}{next(self._ids):04d}"
                self.created.setdefault(object_type, []).append(dict(payload, Id=target_id))
                outcomes.append(CreateOutcome(target_id=target_id))
        return outcomes

    def update_by_id(self, object_type: str, target_id: str, fields: Dict[str, Any]) -> UpdateOutcome:
        with self._lock:
            self.updates.append((object_type, target_id, dict(fields)))
        return UpdateOutcome(success=True)

    def query_by_field(self, object_type, field_name, value, filters=None):
        key = (object_type, field_name, value, tuple(sorted((filters or {}).items())))
        with self._lock:
            self.queries.append(key)
        return self.lookups.get(key)

    def created_by_name(self, object_type: str, name_field: str = "Name") -> Dict[str, Dict[str, Any]]:
        return {r[name_field]: r for r in self.created.get(object_type, [])}


@pytest.fixture
def source():
    return FakeSourceOrg()


@pytest.fixture
def store():
    return FakeTargetStore()
