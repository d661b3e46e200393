"""Tests for services.execution.ExecutionEngine."""

import pytest

from record_migrator.errors import ErrorKind, TargetStoreUnavailableError
from record_migrator.models.migration import MigrationStatus
from record_migrator.models.relationship import FieldAction, FieldActions
from record_migrator.services.catalog import RelationshipCatalog
from record_migrator.services.execution import ExecutionEngine
from record_migrator.services.graph_builder import GraphBuilder
from record_migrator.services.plan_compiler import PlanCompiler

from conftest import FakeSourceOrg, SCHEMA, make_record, ref_field


def _plan(source, roots, actions=None):
    graph = GraphBuilder(RelationshipCatalog(source), source).build_graph(roots, actions)
    return PlanCompiler().compile(graph).plan


def test_parent_created_before_child_with_remapped_reference(source, store):
    source.add("Account", "001A", Name="Acme")
    plan = _plan(source, [make_record("Contact", "003A", LastName="Smith", AccountId="001A")])

    result = ExecutionEngine(store).execute(plan)

    assert plan.object_order == ("Account", "Contact")
    assert [call[0] for call in store.create_calls] == ["Account", "Contact"]
    account_id = result.remapping.get("Account", "001A")
    [contact] = store.created["Contact"]
    assert contact["AccountId"] == account_id
    assert result.remapping.get("Contact", "003A") == contact["Id"]
    assert result.status == MigrationStatus.COMPLETED
    assert result.success


def test_payload_drops_system_keys_and_omitted_fields(source, store):
    account = make_record(
        "Account", "001A", Name="Acme", OwnerId="005U", CreatedById="005U",
        Owner={"attributes": {"type": "User"}, "Username": "u@example.com"},
    )
    plan = _plan(source, [account])

    ExecutionEngine(store).execute(plan)

    [created] = store.created["Account"]
    assert created == {"Name": "Acme", "Id": created["Id"]}


def test_self_references_are_set_by_one_update(source, store):
    roots = [
        make_record("Contact", "003A", LastName="Boss"),
        make_record("Contact", "003B", LastName="Report", ReportsToId="003A"),
    ]
    plan = _plan(source, roots)

    result = ExecutionEngine(store).execute(plan)

    assert store.create_calls == [("Contact", 2)]
    created = store.created_by_name("Contact", "LastName")
    assert "ReportsToId" not in created["Report"]
    assert store.updates == [("Contact", created["Report"]["Id"], {"ReportsToId": created["Boss"]["Id"]})]
    counts = result.for_object("Contact")
    assert (counts.inserted, counts.updated, counts.update_failed) == (2, 1, 0)


def test_deferred_update_with_failed_parent_is_not_attempted(source, store):
    roots = [
        make_record("Contact", "003A", LastName="Boss"),
        make_record("Contact", "003B", LastName="Report", ReportsToId="003A"),
    ]
    store.fail_when = lambda object_type, payload: "REQUIRED_FIELD_MISSING" if payload["LastName"] == "Boss" else None
    plan = _plan(source, roots)

    result = ExecutionEngine(store).execute(plan)

    counts = result.for_object("Contact")
    assert store.updates == []
    assert (counts.inserted, counts.failed, counts.updated, counts.update_failed) == (1, 1, 0, 1)
    assert len(counts.errors_of(ErrorKind.UNRESOLVED_PARENT)) == 1


def test_resolved_self_references_are_set_when_another_is_unresolved(store):
    schema = dict(SCHEMA)
    schema["Account"] = dict(SCHEMA["Account"], fields=SCHEMA["Account"]["fields"] + [ref_field("Partner__c", ["Account"])])
    source = FakeSourceOrg(schema)
    roots = [
        make_record("Account", "001P", Name="Parent"),
        make_record("Account", "001B", Name="Broken"),
        make_record("Account", "001C", Name="Child", ParentId="001P", Partner__c="001B"),
    ]
    store.fail_when = lambda object_type, payload: "DUPLICATE_VALUE" if payload["Name"] == "Broken" else None
    plan = _plan(source, roots)

    result = ExecutionEngine(store).execute(plan)

    created = store.created_by_name("Account")
    assert store.updates == [("Account", created["Child"]["Id"], {"ParentId": created["Parent"]["Id"]})]
    counts = result.for_object("Account")
    assert (counts.inserted, counts.failed, counts.updated, counts.update_failed) == (2, 1, 1, 1)
    [unresolved] = counts.errors_of(ErrorKind.UNRESOLVED_PARENT)
    assert unresolved.field_name == "Partner__c"


def test_unmatched_optional_key_leaves_field_unset(source, store):
    contact = make_record(
        "Contact", "003A", LastName="Smith", AccountId="001A",
        Account={"External_Id__c": "ACME-1"},
    )
    actions = FieldActions().set("Contact", "AccountId", FieldAction.match_by_key("External_Id__c"))
    plan = _plan(source, [contact], actions)

    result = ExecutionEngine(store).execute(plan)

    [created] = store.created["Contact"]
    assert "AccountId" not in created
    counts = result.for_object("Contact")
    assert counts.inserted == 1
    assert counts.failed == 0
    [error] = counts.errors
    assert error.kind == ErrorKind.EXTERNAL_KEY_NOT_FOUND
    assert "[ExternalKeyNotFound]" in counts.error_messages[0]


def test_matched_key_sets_target_id(source, store):
    store.lookups[("Account", "External_Id__c", "ACME-1", ())] = "001TARGET"
    contact = make_record(
        "Contact", "003A", LastName="Smith", AccountId="001A",
        Account={"External_Id__c": "ACME-1"},
    )
    actions = FieldActions().set("Contact", "AccountId", FieldAction.match_by_key("External_Id__c"))

    result = ExecutionEngine(store).execute(_plan(source, [contact], actions))

    assert store.created["Contact"][0]["AccountId"] == "001TARGET"
    assert result.for_object("Contact").errors == []


def test_unmatched_required_key_fails_the_record(source, store):
    source.add("Contact", "003A", LastName="Smith", External_Id__c="C-1")
    case = make_record("Case", "500A", Subject="Broken", ContactId="003A", Contact={"LastName": "Smith"})
    actions = FieldActions().set("Case", "ContactId", FieldAction.match_by_key("LastName"))

    result = ExecutionEngine(store).execute(_plan(source, [case], actions))

    counts = result.for_object("Case")
    assert "Case" not in store.created
    assert counts.failed == 1
    assert counts.errors[0].kind == ErrorKind.EXTERNAL_KEY_NOT_FOUND


def test_one_failed_sibling_does_not_block_the_others(source, store):
    accounts = [make_record("Account", f"001{i:02d}", Name=f"Account {i}") for i in range(1, 11)]
    child = make_record("Contact", "003A", LastName="Orphan", AccountId="00104")
    store.fail_when = lambda object_type, payload: (
        "FIELD_CUSTOM_VALIDATION_EXCEPTION: Region is required" if payload.get("Name") == "Account 4" else None
    )
    plan = _plan(source, accounts + [child])

    result = ExecutionEngine(store, batch_size=3).execute(plan)

    accounts_result = result.for_object("Account")
    assert accounts_result.inserted == 9
    assert accounts_result.failed == 1
    [error] = accounts_result.errors
    assert error.kind == ErrorKind.RECORD_CREATE_FAILED
    assert error.reference == "Account 'Account 4' (00104)"
    assert "Region is required" in error.message
    assert ("Account", "00104") not in result.remapping

    contacts_result = result.for_object("Contact")
    assert "Contact" not in store.created
    assert contacts_result.failed == 1
    assert contacts_result.errors[0].kind == ErrorKind.UNRESOLVED_PARENT
    assert "00104" in contacts_result.errors[0].message
    assert not result.success


def test_records_are_submitted_in_batches(source, store):
    accounts = [make_record("Account", f"001{i:02d}", Name=f"Account {i}") for i in range(7)]

    ExecutionEngine(store, batch_size=3).execute(_plan(source, accounts))

    assert sorted(size for _, size in store.create_calls) == [1, 3, 3]


def test_create_call_error_fails_only_its_batch(source, store):
    accounts = [make_record("Account", f"001{i:02d}", Name=f"Account {i}") for i in range(4)]
    original = store.create_many
    calls = []

    def flaky_create(object_type, payloads):
        calls.append(len(payloads))
        if len(calls) == 1:
            raise RuntimeError("UNABLE_TO_LOCK_ROW")
        return original(object_type, payloads)

    store.create_many = flaky_create

    result = ExecutionEngine(store, batch_size=2, max_workers=1).execute(_plan(source, accounts))

    counts = result.for_object("Account")
    assert (counts.inserted, counts.failed) == (2, 2)
    assert all("UNABLE_TO_LOCK_ROW" in e.message for e in counts.errors)


def test_cancel_stops_before_next_stage(source, store):
    source.add("Account", "001A", Name="Acme")
    plan = _plan(source, [make_record("Contact", "003A", LastName="Smith", AccountId="001A")])
    engine = ExecutionEngine(store)
    store.on_create = lambda object_type: engine.cancel()

    result = engine.execute(plan)

    assert result.status == MigrationStatus.CANCELLED
    assert result.completed_stages == ["Account"]
    assert result.skipped_stages == ["Contact"]
    assert "Contact" not in store.created
    assert result.remapping.get("Account", "001A") is not None


def test_target_outage_is_fatal_with_partial_result(source, store):
    source.add("Account", "001A", Name="Acme")
    plan = _plan(source, [make_record("Contact", "003A", LastName="Smith", AccountId="001A")])
    store.unavailable_for.add("Contact")

    with pytest.raises(TargetStoreUnavailableError) as excinfo:
        ExecutionEngine(store).execute(plan)

    partial = excinfo.value.partial_result
    assert partial.status == MigrationStatus.FAILED
    assert "connection refused" in partial.fatal_error
    assert partial.completed_stages == ["Account"]
    assert partial.remapping.get("Account", "001A") is not None


def test_dry_run_flag_is_carried_to_result(source, store):
    plan = _plan(source, [make_record("Account", "001A", Name="Acme")])

    result = ExecutionEngine(store, dry_run=True).execute(plan)

    assert result.dry_run
    assert result.to_dict()["id_mapping"]["Account"]["001A"] == result.remapping.get("Account", "001A")
