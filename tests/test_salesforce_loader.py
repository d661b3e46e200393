"""Tests for loaders.salesforce_loader.SalesforceTargetStore."""

from unittest.mock import MagicMock, patch

import pytest
import requests
from simple_salesforce.exceptions import (
    SalesforceExpiredSession,
    SalesforceGeneralError,
    SalesforceMalformedRequest,
    SalesforceRefusedRequest,
)

from record_migrator.errors import TargetStoreUnavailableError
from record_migrator.loaders.salesforce_loader import SalesforceTargetStore


def _store(**kwargs):
    sf = MagicMock()
    return sf, SalesforceTargetStore(sf, **kwargs)


def test_create_many_posts_collection_with_per_record_outcomes():
    sf, store = _store()
    sf.restful.return_value = [
        {"id": "001T1", "success": True, "errors": []},
        {"success": False, "errors": [
            {"statusCode": "REQUIRED_FIELD_MISSING", "message": "Required fields are missing", "fields": ["Name"]}
        ]},
    ]

    outcomes = store.create_many("Account", [{"Name": "Acme"}, {"Industry": "Retail"}])

    assert outcomes[0].success and outcomes[0].target_id == "001T1"
    assert not outcomes[1].success
    assert outcomes[1].error == "REQUIRED_FIELD_MISSING: Required fields are missing (fields: Name)"
    assert outcomes[1].error_code == "REQUIRED_FIELD_MISSING"

    args, kwargs = sf.restful.call_args
    assert args == ("composite/sobjects",)
    assert kwargs["method"] == "POST"
    assert kwargs["json"]["allOrNone"] is False
    assert kwargs["json"]["records"][0] == {"Name": "Acme", "attributes": {"type": "Account"}}


def test_create_many_chunks_at_collection_limit():
    sf, store = _store(batch_size=500)
    sf.restful.side_effect = lambda *a, **kw: [{"id": "x", "success": True} for _ in kw["json"]["records"]]

    outcomes = store.create_many("Account", [{"Name": str(i)} for i in range(450)])

    assert len(outcomes) == 450
    assert [len(c.kwargs["json"]["records"]) for c in sf.restful.call_args_list] == [200, 200, 50]


def test_rejected_request_fails_every_record():
    sf, store = _store()
    sf.restful.side_effect = SalesforceMalformedRequest(
        "https://example/composite/sobjects", 400, "composite",
        [{"errorCode": "JSON_PARSER_ERROR", "message": "Unexpected token"}],
    )

    outcomes = store.create_many("Account", [{"Name": "A"}, {"Name": "B"}])

    assert [o.success for o in outcomes] == [False, False]
    assert outcomes[0].error == "JSON_PARSER_ERROR: Unexpected token"


def test_connection_errors_are_fatal():
    sf, store = _store()
    sf.restful.side_effect = requests.ConnectionError("connection refused")

    with pytest.raises(TargetStoreUnavailableError):
        store.create_many("Account", [{"Name": "A"}])


def test_expired_session_is_fatal():
    sf, store = _store()
    sf.Account.update.side_effect = SalesforceExpiredSession("url", 401, "Account", "Session expired")

    with pytest.raises(TargetStoreUnavailableError):
        store.update_by_id("Account", "001T1", {"ParentId": "001T2"})


def test_server_errors_are_fatal():
    sf, store = _store()
    sf.restful.side_effect = SalesforceGeneralError(
        "https://example/composite/sobjects", 503, "composite",
        [{"errorCode": "SERVER_UNAVAILABLE", "message": "Service Unavailable"}],
    )

    with pytest.raises(TargetStoreUnavailableError) as excinfo:
        store.create_many("Account", [{"Name": "A"}, {"Name": "B"}])

    assert "SERVER_UNAVAILABLE" in str(excinfo.value)


def test_server_error_on_update_is_fatal():
    sf, store = _store()
    sf.Account.update.side_effect = SalesforceGeneralError(
        "url", 500, "Account", [{"errorCode": "UNKNOWN_EXCEPTION", "message": "An unexpected error occurred"}]
    )

    with pytest.raises(TargetStoreUnavailableError):
        store.update_by_id("Account", "001T1", {"ParentId": "001T2"})


def test_exhausted_request_limit_is_fatal():
    sf, store = _store()
    sf.query.side_effect = SalesforceRefusedRequest(
        "url", 403, "query", [{"errorCode": "REQUEST_LIMIT_EXCEEDED", "message": "TotalRequests Limit exceeded."}]
    )

    with pytest.raises(TargetStoreUnavailableError):
        store.query_by_field("Account", "External_Id__c", "X")


def test_refused_create_fails_records():
    sf, store = _store()
    sf.restful.side_effect = SalesforceRefusedRequest(
        "url", 403, "composite", [{"errorCode": "INSUFFICIENT_ACCESS", "message": "no create access"}]
    )

    outcomes = store.create_many("Account", [{"Name": "A"}])

    assert outcomes[0].error == "INSUFFICIENT_ACCESS: no create access"


def test_rate_limit_spaces_requests():
    sf, store = _store(rate_limit=2)
    sf.Account.update.return_value = 204

    with patch("record_migrator.loaders.salesforce_loader.time") as clock:
        clock.time.side_effect = [100.0, 100.0, 100.1, 100.5]
        store.update_by_id("Account", "001T1", {"Name": "A"})
        store.update_by_id("Account", "001T2", {"Name": "B"})

    clock.sleep.assert_called_once()
    assert clock.sleep.call_args[0][0] == pytest.approx(0.4)


def test_update_by_id():
    sf, store = _store(allow_duplicates=True)

    outcome = store.update_by_id("Account", "001T1", {"ParentId": "001T2"})

    assert outcome.success
    sf.Account.update.assert_called_once_with(
        "001T1", {"ParentId": "001T2"}, headers={"Sforce-Duplicate-Rule-Header": "allowSave=true"}
    )


def test_update_error_is_reported():
    sf, store = _store()
    sf.Account.update.side_effect = SalesforceMalformedRequest(
        "url", 400, "Account", [{"errorCode": "INVALID_CROSS_REFERENCE_KEY", "message": "bad id"}]
    )

    outcome = store.update_by_id("Account", "001T1", {"ParentId": "bogus"})

    assert not outcome.success
    assert "INVALID_CROSS_REFERENCE_KEY" in outcome.error


def test_query_by_field_builds_escaped_soql():
    sf, store = _store()
    sf.query.return_value = {"records": [{"Id": "012T"}]}

    target_id = store.query_by_field("RecordType", "DeveloperName", "O'Brien", {"SobjectType": "Account"})

    assert target_id == "012T"
    soql = sf.query.call_args[0][0]
    assert soql == (
        "SELECT Id FROM RecordType WHERE DeveloperName = 'O\\'Brien' AND SobjectType = 'Account' LIMIT 2"
    )


def test_query_by_field_no_match():
    sf, store = _store()
    sf.query.return_value = {"records": []}

    assert store.query_by_field("Account", "External_Id__c", "X") is None


def test_malformed_lookup_matches_nothing():
    sf, store = _store()
    sf.query.side_effect = SalesforceMalformedRequest(
        "url", 400, "query", [{"errorCode": "INVALID_QUERY_FILTER_OPERATOR", "message": "invalid ID field"}]
    )

    assert store.query_by_field("Account", "Id", "not-an-id") is None


def test_validate_connection():
    sf, store = _store()
    assert store.validate_connection()

    sf.restful.side_effect = requests.ConnectionError("down")
    assert not store.validate_connection()
