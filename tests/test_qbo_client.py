from __future__ import annotations

import json

import httpx
import pytest

from qbo_sync.core.errors import AuthError, ExternalApiError
from qbo_sync.services.qbo_client import AccessContext, QuickBooksService, escape_query_value
from qbo_sync.services.qbo_errors import is_duplicate_name

from tests.conftest import fault_body


CTX = AccessContext(access_token="access-token", realm_id="4620816365", environment="prod")


def service(settings, handler) -> QuickBooksService:
    return QuickBooksService(settings, transport=httpx.MockTransport(handler))


async def test_post_returns_entity_and_sends_auth(settings):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Bill": {"Id": "55", "SyncToken": "0"}, "time": "2026-05-14"})

    record = await service(settings, handler).post(
        CTX,
        entity="Bill",
        resource="bill",
        payload={"VendorRef": {"value": "12"}},
    )

    assert record == {"Id": "55", "SyncToken": "0"}
    request = seen[0]
    assert request.method == "POST"
    assert request.url.host == "quickbooks.api.intuit.com"
    assert request.url.path == "/v3/company/4620816365/bill"
    assert request.url.params["minorversion"] == settings.qbo_minor_version
    assert request.headers["Authorization"] == "Bearer access-token"
    assert json.loads(request.content) == {"VendorRef": {"value": "12"}}


async def test_query_appends_maxresults_and_normalizes_rows(settings):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"QueryResponse": {"Vendor": {"Id": "9", "DisplayName": "Acme"}}})

    rows = await service(settings, handler).query(
        CTX,
        entity="Vendor",
        select_sql="SELECT * FROM Vendor WHERE DisplayName = 'Acme'",
        maxresults=1,
    )

    assert rows == [{"Id": "9", "DisplayName": "Acme"}]
    assert seen[0].url.params["query"] == "SELECT * FROM Vendor WHERE DisplayName = 'Acme' MAXRESULTS 1"


async def test_empty_query_response(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"QueryResponse": {}})

    assert await service(settings, handler).query(CTX, entity="Account", select_sql="SELECT * FROM Account") == []


async def test_sandbox_context_uses_sandbox_host(settings):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Invoice": {"Id": "3", "SyncToken": "1"}})

    sandbox = AccessContext(access_token="t", realm_id="123", environment="sandbox")
    await service(settings, handler).read(sandbox, entity="Invoice", resource="invoice", entity_id="3")

    assert seen[0].url.host == "sandbox-quickbooks.api.intuit.com"
    assert seen[0].url.path == "/v3/company/123/invoice/3"


async def test_unauthorized_raises_auth_error(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"fault": {"error": [{"message": "AuthenticationFailed"}]}})

    with pytest.raises(AuthError):
        await service(settings, handler).read(CTX, entity="Bill", resource="bill", entity_id="1")


async def test_validation_fault_keeps_status_and_body(settings):
    body = fault_body("6240", "The name supplied already exists. : Id=123", "Duplicate Name Exists Error")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, text=body, headers={"Content-Type": "application/json"})

    with pytest.raises(ExternalApiError) as excinfo:
        await service(settings, handler).post(CTX, entity="Vendor", resource="vendor", payload={})

    exc = excinfo.value
    assert exc.qbo_status_code == 400
    assert exc.body == body
    assert exc.status_code == 502
    assert is_duplicate_name(exc)


async def test_timeout_becomes_external_error(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ExternalApiError, match="timed out"):
        await service(settings, handler).query(CTX, entity="Vendor", select_sql="SELECT * FROM Vendor")


async def test_missing_entity_id_is_malformed(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"Bill": {"SyncToken": "0"}})

    with pytest.raises(ExternalApiError, match="Malformed"):
        await service(settings, handler).post(CTX, entity="Bill", resource="bill", payload={})


async def test_upload_attachment_sends_multipart(settings):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"AttachableResponse": [{"Attachable": {"Id": "9001", "FileName": "receipt.pdf"}}]},
        )

    attachable_id = await service(settings, handler).upload_attachment(
        CTX,
        entity_type="Bill",
        entity_id="55",
        file_name="receipt.pdf",
        content_type="application/pdf",
        content=b"%PDF-1.4",
    )

    assert attachable_id == "9001"
    assert seen[0].url.path == "/v3/company/4620816365/upload"
    assert seen[0].headers["Content-Type"].startswith("multipart/form-data")
    assert b"file_metadata_01" in seen[0].content
    assert b'"value": "55"' in seen[0].content
    assert b"%PDF-1.4" in seen[0].content


def test_escape_query_value():
    assert escape_query_value("O'Brien Plumbing") == "O\\'Brien Plumbing"


@pytest.fixture
def retrying_settings(settings):
    return settings.model_copy(update={"retry_max_attempts": 3, "retry_max_wait_seconds": 0.0})


async def test_post_is_sent_once_on_server_error(retrying_settings):
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.method)
        if len(seen) == 1:
            return httpx.Response(503, text="Service Unavailable")
        return httpx.Response(200, json={"Bill": {"Id": "56", "SyncToken": "0"}})

    with pytest.raises(ExternalApiError) as excinfo:
        await service(retrying_settings, handler).post(
            CTX,
            entity="Bill",
            resource="bill",
            payload={"VendorRef": {"value": "12"}},
        )

    assert excinfo.value.qbo_status_code == 503
    assert seen == ["POST"]


async def test_query_is_retried_on_server_error(retrying_settings):
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.method)
        if len(seen) == 1:
            return httpx.Response(503, text="Service Unavailable")
        return httpx.Response(200, json={"QueryResponse": {"Account": [{"Id": "80"}]}})

    rows = await service(retrying_settings, handler).query(
        CTX,
        entity="Account",
        select_sql="SELECT * FROM Account",
    )

    assert rows == [{"Id": "80"}]
    assert seen == ["GET", "GET"]
