"""
Tests for long-running operation polling.

Test Coverage:
    - Operation id extraction from headers
    - Polling to Succeeded / Cancelled
    - Failed surfaces the provider error code verbatim
    - Timeout after the polling budget
    - Unrecognized status keeps polling
    - fetch_result is best-effort
"""

import asyncio

import pytest
from fakes import FakeApiClient, ok

from fabric_api.lro import (
    OperationHandle,
    OperationPoller,
    OperationState,
    OperationStatus,
    extract_operation_id,
    parse_retry_after,
)
from fabric_core.errors import ApiError, OperationFailedError, OperationTimeoutError


def status(value, **extra):
    return ok({"status": value, **extra})


class TestExtractOperationId:

    def test_prefers_dedicated_header(self):
        headers = {
            "x-ms-operation-id": "abc",
            "Location": "https://api.fabric.microsoft.com/v1/operations/xyz",
        }
        assert extract_operation_id(headers) == "abc"

    def test_falls_back_to_location_segment(self):
        headers = {"Location": "https://api.fabric.microsoft.com/v1/operations/xyz?foo=1"}
        assert extract_operation_id(headers) == "xyz"

    def test_location_without_operations_segment(self):
        headers = {"Location": "https://api.fabric.microsoft.com/v1/workspaces/w1"}
        assert extract_operation_id(headers) is None

    def test_no_headers(self):
        assert extract_operation_id({}) is None
        assert extract_operation_id(None) is None

    def test_header_lookup_is_case_insensitive(self):
        assert extract_operation_id({"X-Ms-Operation-Id": "abc"}) == "abc"
        assert extract_operation_id({"location": "/v1/operations/q1"}) == "q1"


class TestOperationHandle:

    def test_from_headers(self):
        handle = OperationHandle.from_headers(
            {
                "x-ms-operation-id": "op-1",
                "Location": "https://host/v1/operations/op-1",
                "Retry-After": "20",
            }
        )
        assert handle == OperationHandle("op-1", "https://host/v1/operations/op-1", 20)

    def test_from_headers_without_id(self):
        assert OperationHandle.from_headers({"Retry-After": "5"}) is None

    def test_parse_retry_after(self):
        assert parse_retry_after("30") == 30
        assert parse_retry_after(" 7 ") == 7
        assert parse_retry_after("soon") is None
        assert parse_retry_after(None) is None


class TestOperationState:

    def test_parses_wire_fields(self):
        state = OperationState.from_body(
            {
                "id": "op-1",
                "status": "Running",
                "percentComplete": 40,
                "createdTimeUtc": "2024-01-01T00:00:00Z",
            }
        )
        assert state.operation_id == "op-1"
        assert state.status is OperationStatus.RUNNING
        assert state.percent_complete == 40
        assert not state.is_terminal

    def test_unknown_status_is_undefined(self):
        assert OperationState.from_body({"status": "Paused"}).status is OperationStatus.UNDEFINED
        assert OperationState.from_body({}).status is OperationStatus.UNDEFINED
        assert OperationState.from_body(None).status is OperationStatus.UNDEFINED

    def test_error_detail(self):
        state = OperationState.from_body(
            {"status": "Failed", "error": {"errorCode": "ItemNameAlreadyInUse", "message": "dup"}}
        )
        assert state.error_code == "ItemNameAlreadyInUse"
        assert state.error_message == "dup"

    def test_terminal_statuses(self):
        assert OperationStatus.SUCCEEDED.is_terminal
        assert OperationStatus.FAILED.is_terminal
        assert OperationStatus.CANCELLED.is_terminal
        assert not OperationStatus.NOT_STARTED.is_terminal
        assert not OperationStatus.UNDEFINED.is_terminal


class TestOperationPoller:

    @pytest.fixture
    def handle(self):
        return OperationHandle("abc")

    async def test_polls_until_succeeded(self, handle):
        client = FakeApiClient(
            {"/operations/abc": [status("Running"), status("Running"), status("Succeeded")]}
        )
        poller = OperationPoller(client, poll_interval_ms=0)

        state = await poller.poll(handle)

        assert state.status is OperationStatus.SUCCEEDED
        assert client.count("GET", "/operations/abc") == 3

    async def test_not_started_then_succeeded(self, handle):
        client = FakeApiClient({"/operations/abc": [status("NotStarted"), status("Succeeded")]})
        state = await OperationPoller(client, poll_interval_ms=0).poll(handle)
        assert state.status is OperationStatus.SUCCEEDED
        assert client.count("GET", "/operations/abc") == 2

    async def test_cancelled_is_returned(self, handle):
        client = FakeApiClient({"/operations/abc": [status("Cancelled")]})
        state = await OperationPoller(client, poll_interval_ms=0).poll(handle)
        assert state.status is OperationStatus.CANCELLED

    async def test_failed_raises_with_provider_code(self, handle):
        client = FakeApiClient(
            {
                "/operations/abc": [
                    status("Running"),
                    status(
                        "Failed",
                        error={"errorCode": "ItemNameAlreadyInUse", "message": "Name taken"},
                    ),
                ]
            }
        )
        poller = OperationPoller(client, poll_interval_ms=0)

        with pytest.raises(OperationFailedError) as exc_info:
            await poller.poll(handle)

        assert exc_info.value.error_code == "ItemNameAlreadyInUse"
        assert exc_info.value.error_message == "Name taken"
        assert exc_info.value.operation_id == "abc"
        assert not exc_info.value.is_retryable

    async def test_failed_without_detail(self, handle):
        client = FakeApiClient({"/operations/abc": [status("Failed")]})
        with pytest.raises(OperationFailedError) as exc_info:
            await OperationPoller(client, poll_interval_ms=0).poll(handle)
        assert exc_info.value.error_code is None
        assert exc_info.value.message == "Operation failed"

    async def test_times_out_while_running(self, handle):
        client = FakeApiClient({"/operations/abc": [status("Running")]})
        poller = OperationPoller(client, poll_interval_ms=0, timeout_ms=0)

        with pytest.raises(OperationTimeoutError) as exc_info:
            await poller.poll(handle)

        assert exc_info.value.operation_id == "abc"
        assert exc_info.value.last_status == "Running"
        assert exc_info.value.is_retryable
        assert "timed out" in str(exc_info.value)

    async def test_per_call_overrides(self, handle):
        client = FakeApiClient({"/operations/abc": [status("Running")]})
        poller = OperationPoller(client, poll_interval_ms=60_000, timeout_ms=600_000)

        with pytest.raises(OperationTimeoutError):
            await poller.poll(handle, poll_interval_ms=0, timeout_ms=0)

    async def test_undefined_status_keeps_polling(self, handle):
        client = FakeApiClient(
            {"/operations/abc": [status("Queued"), ok(None), status("Succeeded")]}
        )
        state = await OperationPoller(client, poll_interval_ms=0).poll(handle)
        assert state.status is OperationStatus.SUCCEEDED
        assert client.count("GET", "/operations/abc") == 3

    async def test_status_fetch_error_propagates(self, handle):
        client = FakeApiClient({"/operations/abc": [ApiError("gone", status_code=404)]})
        with pytest.raises(ApiError):
            await OperationPoller(client, poll_interval_ms=0).poll(handle)

    async def test_caller_cancellation_interrupts_sleep(self, handle):
        client = FakeApiClient({"/operations/abc": [status("Running")]})
        poller = OperationPoller(client, poll_interval_ms=60_000)

        with pytest.raises(TimeoutError):
            async with asyncio.timeout(0.05):
                await poller.poll(handle)

        assert client.count("GET", "/operations/abc") == 1


class TestFetchResult:

    async def test_returns_result_body(self):
        client = FakeApiClient({"/operations/abc/result": [ok({"id": "item-1"})]})
        result = await OperationPoller(client).fetch_result(OperationHandle("abc"))
        assert result == {"id": "item-1"}

    async def test_swallows_errors(self):
        client = FakeApiClient(
            {"/operations/abc/result": [ApiError("Not found", status_code=404)]}
        )
        result = await OperationPoller(client).fetch_result(OperationHandle("abc"))
        assert result is None
