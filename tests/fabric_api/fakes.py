"""Shared fakes for the remote-API layer tests."""

from typing import Any, Optional

from fabric_api.client import ApiResponse
from fabric_api.lro import OperationHandle


def ok(body: Any = None, status: int = 200, headers: Optional[dict] = None) -> ApiResponse:
    return ApiResponse(status=status, body=body, headers=headers or {})


def accepted(operation_id: str, body: Any = None, location: Optional[str] = None) -> ApiResponse:
    headers = {"x-ms-operation-id": operation_id}
    if location:
        headers["Location"] = location
    return ApiResponse(
        status=202,
        body=body,
        headers=headers,
        operation=OperationHandle(operation_id, location_url=location),
    )


class FakeApiClient:
    """
    Scripted ApiClient.

    ``routes`` maps a path (or absolute URL) to a list of ApiResponse objects
    or exceptions, consumed in order. The last entry repeats once the list
    is down to one.
    """

    def __init__(self, routes: Optional[dict[str, list]] = None):
        self.routes = {key: list(value) for key, value in (routes or {}).items()}
        self.calls: list[tuple[str, str]] = []

    def _next(self, target: str) -> ApiResponse:
        if target not in self.routes:
            raise AssertionError(f"unexpected request: {target}")
        queue = self.routes[target]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def count(self, method: str, target: str) -> int:
        return self.calls.count((method, target))

    async def get(self, path: str, params=None) -> ApiResponse:
        self.calls.append(("GET", path))
        return self._next(path)

    async def get_url(self, url: str) -> ApiResponse:
        self.calls.append(("GET_URL", url))
        return self._next(url)

    async def post(self, path: str, json_body=None, params=None) -> ApiResponse:
        self.calls.append(("POST", path))
        return self._next(path)

    async def patch(self, path: str, json_body=None) -> ApiResponse:
        self.calls.append(("PATCH", path))
        return self._next(path)

    async def delete(self, path: str) -> ApiResponse:
        self.calls.append(("DELETE", path))
        return self._next(path)
