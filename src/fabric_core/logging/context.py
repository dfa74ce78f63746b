"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

_tenant_id: ContextVar[str] = ContextVar("tenant_id", default="")
_operation_id: ContextVar[str] = ContextVar("operation_id", default="")
_resource_id: ContextVar[str] = ContextVar("resource_id", default="")
_tool_name: ContextVar[str] = ContextVar("tool_name", default="")
_trace_id: ContextVar[str] = ContextVar("trace_id", default="")


def set_log_context(
    tenant_id: Optional[str] = None,
    operation_id: Optional[str] = None,
    resource_id: Optional[str] = None,
    tool_name: Optional[str] = None,
    trace_id: Optional[str] = None,
) -> None:
    if tenant_id is not None:
        _tenant_id.set(tenant_id)
    if operation_id is not None:
        _operation_id.set(operation_id)
    if resource_id is not None:
        _resource_id.set(resource_id)
    if tool_name is not None:
        _tool_name.set(tool_name)
    if trace_id is not None:
        _trace_id.set(trace_id)


def get_log_context() -> Dict[str, str]:
    return {
        "tenant_id": _tenant_id.get(),
        "operation_id": _operation_id.get(),
        "resource_id": _resource_id.get(),
        "tool_name": _tool_name.get(),
        "trace_id": _trace_id.get(),
    }


def clear_log_context() -> None:
    _tenant_id.set("")
    _operation_id.set("")
    _resource_id.set("")
    _tool_name.set("")
    _trace_id.set("")
