"""
Name: Request Context (ContextVars)

Responsibilities:
  - Keep request-scoped correlation data in ContextVars (async-safe)
  - Let the logger enrich every record without threading params through the stack
  - Provide small helpers: set_request_context(), get_context_dict(), clear_context()

Collaborators:
  - api.exception_handlers.ErrorResponderMiddleware: sets/clears per request
  - crosscutting.logger.JSONFormatter: reads get_context_dict()

Constraints:
  - Only primitive str values (safe JSON serialization)
  - Empty string means "not available"
"""

from __future__ import annotations

from contextvars import ContextVar
from typing import Final

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
http_method_var: ContextVar[str] = ContextVar("http_method", default="")
http_path_var: ContextVar[str] = ContextVar("http_path", default="")

_CTX_REQUEST_ID: Final[str] = "request_id"
_CTX_METHOD: Final[str] = "method"
_CTX_PATH: Final[str] = "path"


def set_request_context(
    *, request_id: str = "", method: str = "", path: str = ""
) -> None:
    request_id_var.set(request_id or "")
    http_method_var.set(method or "")
    http_path_var.set(path or "")


def get_context_dict() -> dict[str, str]:
    """Current context as a dict, skipping empty values."""
    ctx: dict[str, str] = {}

    if val := request_id_var.get():
        ctx[_CTX_REQUEST_ID] = val
    if val := http_method_var.get():
        ctx[_CTX_METHOD] = val
    if val := http_path_var.get():
        ctx[_CTX_PATH] = val

    return ctx


def clear_context() -> None:
    """Reset context at the end of a request so values never leak across tasks."""
    request_id_var.set("")
    http_method_var.set("")
    http_path_var.set("")
