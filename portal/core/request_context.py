"""Values of the request being served, picked up by every log line."""
from __future__ import annotations

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional

_CONTEXT: ContextVar[Optional[Dict[str, Any]]] = ContextVar("request_context", default=None)


def open_request_context(**values: Any) -> Token:
    return _CONTEXT.set(dict(values))


def close_request_context(token: Token) -> None:
    _CONTEXT.reset(token)


def bind_request_value(name: str, value: Any) -> None:
    # mutates the dict opened by the middleware
    context = _CONTEXT.get()
    if context is not None:
        context[name] = value


def current_request_context() -> Dict[str, Any]:
    return dict(_CONTEXT.get() or {})
