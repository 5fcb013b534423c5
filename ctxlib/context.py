"""
Request-scoped context objects.

The surrounding auth layer authenticates the caller and sets the context; core
services only ever see the resulting namespace string.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import contextvars

from ctxlib.errors import ValidationIssue


@dataclass(frozen=True)
class RequestContext:
    namespace: Optional[str] = None
    request_id: Optional[str] = None
    source: Optional[str] = None


_CURRENT_REQUEST_CONTEXT: contextvars.ContextVar[Optional["RequestContext"]] = contextvars.ContextVar(
    "ctxlib_request_context",
    default=None,
)


def get_current_request_context() -> Optional["RequestContext"]:
    return _CURRENT_REQUEST_CONTEXT.get()


def set_current_request_context(context: Optional["RequestContext"]) -> contextvars.Token:
    return _CURRENT_REQUEST_CONTEXT.set(context)


def reset_current_request_context(token: contextvars.Token) -> None:
    _CURRENT_REQUEST_CONTEXT.reset(token)


def resolve_namespace(context: Optional["RequestContext"]) -> str:
    namespace = context.namespace if context else None
    if not namespace:
        raise ValidationIssue(
            "namespace is required for this operation",
            field="namespace",
            error_type="required",
        )
    return namespace


__all__ = [
    "RequestContext",
    "get_current_request_context",
    "set_current_request_context",
    "reset_current_request_context",
    "resolve_namespace",
]
