"""Utilities for storing per-task logging context using contextvars.

Batch tasks set ``batch_id``, ``workload`` and ``tenant_id`` so every log
line emitted while processing an item carries them.
"""

from __future__ import annotations

import contextlib
from contextvars import ContextVar
from typing import Any, Dict, Iterator


_request_context: ContextVar[Dict[str, Any]] = ContextVar("request_context", default={})


def get_request_context() -> Dict[str, Any]:
    """Return a copy of the current context."""
    context = _request_context.get()
    # Ensure callers cannot mutate the stored context in place
    return dict(context) if context else {}


def set_request_context(**values: Any) -> Dict[str, Any]:
    """Merge provided values into the stored context.

    Passing ``None`` clears the value for that key.
    """

    current = get_request_context()
    for key, value in values.items():
        if value is None:
            current.pop(key, None)
        else:
            current[key] = value
    _request_context.set(current)
    return current


def clear_request_context() -> None:
    """Remove all stored context for the active task."""

    _request_context.set({})


@contextlib.contextmanager
def request_context(**values: Any) -> Iterator[Dict[str, Any]]:
    """Temporarily merge values into the context, restoring the previous one on exit."""

    token = _request_context.set({**get_request_context(), **values})
    try:
        yield get_request_context()
    finally:
        _request_context.reset(token)
