"""
pipelines/errors.py

Typed errors raised by the workflow, inventory and account layers.

Pages catch ``WorkflowError`` and show ``reason`` to the user; anything
else is a bug and is left to propagate.
"""

from __future__ import annotations

from typing import Any, Optional


class WorkflowError(Exception):
    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)


class NotFoundError(WorkflowError):
    """A lookup by id found nothing."""

    def __init__(self, kind: str, ident: str):
        super().__init__(f"{kind} '{ident}' not found.", {"kind": kind, "id": ident})
        self.kind = kind
        self.ident = ident


class ValidationError(WorkflowError):
    """Form validation failed. ``messages`` holds every problem found."""

    def __init__(self, messages: list[str]):
        self.messages = list(messages)
        super().__init__(" ".join(self.messages), {"messages": self.messages})


class InvalidTransitionError(WorkflowError):
    pass


class ReferentialIntegrityError(WorkflowError):
    pass


class InsufficientStockError(WorkflowError):
    def __init__(self, designation: str, available: float, requested: float):
        super().__init__(
            f"Stock insuffisant pour {designation} (disponible: {available:g}, demandé: {requested:g}).",
            {"available": available, "requested": requested},
        )


class AuthenticationError(WorkflowError):
    pass


class PermissionDeniedError(WorkflowError):
    pass
