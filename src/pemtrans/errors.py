"""Failure taxonomy for a conversion run.

Every fatal condition is a ``PemtransError`` and ends the run through
``pemtrans.report``. A certificate without keyUsage is only logged as a warning.
"""
from __future__ import annotations

from typing import Any, Optional

__all__ = [
    "PemtransError",
    "UsageError",
    "ConfigError",
    "InputError",
    "AllocationFailure",
    "MalformedKeyError",
    "StoreOperationError",
]


class PemtransError(Exception):
    """Base class for fatal conversion errors."""

    stage = "pemtrans"


class UsageError(PemtransError):
    stage = "usage"


class ConfigError(PemtransError):
    stage = "config"


class InputError(PemtransError):
    stage = "input"

    def __init__(self, kind: str, path: str, reason: str):
        self.kind = kind
        self.path = path
        self.reason = reason
        super().__init__(f"Couldn't load {kind} from '{path}': {reason}")


class AllocationFailure(PemtransError):
    stage = "extract"


class MalformedKeyError(PemtransError):
    stage = "extract"

    def __init__(self, component: str, reason: str = "missing or zero"):
        self.component = component
        super().__init__(f"RSA component '{component}' is {reason}")


class StoreOperationError(PemtransError):
    """A keyset Store call returned a non-OK status.

    ``handle`` is whatever object the Store attached its error state to; the
    reporter reads locus/type/message from it when present.
    """

    def __init__(self, stage: str, code: int, handle: Optional[Any] = None, message: str = ""):
        self.stage = stage
        self.code = int(code)
        self.handle = handle
        self.message = message
        super().__init__(f"{stage} failed with status {self.code}" + (f": {message}" if message else ""))
