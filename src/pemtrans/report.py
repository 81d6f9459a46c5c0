"""Fatal error reporting.

All failures end here: a diagnostic on stderr, then ``SystemExit`` with
``EXIT_FAILURE``. Store failures are enriched with the error locus, type and
message the failing handle recorded; whichever of those cannot be read is
left out.
"""
from __future__ import annotations

import sys
from enum import IntEnum
from typing import Any, List, NoReturn, Optional, TextIO, Type

from .errors import PemtransError, StoreOperationError, UsageError
from .keyset.constants import Attribute, ErrorType, Status

EXIT_OK = 0
EXIT_FAILURE = 1


def _name(enum_cls: Type[IntEnum], value: int) -> str:
    try:
        return f"{enum_cls(value).name} ({int(value)})"
    except ValueError:
        return str(int(value))


def _enrich(handle: Any, fallback_message: str) -> List[str]:
    lines: List[str] = []
    # enrichment must never replace the error being reported
    try:
        locus = int(handle.get_attribute(Attribute.ERRORLOCUS))
    except Exception:
        locus = 0
    try:
        etype = int(handle.get_attribute(Attribute.ERRORTYPE))
    except Exception:
        etype = 0
    try:
        message = str(handle.get_attribute_string(Attribute.ERRORMESSAGE))
    except Exception:
        message = ""
    if locus:
        lines.append(f"\tError locus: {_name(Attribute, locus)}")
    if etype:
        lines.append(f"\tError type: {_name(ErrorType, etype)}")
    message = message or fallback_message
    if message:
        lines.append(f"\tError message: {message}")
    return lines


def report(
    stage: str,
    code: Optional[int] = None,
    handle: Optional[Any] = None,
    message: str = "",
    stream: Optional[TextIO] = None,
) -> NoReturn:
    out = stream or sys.stderr
    if code is None:
        print(f"pemtrans: {message or stage + ' failed'}", file=out)
    else:
        lines = [f"{stage} failed.", f"\tError code: {_name(Status, code)}"]
        if handle is not None:
            lines.extend(_enrich(handle, message))
        elif message:
            lines.append(f"\tError message: {message}")
        print("\n".join(lines), file=out)
    out.flush()
    raise SystemExit(EXIT_FAILURE)


def report_error(exc: PemtransError, stream: Optional[TextIO] = None) -> NoReturn:
    if isinstance(exc, StoreOperationError):
        report(exc.stage, exc.code, exc.handle, exc.message, stream)
    if isinstance(exc, UsageError):
        print(str(exc), file=stream or sys.stderr)
        raise SystemExit(EXIT_FAILURE)
    report(exc.stage, message=str(exc), stream=stream)
