"""Keyset assembly: private-key context plus certificate into one keyset.

The open mode is fixed by ``KeysetTarget.probe`` before anything is written:
an existing readable file is appended to, anything else is created. The
probe is not repeated at open time, so two runs racing on the same path can
both pick CREATE.
"""
from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from .crypto.components import KeyComponentRecord
from .crypto.decoder import CertificateBlob
from .errors import StoreOperationError
from .keyset.constants import Algorithm, Attribute, KeyOpt, KeyUsage, Status
from .keyset.store import Certificate, Context, Keyset, Store, StoreError
from .utils.logging import get_logger

__all__ = [
    "Stage",
    "KeysetTarget",
    "probe_exists",
    "create_context",
    "import_certificate",
    "check_key_usage",
    "open_container",
    "store_private_key",
    "store_public_key",
    "assemble",
]


class Stage(str, Enum):
    CREATE_CONTEXT = "create context"
    SET_LABEL = "set label"
    SET_KEY_COMPONENTS = "set key components"
    IMPORT_CERT = "import certificate"
    OPEN_KEYSET = "open keyset"
    ADD_PRIVATE_KEY = "add private key"
    ADD_PUBLIC_KEY = "add public key"


def probe_exists(path: str) -> bool:
    try:
        with open(path, "rb"):
            return True
    except OSError:
        return False


@dataclass(frozen=True)
class KeysetTarget:
    path: str
    mode: KeyOpt

    @classmethod
    def probe(cls, path: str) -> "KeysetTarget":
        return cls(path=path, mode=KeyOpt.NONE if probe_exists(path) else KeyOpt.CREATE)


def _store_call(stage: Stage, fn: Callable[..., Any], *args: Any) -> Any:
    try:
        return fn(*args)
    except StoreError as e:
        raise StoreOperationError(stage.value, e.status, e.handle, e.message) from e


def create_context(store: Store, record: KeyComponentRecord, label: str) -> Context:
    ctx = _store_call(Stage.CREATE_CONTEXT, store.create_context, Algorithm.RSA)
    try:
        _store_call(Stage.SET_LABEL, ctx.set_attribute_string, Attribute.LABEL, label.encode("utf-8"))
        _store_call(Stage.SET_KEY_COMPONENTS, ctx.set_key_components, record)
    except StoreOperationError:
        ctx.destroy()
        raise
    return ctx


def import_certificate(store: Store, blob: CertificateBlob) -> Certificate:
    return _store_call(Stage.IMPORT_CERT, store.import_cert, blob.data)


def check_key_usage(cert: Certificate, logger: Optional[logging.Logger] = None) -> Optional[KeyUsage]:
    log = logger or get_logger()
    try:
        usage = KeyUsage(cert.get_attribute(Attribute.KEYUSAGE))
    except StoreError as e:
        if e.status == Status.ERROR_BADDATA:
            log.warning("The certificate keyUsage could not be read (%s); treating it as absent.", e.message)
        log.warning(
            "The certificate specifies no keyUsage; the keyset may refuse to use "
            "the key for signing or encryption."
        )
        return None
    log.debug("certificate keyUsage: %s", usage)
    return usage


def open_container(store: Store, target: KeysetTarget) -> Keyset:
    return _store_call(Stage.OPEN_KEYSET, store.keyset_open, target.path, target.mode)


def store_private_key(keyset: Keyset, context: Context, secret: str) -> None:
    _store_call(Stage.ADD_PRIVATE_KEY, keyset.add_private_key, context, secret)


def store_public_key(keyset: Keyset, cert: Certificate) -> None:
    _store_call(Stage.ADD_PUBLIC_KEY, keyset.add_public_key, cert)


def assemble(
    store: Store,
    record: KeyComponentRecord,
    blob: CertificateBlob,
    target: KeysetTarget,
    label: str,
    secret: str,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Write key and certificate into ``target``; every handle is released on exit."""
    log = logger or get_logger()
    with ExitStack() as stack:
        ctx = create_context(store, record, label)
        stack.callback(ctx.destroy)
        cert = import_certificate(store, blob)
        stack.callback(cert.destroy)
        check_key_usage(cert, log)
        log.info("%s keyset %s", "creating" if target.mode == KeyOpt.CREATE else "appending to", target.path)
        keyset = open_container(store, target)
        stack.callback(keyset.close)
        store_private_key(keyset, ctx, secret)
        store_public_key(keyset, cert)
    log.info("stored private key and certificate as '%s' in %s", label, target.path)
