"""File keyset store.

A ``FileKeysetStore`` is the process-scoped library session: create it once,
use it as a context manager, and every handle it hands out (contexts,
certificates, keysets) is released when the session ends. Handles keep the
error state of their last failed call so callers can read back the locus,
type and message, e.g.::

    with FileKeysetStore() as store:
        ctx = store.create_context(Algorithm.RSA)
        try:
            ctx.set_attribute_string(Attribute.LABEL, b"")
        except StoreError as e:
            e.handle.get_attribute(Attribute.ERRORLOCUS)  # Attribute.LABEL
"""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Protocol, Set, runtime_checkable

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..config import DEFAULT_MAX_LABEL_BYTES
from .constants import Algorithm, Attribute, ErrorType, KeyOpt, KeyUsage, KEY_TYPE_PRIVATE, Status
from .model import (
    KIND_CERTIFICATE,
    KIND_PRIVATE,
    KeysetEntry,
    compute_key_id,
    read_keyset_file,
    write_keyset_file,
)

__all__ = [
    "StoreError",
    "Handle",
    "Context",
    "Certificate",
    "Keyset",
    "Store",
    "FileKeysetStore",
]


class StoreError(Exception):
    def __init__(self, status: Status, handle: Optional["Handle"] = None, message: str = ""):
        self.status = Status(status)
        self.handle = handle
        self.message = message
        super().__init__(f"{self.status.name} ({int(self.status)})" + (f": {message}" if message else ""))


class Handle:
    def __init__(self, store: "FileKeysetStore"):
        self._store = store
        self._destroyed = False
        self._error_locus = Attribute.NONE
        self._error_type = ErrorType.NONE
        self._error_message = ""
        store._register(self)

    def _check(self) -> None:
        if self._destroyed or not self._store.active:
            raise StoreError(Status.ERROR_NOTINITED, None, "handle is not usable outside an active store session")

    def _fail(self, status: Status, message: str = "", locus: Attribute = Attribute.NONE,
              error_type: ErrorType = ErrorType.NONE) -> StoreError:
        self._error_locus = locus
        self._error_type = error_type
        self._error_message = message
        return StoreError(status, self, message)

    def _attribute(self, attr: Attribute) -> Any:
        raise self._fail(Status.ERROR_NOTFOUND, f"attribute {attr.name} not present", attr, ErrorType.ATTR_ABSENT)

    def get_attribute(self, attr: Attribute) -> int:
        if attr == Attribute.ERRORLOCUS:
            return int(self._error_locus)
        if attr == Attribute.ERRORTYPE:
            return int(self._error_type)
        self._check()
        return self._attribute(attr)

    def get_attribute_string(self, attr: Attribute) -> str:
        # Error attributes stay readable after destroy so reports can use them
        if attr == Attribute.ERRORMESSAGE:
            if not self._error_message:
                raise StoreError(Status.ERROR_NOTFOUND, None, "no error message recorded")
            return self._error_message
        self._check()
        value = self._attribute(attr)
        if not isinstance(value, str):
            raise self._fail(Status.ERROR_PARAM, f"attribute {attr.name} is not a string", attr, ErrorType.ATTR_VALUE)
        return value

    def destroy(self) -> None:
        if not self._destroyed:
            self._destroyed = True
            self._release()
            self._store._unregister(self)

    def _release(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.destroy()


class Context(Handle):
    """Private-key context: label plus key material."""

    def __init__(self, store: "FileKeysetStore", algorithm: Algorithm):
        super().__init__(store)
        self.algorithm = algorithm
        self.label: Optional[str] = None
        self._key: Optional[rsa.RSAPrivateKey] = None

    @property
    def private_key(self) -> rsa.RSAPrivateKey:
        self._check()
        if self._key is None:
            raise self._fail(Status.ERROR_NOTINITED, "no key loaded", Attribute.KEY_COMPONENTS, ErrorType.ATTR_ABSENT)
        return self._key

    @property
    def key_id(self) -> bytes:
        return compute_key_id(_spki(self.private_key.public_key()))

    def _attribute(self, attr: Attribute) -> Any:
        if attr == Attribute.LABEL and self.label is not None:
            return self.label
        if attr == Attribute.ALGO:
            return self.algorithm.value
        return super()._attribute(attr)

    def set_attribute_string(self, attr: Attribute, value: bytes) -> None:
        self._check()
        if attr != Attribute.LABEL:
            raise self._fail(Status.ERROR_PARAM, f"attribute {attr.name} cannot be set as a string", attr, ErrorType.ATTR_VALUE)
        if self.label is not None:
            raise self._fail(Status.ERROR_INITED, "label already set", attr, ErrorType.ATTR_PRESENT)
        max_len = self._store.max_label_bytes
        if not value or len(value) > max_len:
            raise self._fail(Status.ERROR_PARAM, f"label must be 1..{max_len} bytes, got {len(value)}", attr, ErrorType.ATTR_SIZE)
        try:
            self.label = value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise self._fail(Status.ERROR_BADDATA, f"label is not UTF-8: {e}", attr, ErrorType.ATTR_VALUE)

    def set_key_components(self, record: Any) -> None:
        """Load a ``KeyComponentRecord``-shaped object (n, e, d, p, q, u, e1, e2)."""
        self._check()
        locus = Attribute.KEY_COMPONENTS
        if self._key is not None:
            raise self._fail(Status.ERROR_INITED, "key already loaded", locus, ErrorType.ATTR_PRESENT)
        if getattr(record, "key_type", None) != KEY_TYPE_PRIVATE:
            raise self._fail(Status.ERROR_PARAM, "key components are not a private key", locus, ErrorType.ATTR_VALUE)
        values: Dict[str, int] = {}
        for name in ("n", "e", "d", "p", "q", "u", "e1", "e2"):
            comp = getattr(record, name, None)
            if comp is None:
                raise self._fail(Status.ERROR_PARAM, f"component {name} missing", locus, ErrorType.ATTR_ABSENT)
            v = int.from_bytes(comp.data, "big")
            if v.bit_length() != comp.bits:
                raise self._fail(
                    Status.ERROR_BADDATA,
                    f"component {name} declares {comp.bits} bits but holds {v.bit_length()}",
                    locus,
                    ErrorType.ATTR_SIZE,
                )
            values[name] = v
        try:
            numbers = rsa.RSAPrivateNumbers(
                p=values["p"],
                q=values["q"],
                d=values["d"],
                dmp1=values["e1"],
                dmq1=values["e2"],
                iqmp=values["u"],
                public_numbers=rsa.RSAPublicNumbers(e=values["e"], n=values["n"]),
            )
            self._key = numbers.private_key()
        except (ValueError, UnsupportedAlgorithm) as e:
            raise self._fail(Status.ERROR_BADDATA, f"inconsistent RSA components: {e}", locus, ErrorType.ATTR_VALUE)

    def _release(self) -> None:
        self._key = None


class Certificate(Handle):
    def __init__(self, store: "FileKeysetStore", cert: x509.Certificate):
        super().__init__(store)
        self._cert = cert

    @property
    def certificate(self) -> x509.Certificate:
        self._check()
        return self._cert

    @property
    def der(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.DER)

    @property
    def key_id(self) -> bytes:
        return compute_key_id(_spki(self.certificate.public_key()))

    def _attribute(self, attr: Attribute) -> Any:
        if attr == Attribute.KEYUSAGE:
            try:
                ku = self._cert.extensions.get_extension_for_class(x509.KeyUsage).value
            except x509.ExtensionNotFound:
                raise self._fail(Status.ERROR_NOTFOUND, "certificate has no keyUsage extension", attr, ErrorType.ATTR_ABSENT)
            except (ValueError, x509.DuplicateExtension) as e:
                raise self._fail(Status.ERROR_BADDATA, f"malformed keyUsage extension: {e}", attr, ErrorType.ATTR_VALUE)
            return int(_key_usage_flags(ku))
        return super()._attribute(attr)


class Keyset(Handle):
    def __init__(self, store: "FileKeysetStore", path: str, mode: KeyOpt, entries: List[KeysetEntry]):
        super().__init__(store)
        self.path = path
        self.mode = KeyOpt(mode)
        self._entries = entries

    def entries(self) -> List[KeysetEntry]:
        self._check()
        return list(self._entries)

    def _commit(self, entry: KeysetEntry) -> None:
        if self.mode == KeyOpt.READONLY:
            raise self._fail(Status.ERROR_PERMISSION, "keyset opened read-only")
        try:
            write_keyset_file(self.path, self._entries + [entry])
        except OSError as e:
            raise self._fail(Status.ERROR_WRITE, f"cannot write keyset '{self.path}': {e}")
        self._entries.append(entry)

    def add_private_key(self, context: Context, secret: str) -> None:
        self._check()
        key = context.private_key
        if context.label is None:
            raise self._fail(Status.ERROR_NOTINITED, "context has no label", Attribute.LABEL, ErrorType.ATTR_ABSENT)
        if not secret:
            raise self._fail(Status.ERROR_PARAM, "secret must not be empty", Attribute.KEYSET_SECRET, ErrorType.ATTR_SIZE)
        key_id = context.key_id
        for e in self._entries:
            if e.kind == KIND_PRIVATE and (e.key_id == key_id or e.label == context.label):
                raise self._fail(Status.ERROR_DUPLICATE, f"private key '{e.label}' already present in keyset")
        data = key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(secret.encode("utf-8")),
        )
        self._commit(KeysetEntry(KIND_PRIVATE, key_id, context.label, data, context.algorithm.value))

    def add_public_key(self, cert: Certificate) -> None:
        self._check()
        key_id = cert.key_id
        label = ""
        for e in self._entries:
            if e.kind == KIND_CERTIFICATE and e.key_id == key_id:
                raise self._fail(Status.ERROR_DUPLICATE, "certificate already present in keyset")
            if e.kind == KIND_PRIVATE and e.key_id == key_id:
                label = e.label
        if not label:
            cns = cert.certificate.subject.get_attributes_for_oid(x509.NameOID.COMMON_NAME)
            label = str(cns[0].value) if cns else ""
        self._commit(KeysetEntry(KIND_CERTIFICATE, key_id, label, cert.der, Algorithm.RSA.value))

    def _find(self, kind: str, label: str) -> KeysetEntry:
        for e in self._entries:
            if e.kind == kind and e.label == label:
                return e
        raise self._fail(Status.ERROR_NOTFOUND, f"no {kind} entry labelled '{label}'")

    def get_private_key(self, label: str, secret: str) -> Context:
        self._check()
        entry = self._find(KIND_PRIVATE, label)
        try:
            key = serialization.load_der_private_key(entry.data, password=secret.encode("utf-8"))
        except (ValueError, TypeError) as e:
            raise self._fail(Status.ERROR_WRONGKEY, f"cannot unlock private key '{label}': {e}")
        if not isinstance(key, rsa.RSAPrivateKey):
            raise self._fail(Status.ERROR_BADDATA, f"entry '{label}' is not an RSA key")
        ctx = Context(self._store, Algorithm.RSA)
        ctx.label = entry.label
        ctx._key = key
        return ctx

    def get_public_key(self, label: str) -> Certificate:
        self._check()
        entry = self._find(KIND_CERTIFICATE, label)
        try:
            cert = x509.load_der_x509_certificate(entry.data)
        except ValueError as e:
            raise self._fail(Status.ERROR_BADDATA, f"corrupt certificate entry '{label}': {e}")
        return Certificate(self._store, cert)

    def close(self) -> None:
        self.destroy()


@runtime_checkable
class Store(Protocol):
    def create_context(self, algorithm: Algorithm) -> Context: ...
    def import_cert(self, data: bytes) -> Certificate: ...
    def keyset_open(self, path: str, mode: KeyOpt) -> Keyset: ...


class FileKeysetStore:
    """Store session backed by single-file CBOR keysets."""

    def __init__(self, max_label_bytes: int = DEFAULT_MAX_LABEL_BYTES):
        self.max_label_bytes = max_label_bytes
        self.active = False
        self._handles: Set[Handle] = set()

    def init(self) -> None:
        if self.active:
            raise StoreError(Status.ERROR_INITED, None, "store session already initialised")
        self.active = True

    def shutdown(self) -> None:
        for h in list(self._handles):
            h.destroy()
        self.active = False

    def __enter__(self) -> "FileKeysetStore":
        self.init()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    def _register(self, handle: Handle) -> None:
        self._handles.add(handle)

    def _unregister(self, handle: Handle) -> None:
        self._handles.discard(handle)

    def _require_session(self) -> None:
        if not self.active:
            raise StoreError(Status.ERROR_NOTINITED, None, "store session not initialised")

    def create_context(self, algorithm: Algorithm) -> Context:
        self._require_session()
        try:
            algorithm = Algorithm(algorithm)
        except ValueError:
            raise StoreError(Status.ERROR_NOTAVAIL, None, f"unsupported algorithm {algorithm!r}")
        return Context(self, algorithm)

    def import_cert(self, data: bytes) -> Certificate:
        self._require_session()
        if not data:
            raise StoreError(Status.ERROR_PARAM, None, "empty certificate data")
        try:
            if data.lstrip().startswith(b"-----BEGIN"):
                cert = x509.load_pem_x509_certificate(data)
            else:
                cert = x509.load_der_x509_certificate(data)
        except ValueError as e:
            raise StoreError(Status.ERROR_BADDATA, None, f"cannot decode certificate: {e}")
        if not isinstance(cert.public_key(), rsa.RSAPublicKey):
            raise StoreError(Status.ERROR_NOTAVAIL, None, "certificate does not carry an RSA public key")
        return Certificate(self, cert)

    def keyset_open(self, path: str, mode: KeyOpt) -> Keyset:
        self._require_session()
        try:
            mode = KeyOpt(mode)
        except ValueError:
            raise StoreError(Status.ERROR_PARAM, None, f"unknown keyset open mode {mode!r}")
        if mode == KeyOpt.CREATE:
            # CREATE replaces whatever is at path
            try:
                write_keyset_file(path, [])
            except OSError as e:
                raise StoreError(Status.ERROR_OPEN, None, f"cannot create keyset '{path}': {e}")
            return Keyset(self, path, mode, [])
        if not os.path.exists(path):
            raise StoreError(Status.ERROR_OPEN, None, f"keyset '{path}' does not exist")
        try:
            entries = read_keyset_file(path)
        except OSError as e:
            raise StoreError(Status.ERROR_READ, None, f"cannot read keyset '{path}': {e}")
        except ValueError as e:
            raise StoreError(Status.ERROR_BADDATA, None, f"'{path}' is not a keyset: {e}")
        return Keyset(self, path, mode, entries)


def _spki(public_key: Any) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _key_usage_flags(ku: x509.KeyUsage) -> KeyUsage:
    flags = KeyUsage(0)
    if ku.digital_signature:
        flags |= KeyUsage.DIGITAL_SIGNATURE
    if ku.content_commitment:
        flags |= KeyUsage.NON_REPUDIATION
    if ku.key_encipherment:
        flags |= KeyUsage.KEY_ENCIPHERMENT
    if ku.data_encipherment:
        flags |= KeyUsage.DATA_ENCIPHERMENT
    if ku.key_agreement:
        flags |= KeyUsage.KEY_AGREEMENT
        # only defined when key_agreement is set
        if ku.encipher_only:
            flags |= KeyUsage.ENCIPHER_ONLY
        if ku.decipher_only:
            flags |= KeyUsage.DECIPHER_ONLY
    if ku.key_cert_sign:
        flags |= KeyUsage.KEY_CERT_SIGN
    if ku.crl_sign:
        flags |= KeyUsage.CRL_SIGN
    return flags
