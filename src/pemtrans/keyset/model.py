from __future__ import annotations

import hashlib
import os
import tempfile
from dataclasses import dataclass
from typing import Any, Dict, List

import cbor2


MAGIC = b"\x89pks\r\n\x1a\n"  # \x89 p k s \r \n \x1a \n
FORMAT_VERSION = "v1"

KIND_PRIVATE = "private"
KIND_CERTIFICATE = "certificate"


@dataclass(frozen=True)
class KeysetEntry:
    kind: str
    key_id: bytes
    label: str
    data: bytes
    algorithm: str

    def to_map(self) -> Dict[int, Any]:
        # 1: kind, 2: key_id, 3: label, 4: data, 5: algorithm
        return {1: self.kind, 2: self.key_id, 3: self.label, 4: self.data, 5: self.algorithm}

    @classmethod
    def from_map(cls, m: Dict[int, Any]) -> "KeysetEntry":
        for k in (1, 2, 3, 4, 5):
            if k not in m:
                raise ValueError(f"entry missing key {k}")
        if m[1] not in (KIND_PRIVATE, KIND_CERTIFICATE):
            raise ValueError(f"unknown entry kind {m[1]!r}")
        if not isinstance(m[2], bytes) or not isinstance(m[4], bytes):
            raise ValueError("entry key_id/data must be bytes")
        return cls(kind=m[1], key_id=m[2], label=str(m[3]), data=m[4], algorithm=str(m[5]))


def det_cbor_dumps(obj: Any) -> bytes:
    return cbor2.dumps(
        obj,
        canonical=True,
        timezone=None,
        datetime_as_timestamp=False,
        value_sharing=False,
        default=None,
    )


def compute_key_id(spki_der: bytes) -> bytes:
    """Key id linking a private key entry to its certificate: SHA-256(SPKI)."""
    return hashlib.sha256(spki_der).digest()


def file_write_keyset(entries: List[KeysetEntry]) -> bytes:
    return MAGIC + det_cbor_dumps({1: FORMAT_VERSION, 2: [e.to_map() for e in entries]})


def file_read_keyset(buf: bytes) -> List[KeysetEntry]:
    if not buf.startswith(MAGIC):
        raise ValueError("bad magic")
    v = cbor2.loads(buf[len(MAGIC) :])
    if not isinstance(v, dict):
        raise ValueError("keyset top-level must be CBOR map")
    if v.get(1) != FORMAT_VERSION:
        raise ValueError(f"unsupported keyset version {v.get(1)!r}")
    raw = v.get(2)
    if not isinstance(raw, list):
        raise ValueError("keyset entries must be a CBOR array")
    return [KeysetEntry.from_map(m) for m in raw]


def write_keyset_file(path: str, entries: List[KeysetEntry]) -> None:
    """Write the keyset next to ``path`` and move it into place."""
    buf = file_write_keyset(entries)
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp = tempfile.mkstemp(prefix=".pemtrans-", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(buf)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def read_keyset_file(path: str) -> List[KeysetEntry]:
    with open(path, "rb") as f:
        return file_read_keyset(f.read())
