"""Input decoding: PEM RSA private keys and raw certificate blobs."""
from __future__ import annotations

import getpass
import os
import sys
from dataclasses import dataclass
from typing import BinaryIO, Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..errors import InputError
from .components import RawKeyMaterial

__all__ = [
    "DecodeError",
    "CertificateBlob",
    "decode_private_key",
    "load_private_key",
    "read_certificate_blob",
]


class DecodeError(ValueError):
    pass


class PassphraseRequired(DecodeError):
    pass


@dataclass(frozen=True)
class CertificateBlob:
    path: str
    data: bytes
    length: int


def decode_private_key(data: bytes, password: Optional[bytes] = None) -> RawKeyMaterial:
    try:
        key = serialization.load_pem_private_key(data, password=password)
    except TypeError as e:
        # raised both for a missing and for an unexpected password
        if password is None:
            raise PassphraseRequired(str(e)) from e
        # key is not encrypted; the passphrase does not apply
        return decode_private_key(data, None)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise DecodeError(str(e)) from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise DecodeError(f"expected an RSA private key, got {type(key).__name__}")
    pn = key.private_numbers()
    return RawKeyMaterial(
        n=pn.public_numbers.n,
        e=pn.public_numbers.e,
        d=pn.d,
        p=pn.p,
        q=pn.q,
        qinv=pn.iqmp,
        dp=pn.dmp1,
        dq=pn.dmq1,
    )


def load_private_key(path: str, passphrase: Optional[str] = None) -> RawKeyMaterial:
    """Read and decode ``path``; prompts for a passphrase on a TTY if needed."""
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise InputError("private key", path, e.strerror or str(e)) from e
    password = passphrase.encode("utf-8") if passphrase is not None else None
    try:
        return decode_private_key(data, password)
    except PassphraseRequired as e:
        if not sys.stdin.isatty():
            raise InputError("private key", path, "key is encrypted and no passphrase was given") from e
        prompt = getpass.getpass(f"Enter PEM pass phrase for '{path}': ")
        try:
            return decode_private_key(data, prompt.encode("utf-8"))
        except DecodeError as e2:
            raise InputError("private key", path, str(e2)) from e2
    except DecodeError as e:
        raise InputError("private key", path, str(e)) from e


def _reported_size(f: BinaryIO) -> int:
    return os.fstat(f.fileno()).st_size


def read_certificate_blob(path: str) -> CertificateBlob:
    """Read the whole certificate file; fewer bytes than fstat reports is an error."""
    try:
        with open(path, "rb") as f:
            size = _reported_size(f)
            data = f.read(size)
    except OSError as e:
        raise InputError("certificate", path, e.strerror or str(e)) from e
    if len(data) < size:
        raise InputError("certificate", path, f"short read ({len(data)} of {size} bytes)")
    if not data:
        raise InputError("certificate", path, "file is empty")
    return CertificateBlob(path=path, data=data, length=size)
