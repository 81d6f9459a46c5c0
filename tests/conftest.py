import datetime
from pathlib import Path
from typing import List, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtensionOID, NameOID

from pemtrans.keyset.constants import KeyOpt
from pemtrans.keyset.store import FileKeysetStore


def make_cert(
    key: rsa.RSAPrivateKey,
    cn: str = "pemtrans test",
    key_usage: bool = True,
    raw_key_usage: Optional[bytes] = None,
) -> x509.Certificate:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
    now = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=365))
    )
    if key_usage:
        builder = builder.add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
    if raw_key_usage is not None:
        # stored as-is, so the extension body need not be a valid KeyUsage
        builder = builder.add_extension(x509.UnrecognizedExtension(ExtensionOID.KEY_USAGE, raw_key_usage), critical=False)
    return builder.sign(key, hashes.SHA256())


def key_pem(key: rsa.RSAPrivateKey, passphrase: Optional[bytes] = None) -> bytes:
    enc = serialization.BestAvailableEncryption(passphrase) if passphrase else serialization.NoEncryption()
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=enc,
    )


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_keys() -> List[rsa.RSAPrivateKey]:
    return [rsa.generate_private_key(public_exponent=65537, key_size=1024) for _ in range(3)]


@pytest.fixture(scope="session")
def rsa_cert(rsa_key) -> x509.Certificate:
    return make_cert(rsa_key)


@pytest.fixture
def key_file(tmp_path: Path, rsa_key) -> Path:
    p = tmp_path / "key.pem"
    p.write_bytes(key_pem(rsa_key))
    return p


@pytest.fixture
def cert_der_file(tmp_path: Path, rsa_cert) -> Path:
    p = tmp_path / "cert.der"
    p.write_bytes(rsa_cert.public_bytes(serialization.Encoding.DER))
    return p


@pytest.fixture
def cert_pem_file(tmp_path: Path, rsa_cert) -> Path:
    p = tmp_path / "cert.pem"
    p.write_bytes(rsa_cert.public_bytes(serialization.Encoding.PEM))
    return p


class RecordingStore(FileKeysetStore):
    """FileKeysetStore that remembers every session and the modes it opened with."""

    sessions: List["RecordingStore"] = []
    opened: List[KeyOpt] = []

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        RecordingStore.sessions.append(self)

    def keyset_open(self, path, mode):
        RecordingStore.opened.append(KeyOpt(mode))
        return super().keyset_open(path, mode)


@pytest.fixture
def recording_store():
    RecordingStore.sessions = []
    RecordingStore.opened = []
    return RecordingStore
