import dataclasses

import pytest
from cryptography.hazmat.primitives import serialization

from pemtrans.crypto.components import build, extract
from pemtrans.crypto.decoder import decode_private_key
from pemtrans.keyset.constants import Algorithm, Attribute, ErrorType, KeyOpt, KeyUsage, Status
from pemtrans.keyset.store import FileKeysetStore, Store, StoreError

from conftest import key_pem, make_cert


@pytest.fixture
def store():
    with FileKeysetStore() as s:
        yield s


@pytest.fixture(scope="module")
def record(rsa_key):
    return build(extract(decode_private_key(key_pem(rsa_key))))


def _context(store, record, label="k1"):
    ctx = store.create_context(Algorithm.RSA)
    ctx.set_attribute_string(Attribute.LABEL, label.encode())
    ctx.set_key_components(record)
    return ctx


def test_file_store_satisfies_protocol(store):
    assert isinstance(store, Store)


def test_label_too_long_records_error_state(store):
    ctx = store.create_context(Algorithm.RSA)
    with pytest.raises(StoreError) as exc:
        ctx.set_attribute_string(Attribute.LABEL, b"x" * 65)
    assert exc.value.status == Status.ERROR_PARAM
    assert exc.value.handle is ctx
    assert ctx.get_attribute(Attribute.ERRORLOCUS) == Attribute.LABEL
    assert ctx.get_attribute(Attribute.ERRORTYPE) == ErrorType.ATTR_SIZE
    assert "1..64" in ctx.get_attribute_string(Attribute.ERRORMESSAGE)


def test_label_limit_is_configurable():
    with FileKeysetStore(max_label_bytes=4) as s:
        ctx = s.create_context(Algorithm.RSA)
        with pytest.raises(StoreError):
            ctx.set_attribute_string(Attribute.LABEL, b"12345")


def test_label_set_once(store):
    ctx = store.create_context(Algorithm.RSA)
    ctx.set_attribute_string(Attribute.LABEL, b"first")
    with pytest.raises(StoreError) as exc:
        ctx.set_attribute_string(Attribute.LABEL, b"second")
    assert exc.value.status == Status.ERROR_INITED
    assert ctx.get_attribute_string(Attribute.LABEL) == "first"


def test_components_load_key(store, record, rsa_key):
    ctx = _context(store, record)
    assert ctx.private_key.private_numbers() == rsa_key.private_numbers()


def test_swapped_crt_exponents_rejected(store, record):
    ctx = store.create_context(Algorithm.RSA)
    bad = dataclasses.replace(record, e1=record.e2, e2=record.e1)
    with pytest.raises(StoreError) as exc:
        ctx.set_key_components(bad)
    assert exc.value.status == Status.ERROR_BADDATA
    assert ctx.get_attribute(Attribute.ERRORLOCUS) == Attribute.KEY_COMPONENTS


def test_declared_bits_must_match(store, record):
    ctx = store.create_context(Algorithm.RSA)
    bad = dataclasses.replace(record, n=dataclasses.replace(record.n, bits=record.n.bits + 8))
    with pytest.raises(StoreError) as exc:
        ctx.set_key_components(bad)
    assert exc.value.status == Status.ERROR_BADDATA
    assert ctx.get_attribute(Attribute.ERRORTYPE) == ErrorType.ATTR_SIZE


def test_public_key_type_rejected(store, record):
    ctx = store.create_context(Algorithm.RSA)
    with pytest.raises(StoreError) as exc:
        ctx.set_key_components(dataclasses.replace(record, key_type="public"))
    assert exc.value.status == Status.ERROR_PARAM


def test_import_cert_pem_and_der(store, rsa_cert):
    der = rsa_cert.public_bytes(serialization.Encoding.DER)
    pem = rsa_cert.public_bytes(serialization.Encoding.PEM)
    assert store.import_cert(der).der == der
    assert store.import_cert(pem).der == der


def test_import_cert_garbage(store):
    with pytest.raises(StoreError) as exc:
        store.import_cert(b"\x30\x03\x02\x01\x00")
    assert exc.value.status == Status.ERROR_BADDATA


def test_key_usage_flags(store, rsa_key, rsa_cert):
    cert = store.import_cert(rsa_cert.public_bytes(serialization.Encoding.DER))
    usage = KeyUsage(cert.get_attribute(Attribute.KEYUSAGE))
    assert usage == KeyUsage.DIGITAL_SIGNATURE | KeyUsage.KEY_ENCIPHERMENT


def test_key_usage_absent(store, rsa_key):
    bare = make_cert(rsa_key, key_usage=False)
    cert = store.import_cert(bare.public_bytes(serialization.Encoding.DER))
    with pytest.raises(StoreError) as exc:
        cert.get_attribute(Attribute.KEYUSAGE)
    assert exc.value.status == Status.ERROR_NOTFOUND
    assert cert.get_attribute(Attribute.ERRORTYPE) == ErrorType.ATTR_ABSENT


def test_key_usage_malformed(store, rsa_key):
    # OCTET STRING where a BIT STRING belongs
    odd = make_cert(rsa_key, key_usage=False, raw_key_usage=b"\x04\x00")
    cert = store.import_cert(odd.public_bytes(serialization.Encoding.DER))
    with pytest.raises(StoreError) as exc:
        cert.get_attribute(Attribute.KEYUSAGE)
    assert exc.value.status == Status.ERROR_BADDATA
    assert cert.get_attribute(Attribute.ERRORLOCUS) == Attribute.KEYUSAGE
    assert cert.get_attribute(Attribute.ERRORTYPE) == ErrorType.ATTR_VALUE


def test_add_and_read_back(tmp_path, store, record, rsa_key, rsa_cert):
    path = str(tmp_path / "ks.pks")
    ks = store.keyset_open(path, KeyOpt.CREATE)
    ks.add_private_key(_context(store, record), "s3cret")
    ks.add_public_key(store.import_cert(rsa_cert.public_bytes(serialization.Encoding.DER)))
    ks.close()

    ks = store.keyset_open(path, KeyOpt.READONLY)
    kinds = [(e.kind, e.label) for e in ks.entries()]
    assert kinds == [("private", "k1"), ("certificate", "k1")]
    key = ks.get_private_key("k1", "s3cret")
    assert key.private_key.private_numbers() == rsa_key.private_numbers()
    assert ks.get_public_key("k1").certificate == rsa_cert


def test_wrong_secret(tmp_path, store, record):
    path = str(tmp_path / "ks.pks")
    ks = store.keyset_open(path, KeyOpt.CREATE)
    ks.add_private_key(_context(store, record), "s3cret")
    with pytest.raises(StoreError) as exc:
        ks.get_private_key("k1", "guess")
    assert exc.value.status == Status.ERROR_WRONGKEY


def test_empty_secret(tmp_path, store, record):
    ks = store.keyset_open(str(tmp_path / "ks.pks"), KeyOpt.CREATE)
    with pytest.raises(StoreError) as exc:
        ks.add_private_key(_context(store, record), "")
    assert exc.value.status == Status.ERROR_PARAM


def test_duplicate_private_key(tmp_path, store, record):
    ks = store.keyset_open(str(tmp_path / "ks.pks"), KeyOpt.CREATE)
    ks.add_private_key(_context(store, record, "a"), "pw")
    with pytest.raises(StoreError) as exc:
        ks.add_private_key(_context(store, record, "b"), "pw")
    assert exc.value.status == Status.ERROR_DUPLICATE
    assert len(ks.entries()) == 1


def test_open_existing_missing(tmp_path, store):
    with pytest.raises(StoreError) as exc:
        store.keyset_open(str(tmp_path / "none.pks"), KeyOpt.NONE)
    assert exc.value.status == Status.ERROR_OPEN


def test_open_existing_not_a_keyset(tmp_path, store):
    p = tmp_path / "junk.pks"
    p.write_bytes(b"hello")
    with pytest.raises(StoreError) as exc:
        store.keyset_open(str(p), KeyOpt.NONE)
    assert exc.value.status == Status.ERROR_BADDATA


def test_readonly_rejects_writes(tmp_path, store, record):
    path = str(tmp_path / "ks.pks")
    store.keyset_open(path, KeyOpt.CREATE).close()
    ks = store.keyset_open(path, KeyOpt.READONLY)
    with pytest.raises(StoreError) as exc:
        ks.add_private_key(_context(store, record), "pw")
    assert exc.value.status == Status.ERROR_PERMISSION


def test_handles_released_with_session(record):
    with FileKeysetStore() as s:
        ctx = _context(s, record)
    with pytest.raises(StoreError) as exc:
        ctx.private_key
    assert exc.value.status == Status.ERROR_NOTINITED
    with pytest.raises(StoreError):
        s.create_context(Algorithm.RSA)
