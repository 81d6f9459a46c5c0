from __future__ import annotations

from typing import Callable, Optional

from .assembler import KeysetTarget, assemble
from .config import ConverterConfig, load_config
from .crypto.components import build, extract
from .crypto.decoder import load_private_key, read_certificate_blob
from .keyset.store import FileKeysetStore
from .utils.logging import get_logger


def convert(
    key_file: str,
    cert_file: str,
    out_file: str,
    label: str,
    secret: str,
    *,
    config: Optional[ConverterConfig] = None,
    store_factory: Callable[..., FileKeysetStore] = FileKeysetStore,
) -> KeysetTarget:
    """Convert ``key_file`` + ``cert_file`` into an entry of keyset ``out_file``.

    Both inputs are read and the output mode decided before the store session
    starts; the session is torn down whether or not assembly succeeds.
    Raises ``PemtransError`` subclasses on failure.
    """
    cfg = config or load_config()
    log = get_logger(cfg.log_level)

    key = load_private_key(key_file, cfg.key_passphrase)
    blob = read_certificate_blob(cert_file)
    log.debug("read %d certificate bytes from %s", blob.length, cert_file)

    target = KeysetTarget.probe(out_file)
    record = build(extract(key))
    log.debug("transcribed %d-bit RSA key", record.n.bits)

    with store_factory(max_label_bytes=cfg.max_label_bytes) as store:
        assemble(store, record, blob, target, label, secret, log)
    return target
