import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError

load_dotenv()

DEFAULT_LOG_LEVEL = "INFO"
# Longest label the keyset accepts, in UTF-8 bytes
DEFAULT_MAX_LABEL_BYTES = 64
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET")

ENV_VARS = {
    "key_passphrase": "PEMTRANS_KEY_PASSPHRASE",
    "log_level": "PEMTRANS_LOG_LEVEL",
    "max_label_bytes": "PEMTRANS_MAX_LABEL_BYTES",
}


class ConverterConfig(BaseModel):
    # Passphrase for an encrypted input PEM key; prompted on a TTY when unset
    key_passphrase: Optional[str] = None
    log_level: str = DEFAULT_LOG_LEVEL
    max_label_bytes: int = Field(DEFAULT_MAX_LABEL_BYTES, ge=1)

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in LOG_LEVELS:
            raise ValueError(f"unknown log level {v!r}, expected one of {', '.join(LOG_LEVELS)}")
        return v


def load_config() -> ConverterConfig:
    try:
        return ConverterConfig(
            key_passphrase=os.getenv(ENV_VARS["key_passphrase"]) or None,
            log_level=os.getenv(ENV_VARS["log_level"], DEFAULT_LOG_LEVEL),
            max_label_bytes=os.getenv(ENV_VARS["max_label_bytes"], str(DEFAULT_MAX_LABEL_BYTES)),
        )
    except ValidationError as e:
        problems = "; ".join(
            f"{ENV_VARS.get(str(err['loc'][0]), err['loc'][0])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"invalid configuration: {problems}") from e
