"""Status codes, attribute ids and option values shared by keyset handles.

Negative status values are errors, 0 is success. Attribute ids double as the
error locus reported by a failed handle.
"""
from __future__ import annotations

from enum import Enum, IntEnum, IntFlag

__all__ = [
    "Status",
    "Attribute",
    "ErrorType",
    "KeyOpt",
    "Algorithm",
    "KeyUsage",
    "KEY_TYPE_PRIVATE",
]


KEY_TYPE_PRIVATE = "private"


class Status(IntEnum):
    OK = 0
    ERROR_PARAM = -1
    ERROR_MEMORY = -10
    ERROR_NOTINITED = -11
    ERROR_INITED = -12
    ERROR_NOTAVAIL = -20
    ERROR_PERMISSION = -21
    ERROR_WRONGKEY = -22
    ERROR_BADDATA = -32
    ERROR_OPEN = -40
    ERROR_READ = -41
    ERROR_WRITE = -42
    ERROR_NOTFOUND = -43
    ERROR_DUPLICATE = -44


class Attribute(IntEnum):
    NONE = 0
    # diagnostics
    ERRORTYPE = 1
    ERRORLOCUS = 2
    ERRORMESSAGE = 3
    # context
    ALGO = 1001
    LABEL = 1002
    KEY_COMPONENTS = 1003
    # certificate
    KEYUSAGE = 2001
    # keyset
    KEYSET_SECRET = 3001


class ErrorType(IntEnum):
    NONE = 0
    ATTR_SIZE = 1
    ATTR_VALUE = 2
    ATTR_ABSENT = 3
    ATTR_PRESENT = 4
    CONSTRAINT = 5


class KeyOpt(IntEnum):
    NONE = 0
    READONLY = 1
    CREATE = 2


class Algorithm(str, Enum):
    RSA = "rsa"


class KeyUsage(IntFlag):
    """X.509 keyUsage bits as reported by ``Certificate.get_attribute``."""

    DIGITAL_SIGNATURE = 0x001
    NON_REPUDIATION = 0x002
    KEY_ENCIPHERMENT = 0x004
    DATA_ENCIPHERMENT = 0x008
    KEY_AGREEMENT = 0x010
    KEY_CERT_SIGN = 0x020
    CRL_SIGN = 0x040
    ENCIPHER_ONLY = 0x080
    DECIPHER_ONLY = 0x100
