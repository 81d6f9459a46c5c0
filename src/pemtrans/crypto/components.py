"""RSA key-component transcription.

``extract`` turns the eight integers of a decoded RSA private key into
minimal big-endian byte strings with their exact bit lengths; ``build`` lays
those out as the component record a keyset key import expects:

    n, e, d, p, q, u (= qInv), e1 (= dP), e2 (= dQ)

Getting u/e1/e2 wrong still yields a structurally valid record, so the
mapping lives in one table (``ROLE_SOURCES``) and nowhere else.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Mapping, Optional, Tuple

from ..errors import AllocationFailure, MalformedKeyError
from ..keyset.constants import KEY_TYPE_PRIVATE

__all__ = [
    "Role",
    "ROLE_SOURCES",
    "RawKeyMaterial",
    "ComponentBuffer",
    "KeyComponentRecord",
    "extract",
    "build",
]


class Role(str, Enum):
    N = "n"
    E = "e"
    D = "d"
    P = "p"
    Q = "q"
    U = "u"
    E1 = "e1"
    E2 = "e2"


# record role -> RawKeyMaterial field, in record order
ROLE_SOURCES: Dict[Role, str] = {
    Role.N: "n",
    Role.E: "e",
    Role.D: "d",
    Role.P: "p",
    Role.Q: "q",
    Role.U: "qinv",
    Role.E1: "dp",
    Role.E2: "dq",
}


@dataclass(frozen=True)
class RawKeyMaterial:
    n: Optional[int]
    e: Optional[int]
    d: Optional[int]
    p: Optional[int]
    q: Optional[int]
    qinv: Optional[int]
    dp: Optional[int]
    dq: Optional[int]


@dataclass(frozen=True)
class ComponentBuffer:
    data: bytes
    bits: int

    @classmethod
    def from_int(cls, value: int) -> "ComponentBuffer":
        bits = value.bit_length()
        return cls(data=value.to_bytes((bits + 7) // 8, "big"), bits=bits)

    def to_int(self) -> int:
        return int.from_bytes(self.data, "big")


@dataclass(frozen=True)
class KeyComponentRecord:
    n: ComponentBuffer
    e: ComponentBuffer
    d: ComponentBuffer
    p: ComponentBuffer
    q: ComponentBuffer
    u: ComponentBuffer
    e1: ComponentBuffer
    e2: ComponentBuffer
    key_type: str = KEY_TYPE_PRIVATE

    def __getitem__(self, role: Role) -> ComponentBuffer:
        return getattr(self, Role(role).value)

    def items(self) -> Iterator[Tuple[Role, ComponentBuffer]]:
        for role in Role:
            yield role, self[role]


def _component(key: RawKeyMaterial, name: str) -> ComponentBuffer:
    value = getattr(key, name, None)
    if value is None:
        raise MalformedKeyError(name, "missing")
    if value <= 0:
        raise MalformedKeyError(name, "zero" if value == 0 else "negative")
    try:
        return ComponentBuffer.from_int(value)
    except MemoryError as e:
        raise AllocationFailure(f"cannot allocate buffer for RSA component '{name}'") from e


def extract(key: RawKeyMaterial) -> Dict[Role, ComponentBuffer]:
    """Transcribe all eight components or raise; never returns a partial map."""
    out: Dict[Role, ComponentBuffer] = {}
    for role, name in ROLE_SOURCES.items():
        out[role] = _component(key, name)
    return out


def build(buffers: Mapping[Role, ComponentBuffer]) -> KeyComponentRecord:
    return KeyComponentRecord(**{role.value: buffers[role] for role in Role})


