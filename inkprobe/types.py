"""Core types for inkprobe.

Public data structures are Pydantic v2 models. Addresses use the SS58 format
(base58 over a network prefix, the 32-byte public key and a blake2b checksum),
byte strings are hex-encoded with a ``0x`` prefix on the wire, and gas
ceilings are explicit per query step.
"""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)


# ---------------------------------------------------------------------------
# SS58 helpers (minimal, self-contained)
# ---------------------------------------------------------------------------

_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_SS58_PREFIX = b"SS58PRE"
_SS58_CHECKSUM_LEN = 2

DEFAULT_SS58_FORMAT = 42


def b58encode(data: bytes) -> str:
    """Encode *data* with the bitcoin base58 alphabet."""
    num = int.from_bytes(data, "big")
    out = ""
    while num > 0:
        num, rem = divmod(num, 58)
        out = _B58_ALPHABET[rem] + out
    pad = len(data) - len(data.lstrip(b"\x00"))
    return _B58_ALPHABET[0] * pad + out


def b58decode(text: str) -> bytes:
    """Decode a base58 string produced by :func:`b58encode`."""
    num = 0
    for ch in text:
        idx = _B58_ALPHABET.find(ch)
        if idx < 0:
            raise ValueError(f"invalid base58 character {ch!r}")
        num = num * 58 + idx
    body = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    pad = len(text) - len(text.lstrip(_B58_ALPHABET[0]))
    return b"\x00" * pad + body


def _ss58_checksum(payload: bytes) -> bytes:
    return hashlib.blake2b(_SS58_PREFIX + payload, digest_size=64).digest()[:_SS58_CHECKSUM_LEN]


def _ss58_prefix_bytes(ss58_format: int) -> bytes:
    if 0 <= ss58_format < 64:
        return bytes([ss58_format])
    if 64 <= ss58_format < 16384:
        first = ((ss58_format & 0b1111_1100) >> 2) | 0b0100_0000
        second = (ss58_format >> 8) | ((ss58_format & 0b0000_0011) << 6)
        return bytes([first, second])
    raise ValueError(f"ss58 format out of range: {ss58_format}")


def ss58_encode(public_key: bytes, ss58_format: int = DEFAULT_SS58_FORMAT) -> str:
    """Encode a 32-byte public key as an SS58 address.

    Raises:
        ValueError: If *public_key* is not 32 bytes or the format is out of range.
    """
    if len(public_key) != 32:
        raise ValueError(f"public key must be 32 bytes, got {len(public_key)}")
    payload = _ss58_prefix_bytes(ss58_format) + bytes(public_key)
    return b58encode(payload + _ss58_checksum(payload))


def ss58_decode(address: str) -> tuple[int, bytes]:
    """Decode an SS58 address, returning ``(ss58_format, public_key)``.

    Raises:
        ValueError: If the address is malformed or the checksum does not match.
    """
    raw = b58decode(address)
    if not raw:
        raise ValueError("empty address")
    if raw[0] < 64:
        ss58_format, prefix_len = raw[0], 1
    elif raw[0] < 128 and len(raw) > 1:
        ss58_format = ((raw[0] & 0b0011_1111) << 2) | (raw[1] >> 6) | ((raw[1] & 0b0011_1111) << 8)
        prefix_len = 2
    else:
        raise ValueError("invalid ss58 prefix")
    if len(raw) != prefix_len + 32 + _SS58_CHECKSUM_LEN:
        raise ValueError(f"unexpected ss58 payload length {len(raw)}")
    payload, checksum = raw[:-_SS58_CHECKSUM_LEN], raw[-_SS58_CHECKSUM_LEN:]
    if _ss58_checksum(payload) != checksum:
        raise ValueError("invalid ss58 checksum")
    return ss58_format, payload[prefix_len:]


def public_key_from_address(address: str) -> bytes:
    """Return the 32-byte public key behind an SS58 address or ``0x`` hex key."""
    if address.startswith("0x"):
        key = bytes.fromhex(address[2:])
        if len(key) != 32:
            raise ValueError(f"public key must be 32 bytes, got {len(key)}")
        return key
    return ss58_decode(address)[1]


def is_valid_address(address: Any) -> bool:
    if not isinstance(address, str):
        return False
    try:
        public_key_from_address(address)
    except ValueError:
        return False
    return True


def parse_hex(value: str | bytes) -> bytes:
    """Accept raw bytes or a (``0x``-prefixed) hex string."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = value[2:] if value.startswith("0x") else value
    return bytes.fromhex(text)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class KeyAlgorithm(str, Enum):
    """Signature schemes an identity can be derived for."""

    ED25519 = "ed25519"
    SR25519 = "sr25519"


class SessionState(str, Enum):
    """Lifecycle of a node session."""

    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


class StepStatus(str, Enum):
    """Classification of a single query step."""

    OK = "ok"
    REMOTE_FAULT = "remote_fault"
    LOCAL_FAULT = "local_fault"


# ---------------------------------------------------------------------------
# Core models
# ---------------------------------------------------------------------------


class SignedMessage(BaseModel):
    """A message, its signature and the SS58 address of the signer."""

    model_config = ConfigDict(frozen=True)

    message: bytes
    signature: bytes
    signer: str

    @field_serializer("message", "signature")
    @classmethod
    def _serialize_bytes(cls, v: bytes, _info: Any) -> str:
        return "0x" + v.hex()


class NodeInfo(BaseModel):
    """Identity of the node a session is connected to."""

    model_config = ConfigDict(frozen=True)

    chain: str
    implementation: str
    version: str


class GasCeiling(BaseModel):
    """Upper gas bound for one query; ``limit=None`` means unbounded.

    Accepts an int, a decimal string (arbitrarily large) or ``"unbounded"``.
    Any negative number is treated as unbounded.
    """

    model_config = ConfigDict(frozen=True)

    limit: Annotated[int, Field(ge=0)] | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_scalar(cls, data: Any) -> Any:
        if isinstance(data, bool):
            raise ValueError("gas ceiling must be a number or 'unbounded'")
        if isinstance(data, str):
            text = data.strip().lower()
            if text in ("unbounded", "unlimited", "max"):
                return {"limit": None}
            data = int(text.replace("_", ""))
        if isinstance(data, int):
            return {"limit": None if data < 0 else data}
        return data

    @classmethod
    def unbounded(cls) -> "GasCeiling":
        return cls(limit=None)

    @property
    def is_unbounded(self) -> bool:
        return self.limit is None

    def resolve(self, max_gas: int | None = None) -> int | None:
        """Concrete limit to put on the wire for this ceiling."""
        return max_gas if self.limit is None else self.limit

    def __str__(self) -> str:
        return "unbounded" if self.limit is None else str(self.limit)


class PageWindow(BaseModel):
    """An ``(offset, limit)`` pair bounding an enumerating query."""

    model_config = ConfigDict(frozen=True)

    offset: Annotated[int, Field(ge=0)]
    limit: Annotated[int, Field(ge=1)]

    @model_validator(mode="before")
    @classmethod
    def _from_pair(cls, data: Any) -> Any:
        if isinstance(data, (list, tuple)):
            if len(data) != 2:
                raise ValueError("page window must be an [offset, limit] pair")
            return {"offset": data[0], "limit": data[1]}
        return data

    def as_arg(self) -> list[int]:
        """Positional form appended to a query's argument list."""
        return [self.offset, self.limit]


class QueryCall(BaseModel):
    """A single read-only invocation against a bound contract."""

    model_config = ConfigDict(frozen=True)

    method: str
    caller: str
    value: Literal[0] = 0
    gas: GasCeiling
    args: tuple[Any, ...] = ()
    page: PageWindow | None = None

    @field_validator("caller")
    @classmethod
    def _check_caller(cls, v: str) -> str:
        if not is_valid_address(v):
            raise ValueError(f"invalid caller address {v!r}")
        return v

    def positional_args(self) -> list[Any]:
        args = list(self.args)
        if self.page is not None:
            args.append(self.page.as_arg())
        return args


class Ok(BaseModel):
    """The contract produced a value."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["ok"] = "ok"
    value: Any = None


class Err(BaseModel):
    """The contract executed and declined to produce a value."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["err"] = "err"
    fault: Any = None


class QueryResult(BaseModel):
    """Decoded response of a contract query."""

    model_config = ConfigDict(frozen=True)

    gas_consumed: Any = None
    gas_required: Any = None
    debug_message: str = ""
    outcome: Annotated[Union[Ok, Err], Field(discriminator="kind")]

    @property
    def is_ok(self) -> bool:
        return isinstance(self.outcome, Ok)
