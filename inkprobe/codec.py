"""SCALE encoding against an ink! metadata type registry.

The registry maps type ids to scale-info definitions (``primitive``,
``composite``, ``array``, ``sequence``, ``tuple``, ``variant``,
``compact``). :class:`ScaleCodec` turns Python values into call data and
contract output back into JSON-friendly values:

- ``AccountId`` composites take and produce SS58 strings;
- byte arrays and ``Vec<u8>`` take bytes or ``0x`` hex and produce ``0x`` hex;
- ``Option`` decodes to ``None`` or the inner value, ``Result`` to
  ``{"Ok": v}`` / ``{"Err": e}``, other enums to their variant name or
  ``{name: payload}``;
- ``BTreeMap`` composites decode to dicts.

Layout reference (little-endian throughout)::

    uN / iN      N/8 bytes, two's complement for signed
    bool         0x00 | 0x01
    compact      0b00: 6-bit, 0b01: 14-bit, 0b10: 30-bit, 0b11: big integer
    str, Vec<T>  compact length + items
    [T; n]       n items, no length
    enum         1-byte variant index + fields
"""

from __future__ import annotations

import struct
from typing import Any, Mapping, Sequence

from inkprobe.types import (
    DEFAULT_SS58_FORMAT,
    parse_hex,
    public_key_from_address,
    ss58_encode,
)


class ScaleError(ValueError):
    """Raised when a value cannot be encoded or bytes cannot be decoded."""


_INT_WIDTHS = {
    "u8": 1, "u16": 2, "u32": 4, "u64": 8, "u128": 16, "u256": 32,
    "i8": 1, "i16": 2, "i32": 4, "i64": 8, "i128": 16, "i256": 32,
}


# ---------------------------------------------------------------------------
# Compact integers
# ---------------------------------------------------------------------------


def encode_compact(value: int) -> bytes:
    """Encode a non-negative integer in SCALE compact form."""
    if value < 0:
        raise ScaleError(f"compact integers are unsigned, got {value}")
    if value < 1 << 6:
        return bytes([value << 2])
    if value < 1 << 14:
        return struct.pack("<H", (value << 2) | 0b01)
    if value < 1 << 30:
        return struct.pack("<I", (value << 2) | 0b10)
    raw = value.to_bytes(max(4, (value.bit_length() + 7) // 8), "little")
    if len(raw) > 67:
        raise ScaleError("integer too large for compact encoding")
    return bytes([((len(raw) - 4) << 2) | 0b11]) + raw


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def take(self, n: int) -> bytes:
        if n > self.remaining:
            raise ScaleError(f"unexpected end of data: wanted {n} bytes, have {self.remaining}")
        chunk = self._data[self._pos : self._pos + n]
        self._pos += n
        return chunk

    def compact(self) -> int:
        first = self.take(1)[0]
        mode = first & 0b11
        if mode == 0b00:
            return first >> 2
        if mode == 0b01:
            return int.from_bytes(bytes([first]) + self.take(1), "little") >> 2
        if mode == 0b10:
            return int.from_bytes(bytes([first]) + self.take(3), "little") >> 2
        return int.from_bytes(self.take((first >> 2) + 4), "little")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TypeRegistry:
    """Type definitions keyed by id, as found in contract metadata."""

    def __init__(self, types: Mapping[int, Mapping[str, Any]]) -> None:
        self._types = dict(types)

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._types

    def __len__(self) -> int:
        return len(self._types)

    def get(self, type_id: int) -> Mapping[str, Any]:
        try:
            return self._types[type_id]
        except KeyError:
            raise ScaleError(f"type id {type_id} is not in the registry") from None

    def definition(self, type_id: int) -> tuple[str, Any]:
        """Return ``(kind, body)`` of a type's ``def`` entry."""
        definition = self.get(type_id).get("def")
        if not isinstance(definition, Mapping) or len(definition) != 1:
            raise ScaleError(f"type id {type_id} has no usable definition")
        return next(iter(definition.items()))

    def path(self, type_id: int) -> list[str]:
        return list(self.get(type_id).get("path") or [])

    def type_name(self, type_id: int) -> str:
        """Human-readable name for a type, for listings and error messages."""
        kind, body = self.definition(type_id)
        path = self.path(type_id)
        if kind == "primitive":
            return str(body)
        if kind == "array":
            return f"[{self.type_name(body['type'])}; {body['len']}]"
        if kind == "sequence":
            return f"Vec<{self.type_name(body['type'])}>"
        if kind == "compact":
            return f"Compact<{self.type_name(body['type'])}>"
        if kind == "tuple":
            return "(" + ", ".join(self.type_name(t) for t in body) + ")"
        params = [p.get("type") for p in self.get(type_id).get("params") or [] if p.get("type") is not None]
        name = path[-1] if path else kind
        if params:
            name += "<" + ", ".join(self.type_name(p) for p in params) + ">"
        return name


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


class ScaleCodec:
    """Encode and decode values for the types of one registry."""

    def __init__(self, registry: TypeRegistry, *, ss58_format: int = DEFAULT_SS58_FORMAT) -> None:
        self.registry = registry
        self.ss58_format = ss58_format

    def encode(self, type_id: int, value: Any) -> bytes:
        out = bytearray()
        self._encode(type_id, value, out)
        return bytes(out)

    def decode(self, type_id: int, data: bytes) -> Any:
        """Decode *data* as one value of *type_id*; trailing bytes are an error."""
        reader = _Reader(data)
        value = self._decode(type_id, reader)
        if reader.remaining:
            raise ScaleError(f"{reader.remaining} trailing bytes after {self.registry.type_name(type_id)}")
        return value

    def decode_all(self, type_ids: Sequence[int], data: bytes) -> list[Any]:
        """Decode consecutive values, e.g. the arguments of a call."""
        reader = _Reader(data)
        values = [self._decode(type_id, reader) for type_id in type_ids]
        if reader.remaining:
            raise ScaleError(f"{reader.remaining} trailing bytes after arguments")
        return values

    # ----- helpers ---------------------------------------------------------

    def _is_u8(self, type_id: int) -> bool:
        return self.registry.definition(type_id) == ("primitive", "u8")

    def _is_path(self, type_id: int, name: str) -> bool:
        path = self.registry.path(type_id)
        return bool(path) and path[-1] == name

    @staticmethod
    def _as_bytes(value: Any) -> bytes:
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        if isinstance(value, str):
            try:
                return parse_hex(value)
            except ValueError as exc:
                raise ScaleError(f"not a hex string: {value!r}") from exc
        if isinstance(value, (list, tuple)) and all(isinstance(b, int) and 0 <= b < 256 for b in value):
            return bytes(value)
        raise ScaleError(f"expected bytes, got {type(value).__name__}")

    # ----- encoding --------------------------------------------------------

    def _encode(self, type_id: int, value: Any, out: bytearray) -> None:
        kind, body = self.registry.definition(type_id)
        if kind == "primitive":
            out += self._encode_primitive(body, value)
        elif kind == "compact":
            out += encode_compact(self._as_int(value, "compact"))
        elif kind == "array":
            self._encode_array(body, value, out)
        elif kind == "sequence":
            if self._is_u8(body["type"]):
                data = self._as_bytes(value)
                out += encode_compact(len(data)) + data
                return
            if not isinstance(value, (list, tuple)):
                raise ScaleError(f"expected a list for Vec<{self.registry.type_name(body['type'])}>")
            out += encode_compact(len(value))
            for item in value:
                self._encode(body["type"], item, out)
        elif kind == "tuple":
            self._encode_positional(list(body), value, out)
        elif kind == "composite":
            self._encode_composite(type_id, body.get("fields") or [], value, out)
        elif kind == "variant":
            self._encode_variant(type_id, body.get("variants") or [], value, out)
        else:
            raise ScaleError(f"unsupported type kind {kind!r}")

    @staticmethod
    def _as_int(value: Any, what: str) -> int:
        if isinstance(value, bool):
            raise ScaleError(f"expected an integer for {what}, got bool")
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            try:
                return int(value, 0)
            except ValueError:
                pass
        raise ScaleError(f"expected an integer for {what}, got {value!r}")

    def _encode_primitive(self, name: str, value: Any) -> bytes:
        if name == "bool":
            if not isinstance(value, bool):
                raise ScaleError(f"expected bool, got {value!r}")
            return b"\x01" if value else b"\x00"
        if name == "str":
            if not isinstance(value, str):
                raise ScaleError(f"expected str, got {value!r}")
            data = value.encode("utf-8")
            return encode_compact(len(data)) + data
        if name == "char":
            if not isinstance(value, str) or len(value) != 1:
                raise ScaleError(f"expected a single character, got {value!r}")
            return struct.pack("<I", ord(value))
        width = _INT_WIDTHS.get(name)
        if width is None:
            raise ScaleError(f"unsupported primitive {name!r}")
        number = self._as_int(value, name)
        try:
            return number.to_bytes(width, "little", signed=name.startswith("i"))
        except OverflowError as exc:
            raise ScaleError(f"{number} does not fit in {name}") from exc

    def _encode_array(self, body: Mapping[str, Any], value: Any, out: bytearray) -> None:
        length, elem = int(body["len"]), body["type"]
        if self._is_u8(elem):
            data = self._as_bytes(value)
            if len(data) != length:
                raise ScaleError(f"expected {length} bytes, got {len(data)}")
            out += data
            return
        if not isinstance(value, (list, tuple)) or len(value) != length:
            raise ScaleError(f"expected a list of {length} items")
        for item in value:
            self._encode(elem, item, out)

    def _encode_positional(self, type_ids: list[int], value: Any, out: bytearray) -> None:
        if not type_ids:
            if value not in (None, (), []):
                raise ScaleError(f"expected unit, got {value!r}")
            return
        if not isinstance(value, (list, tuple)) or len(value) != len(type_ids):
            raise ScaleError(f"expected {len(type_ids)} positional values, got {value!r}")
        for field_type, item in zip(type_ids, value):
            self._encode(field_type, item, out)

    def _encode_fields(self, fields: list[Mapping[str, Any]], value: Any, out: bytearray) -> None:
        type_ids = [f["type"] for f in fields]
        names = [f.get("name") for f in fields]
        if len(fields) == 1 and names[0] is None:
            self._encode(type_ids[0], value, out)
        elif fields and all(names) and isinstance(value, Mapping):
            missing = [n for n in names if n not in value]
            if missing:
                raise ScaleError(f"missing fields {missing}")
            for field_type, name in zip(type_ids, names):
                self._encode(field_type, value[name], out)
        else:
            self._encode_positional(type_ids, value, out)

    def _encode_composite(self, type_id: int, fields: list, value: Any, out: bytearray) -> None:
        if self._is_path(type_id, "AccountId") and isinstance(value, str) and not value.startswith("0x"):
            try:
                value = public_key_from_address(value)
            except ValueError as exc:
                raise ScaleError(f"invalid address {value!r}: {exc}") from exc
        if self._is_path(type_id, "BTreeMap") and isinstance(value, Mapping):
            value = list(value.items())
        self._encode_fields(fields, value, out)

    def _encode_variant(self, type_id: int, variants: list, value: Any, out: bytearray) -> None:
        if self._is_path(type_id, "Option"):
            name, payload = ("None", None) if value is None else ("Some", value)
        elif isinstance(value, str):
            name, payload = value, None
        elif isinstance(value, Mapping) and len(value) == 1:
            name, payload = next(iter(value.items()))
        else:
            raise ScaleError(f"cannot map {value!r} onto enum {self.registry.type_name(type_id)}")
        for position, variant in enumerate(variants):
            if variant.get("name") == name:
                out.append(_variant_index(variant, position))
                fields = variant.get("fields") or []
                if fields:
                    self._encode_fields(fields, payload, out)
                elif payload is not None:
                    raise ScaleError(f"variant {name} carries no data")
                return
        raise ScaleError(f"unknown variant {name!r} of {self.registry.type_name(type_id)}")

    # ----- decoding --------------------------------------------------------

    def _decode(self, type_id: int, reader: _Reader) -> Any:
        kind, body = self.registry.definition(type_id)
        if kind == "primitive":
            return self._decode_primitive(body, reader)
        if kind == "compact":
            return reader.compact()
        if kind == "array":
            length, elem = int(body["len"]), body["type"]
            if self._is_u8(elem):
                return "0x" + reader.take(length).hex()
            return [self._decode(elem, reader) for _ in range(length)]
        if kind == "sequence":
            length = reader.compact()
            if self._is_u8(body["type"]):
                return "0x" + reader.take(length).hex()
            return [self._decode(body["type"], reader) for _ in range(length)]
        if kind == "tuple":
            if not body:
                return None
            return [self._decode(t, reader) for t in body]
        if kind == "composite":
            return self._decode_composite(type_id, body.get("fields") or [], reader)
        if kind == "variant":
            return self._decode_variant(type_id, body.get("variants") or [], reader)
        raise ScaleError(f"unsupported type kind {kind!r}")

    def _decode_primitive(self, name: str, reader: _Reader) -> Any:
        if name == "bool":
            flag = reader.take(1)[0]
            if flag > 1:
                raise ScaleError(f"invalid bool byte {flag:#x}")
            return flag == 1
        if name == "str":
            raw = reader.take(reader.compact())
            try:
                return raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise ScaleError("string is not valid UTF-8") from exc
        if name == "char":
            return chr(struct.unpack("<I", reader.take(4))[0])
        width = _INT_WIDTHS.get(name)
        if width is None:
            raise ScaleError(f"unsupported primitive {name!r}")
        return int.from_bytes(reader.take(width), "little", signed=name.startswith("i"))

    def _decode_fields(self, fields: list[Mapping[str, Any]], reader: _Reader) -> Any:
        if not fields:
            return None
        names = [f.get("name") for f in fields]
        if len(fields) == 1 and names[0] is None:
            return self._decode(fields[0]["type"], reader)
        if all(names):
            return {name: self._decode(f["type"], reader) for name, f in zip(names, fields)}
        return [self._decode(f["type"], reader) for f in fields]

    def _decode_composite(self, type_id: int, fields: list, reader: _Reader) -> Any:
        if self._is_path(type_id, "AccountId"):
            value = self._decode_fields(fields, reader)
            return ss58_encode(parse_hex(value), self.ss58_format)
        value = self._decode_fields(fields, reader)
        if self._is_path(type_id, "BTreeMap") and isinstance(value, list):
            try:
                return {k: v for k, v in value}
            except (TypeError, ValueError):
                return value
        return value

    def _decode_variant(self, type_id: int, variants: list, reader: _Reader) -> Any:
        index = reader.take(1)[0]
        for position, variant in enumerate(variants):
            if _variant_index(variant, position) != index:
                continue
            name = variant.get("name")
            fields = variant.get("fields") or []
            if self._is_path(type_id, "Option"):
                return None if name == "None" else self._decode_fields(fields, reader)
            if not fields:
                return name
            return {name: self._decode_fields(fields, reader)}
        raise ScaleError(f"variant index {index} not defined for {self.registry.type_name(type_id)}")


def _variant_index(variant: Mapping[str, Any], position: int) -> int:
    for key in ("index", "discriminant"):
        if variant.get(key) is not None:
            return int(variant[key])
    return position
