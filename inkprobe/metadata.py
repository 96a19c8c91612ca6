"""Contract interface descriptions parsed from ink! metadata.

Accepted layouts:

- ``spec`` and ``types`` at the top level (early ink! 3 ``.contract``/``metadata.json``,
  ink! 4+ with a ``version`` field);
- ``spec`` and ``types`` wrapped in a ``V1``..``V5`` envelope.

The type registry is either a plain list referenced 1-based (early
scale-info) or a list of ``{"id": n, "type": {...}}`` entries. Messages are
addressable by their declared label and by its camelCase alias, so
``query_agreement_by_creator`` is also ``queryAgreementByCreator``.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict

from inkprobe.codec import ScaleCodec, ScaleError, TypeRegistry
from inkprobe.errors import MalformedInterfaceError, UnknownMethodError
from inkprobe.types import DEFAULT_SS58_FORMAT

_ENVELOPES = ("V5", "V4", "V3", "V2", "V1")
_SELECTOR_RE = re.compile(r"^0x[0-9a-fA-F]{8}$")


def camel_case(label: str) -> str:
    """``query_agreement_by_creator`` -> ``queryAgreementByCreator``."""
    head, *rest = label.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


class ArgSpec(BaseModel):
    """One declared message argument."""

    model_config = ConfigDict(frozen=True)

    name: str
    type_id: int
    display: str = ""


class MessageSpec(BaseModel):
    """A callable contract message."""

    model_config = ConfigDict(frozen=True)

    label: str
    selector: bytes
    args: tuple[ArgSpec, ...] = ()
    return_type: int | None = None
    mutates: bool = False
    payable: bool = False
    docs: str = ""

    @property
    def arity(self) -> int:
        return len(self.args)


class InterfaceDescription:
    """Messages and type registry of one contract."""

    def __init__(self, name: str, messages: list[MessageSpec], registry: TypeRegistry) -> None:
        self.name = name
        self.registry = registry
        self._messages: dict[str, MessageSpec] = {}
        self._aliases: dict[str, str] = {}
        for message in messages:
            self._messages[message.label] = message
            self._aliases.setdefault(camel_case(message.label), message.label)

    def __contains__(self, name: object) -> bool:
        return name in self._messages or name in self._aliases

    def __repr__(self) -> str:
        return f"InterfaceDescription(name={self.name!r}, messages={len(self._messages)})"

    @property
    def messages(self) -> list[MessageSpec]:
        return list(self._messages.values())

    def message(self, name: str) -> MessageSpec:
        """Look up a message by label or camelCase alias.

        Raises:
            UnknownMethodError: If neither matches.
        """
        label = name if name in self._messages else self._aliases.get(name)
        if label is None:
            raise UnknownMethodError(name, known=sorted(self._messages))
        return self._messages[label]

    def by_selector(self, selector: bytes) -> MessageSpec:
        for message in self._messages.values():
            if message.selector == selector[:4]:
                return message
        raise UnknownMethodError("0x" + selector[:4].hex(), known=sorted(self._messages))

    def codec(self, ss58_format: int = DEFAULT_SS58_FORMAT) -> ScaleCodec:
        return ScaleCodec(self.registry, ss58_format=ss58_format)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _registry(types: Any) -> TypeRegistry:
    if not isinstance(types, list):
        raise MalformedInterfaceError("metadata has no type registry")
    if types and all(isinstance(t, Mapping) and "id" in t for t in types):
        entries = {int(t["id"]): t.get("type") for t in types}
    else:
        # Early scale-info registries are referenced from 1.
        entries = {i + 1: t for i, t in enumerate(types)}
    for type_id, entry in entries.items():
        if not isinstance(entry, Mapping) or not isinstance(entry.get("def"), Mapping):
            raise MalformedInterfaceError(f"type {type_id} has no definition")
    return TypeRegistry(entries)


def _label(entry: Any) -> str:
    if not isinstance(entry, Mapping):
        raise MalformedInterfaceError(f"expected an object, got {entry!r}")
    label = entry.get("label", entry.get("name"))
    if isinstance(label, list):
        label = "::".join(str(part) for part in label)
    if not isinstance(label, str) or not label:
        raise MalformedInterfaceError(f"entry without a name: {entry!r}")
    return label


def _type_ref(ref: Any, registry: TypeRegistry, where: str) -> tuple[int, str]:
    if not isinstance(ref, Mapping) or "type" not in ref:
        raise MalformedInterfaceError(f"{where} has no type reference")
    type_id = ref["type"]
    if not isinstance(type_id, int) or type_id not in registry:
        raise MalformedInterfaceError(f"{where} references unknown type {type_id!r}")
    display = "::".join(ref.get("displayName") or []) or registry.type_name(type_id)
    return type_id, display


def _message(entry: Any, registry: TypeRegistry) -> MessageSpec:
    if not isinstance(entry, Mapping):
        raise MalformedInterfaceError(f"message entry is not an object: {entry!r}")
    label = _label(entry)
    selector = entry.get("selector")
    if not isinstance(selector, str) or not _SELECTOR_RE.match(selector):
        raise MalformedInterfaceError(f"message {label} has an invalid selector {selector!r}")
    args = []
    for arg in entry.get("args") or []:
        arg_name = _label(arg)
        type_id, display = _type_ref(arg.get("type"), registry, f"argument {label}.{arg_name}")
        args.append(ArgSpec(name=arg_name, type_id=type_id, display=display))
    return_type = None
    if entry.get("returnType") is not None:
        return_type, _ = _type_ref(entry["returnType"], registry, f"return type of {label}")
    return MessageSpec(
        label=label,
        selector=bytes.fromhex(selector[2:]),
        args=tuple(args),
        return_type=return_type,
        mutates=bool(entry.get("mutates", False)),
        payable=bool(entry.get("payable", False)),
        docs=" ".join(line.strip() for line in entry.get("docs") or []).strip(),
    )


def parse_interface(doc: Any) -> InterfaceDescription:
    """Build an :class:`InterfaceDescription` from parsed metadata JSON.

    Raises:
        MalformedInterfaceError: If the document is not ink! metadata.
    """
    if not isinstance(doc, Mapping):
        raise MalformedInterfaceError("metadata must be a JSON object")
    contract = doc.get("contract")
    name = contract.get("name", "") if isinstance(contract, Mapping) else ""
    for key in _ENVELOPES:
        if isinstance(doc.get(key), Mapping):
            doc = doc[key]
            break
    spec = doc.get("spec")
    if not isinstance(spec, Mapping) or not isinstance(spec.get("messages"), list):
        raise MalformedInterfaceError("metadata has no message list")
    try:
        registry = _registry(doc.get("types"))
        messages = [_message(entry, registry) for entry in spec["messages"]]
    except (ScaleError, KeyError, TypeError, ValueError) as exc:
        raise MalformedInterfaceError(f"metadata does not parse: {exc}") from exc
    if not messages:
        raise MalformedInterfaceError("metadata declares no messages")
    return InterfaceDescription(str(name), messages, registry)


def load_interface(source: str | Path | Mapping[str, Any]) -> InterfaceDescription:
    """Load an interface description from a path, JSON text or a parsed dict."""
    if isinstance(source, Mapping):
        return parse_interface(source)
    text = str(source)
    if not text.lstrip().startswith("{"):
        try:
            text = Path(text).read_text(encoding="utf-8")
        except OSError as exc:
            raise MalformedInterfaceError(f"cannot read interface description {source}: {exc}") from exc
    try:
        doc = json.loads(text)
    except ValueError as exc:
        raise MalformedInterfaceError(f"interface description is not JSON: {exc}") from exc
    return parse_interface(doc)
