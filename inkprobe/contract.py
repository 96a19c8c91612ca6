"""Read-only dispatch against a deployed contract.

A :class:`ContractBinding` pairs an interface description with an on-chain
address and a :class:`~inkprobe.session.Session`. Calls are dry runs through
the node's ``contracts_call`` RPC, so they never change chain state.

Local faults (unknown message, bad arguments, undecodable response) raise;
a contract that runs and declines to produce a value comes back as
``QueryResult(outcome=Err(...))``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Sequence

from inkprobe.codec import ScaleError
from inkprobe.errors import ArgumentMismatchError, ConfigError, ResponseDecodeError
from inkprobe.metadata import InterfaceDescription, MessageSpec, load_interface
from inkprobe.session import Session
from inkprobe.types import (
    DEFAULT_SS58_FORMAT,
    Err,
    GasCeiling,
    Ok,
    PageWindow,
    QueryCall,
    QueryResult,
    is_valid_address,
    parse_hex,
)

log = logging.getLogger(__name__)

# ReturnFlags bit set by the contract when it reverts.
_FLAG_REVERT = 0b1


def _debug_text(raw: Any) -> str:
    if not raw:
        return ""
    if isinstance(raw, str) and raw.startswith("0x"):
        try:
            return parse_hex(raw).decode("utf-8", errors="replace")
        except ValueError:
            return raw
    return str(raw)


class ContractBinding:
    """An interface description bound to one contract address and session.

    The binding is immutable after construction and may be reused for any
    number of calls.

    Args:
        session: A ready :class:`Session`.
        interface: Parsed interface description.
        address: SS58 (or ``0x`` hex) address of the deployed contract.
        max_gas: Limit sent for unbounded gas ceilings; ``None`` sends
            ``null`` and leaves the choice to the node.
        ss58_format: Network prefix used when decoding account ids.
    """

    __slots__ = ("_session", "_interface", "_address", "_max_gas", "_codec")

    def __init__(
        self,
        session: Session,
        interface: InterfaceDescription,
        address: str,
        *,
        max_gas: int | None = None,
        ss58_format: int = DEFAULT_SS58_FORMAT,
    ) -> None:
        self._session = session
        self._interface = interface
        self._address = address
        self._max_gas = max_gas
        self._codec = interface.codec(ss58_format)

    def __repr__(self) -> str:
        return f"ContractBinding(contract={self._interface.name!r}, address={self._address})"

    @property
    def address(self) -> str:
        return self._address

    @property
    def interface(self) -> InterfaceDescription:
        return self._interface

    @property
    def session(self) -> Session:
        return self._session

    # ----- encoding --------------------------------------------------------

    def encode_input(self, name: str, args: Sequence[Any]) -> tuple[MessageSpec, bytes]:
        """Resolve *name* and encode ``selector || args`` without dispatching.

        Raises:
            UnknownMethodError: If *name* is not in the interface.
            ArgumentMismatchError: If *args* do not match the declared shape.
        """
        message = self._interface.message(name)
        if len(args) != message.arity:
            declared = ", ".join(f"{a.name}: {a.display}" for a in message.args)
            raise ArgumentMismatchError(
                f"{message.label}({declared}) takes {message.arity} arguments, got {len(args)}"
            )
        data = bytearray(message.selector)
        for spec, value in zip(message.args, args):
            try:
                data += self._codec.encode(spec.type_id, value)
            except ScaleError as exc:
                raise ArgumentMismatchError(
                    f"argument {spec.name!r} of {message.label} ({spec.display}): {exc}"
                ) from exc
        return message, bytes(data)

    def validate(self, name: str, args: Sequence[Any]) -> MessageSpec:
        """Check that a call would dispatch, without contacting the node."""
        message, _ = self.encode_input(name, args)
        return message

    # ----- dispatch --------------------------------------------------------

    async def call(
        self,
        name: str,
        caller: str,
        *args: Any,
        gas: GasCeiling | int | str,
        value: int = 0,
        page: PageWindow | Sequence[int] | None = None,
    ) -> QueryResult:
        """Dry-run message *name* as *caller* and decode the outcome.

        Args:
            name: Message label or camelCase alias.
            caller: SS58 address the node executes the query as.
            *args: Positional message arguments.
            gas: Gas ceiling; ``"unbounded"`` or a negative number lifts it.
            value: Transferred value; read-only queries only allow ``0``.
            page: Optional ``(offset, limit)`` window appended to *args*.

        Raises:
            UnknownMethodError: Before any traffic, if *name* is unknown.
            ArgumentMismatchError: Before any traffic, if the arguments or
                the value do not fit.
            ResponseDecodeError: If the node response has an unexpected shape.
            RpcError / RequestTimeoutError / ConnectionFailedError: From the session.
        """
        if value != 0:
            raise ArgumentMismatchError("read-only queries cannot transfer value")
        try:
            call = QueryCall(
                method=name,
                caller=caller,
                gas=gas if isinstance(gas, GasCeiling) else GasCeiling.model_validate(gas),
                args=tuple(args),
                page=page if page is None or isinstance(page, PageWindow) else PageWindow.model_validate(page),
            )
        except ValueError as exc:
            raise ArgumentMismatchError(f"invalid call to {name}: {exc}") from exc
        return await self.query(call)

    async def query(self, call: QueryCall) -> QueryResult:
        """Dispatch a prepared :class:`QueryCall`."""
        message, input_data = self.encode_input(call.method, call.positional_args())
        request = {
            "origin": call.caller,
            "dest": self._address,
            "value": call.value,
            "gasLimit": call.gas.resolve(self._max_gas),
            "inputData": "0x" + input_data.hex(),
        }
        log.debug("query %s as %s with gas %s", message.label, call.caller, call.gas)
        body = await self._session.request("contracts_call", [request])
        return self.decode_response(message, body)

    def decode_response(self, message: MessageSpec, body: Any) -> QueryResult:
        """Turn a ``contracts_call`` result into a :class:`QueryResult`.

        Raises:
            ResponseDecodeError: If *body* is not a contract execution result
                or its output does not decode to the message's return type.
        """
        if not isinstance(body, Mapping):
            raise ResponseDecodeError(f"{message.label}: expected an object, got {body!r}")
        result = body.get("result")
        if not isinstance(result, Mapping) or len(result) != 1:
            raise ResponseDecodeError(f"{message.label}: result must hold exactly one of Ok/Err")
        key, payload = next(iter(result.items()))
        common = {
            "gas_consumed": body.get("gasConsumed"),
            "gas_required": body.get("gasRequired"),
            "debug_message": _debug_text(body.get("debugMessage")),
        }
        if common["debug_message"]:
            log.debug("%s debug message: %s", message.label, common["debug_message"])

        if str(key).lower() == "err":
            return QueryResult(**common, outcome=Err(fault=payload))
        if str(key).lower() != "ok" or not isinstance(payload, Mapping) or "data" not in payload:
            raise ResponseDecodeError(f"{message.label}: unexpected result {result!r}")

        if not isinstance(payload["data"], str):
            raise ResponseDecodeError(f"{message.label}: output data is not a hex string: {payload['data']!r}")
        try:
            flags = int(payload.get("flags", 0) or 0)
            data = parse_hex(payload["data"])
        except (TypeError, ValueError) as exc:
            raise ResponseDecodeError(f"{message.label}: malformed output: {exc}") from exc
        if flags & _FLAG_REVERT:
            return QueryResult(**common, outcome=Err(fault={"reverted": True, "flags": flags, "data": "0x" + data.hex()}))
        if message.return_type is None:
            return QueryResult(**common, outcome=Ok(value=None))
        try:
            value = self._codec.decode(message.return_type, data)
        except ScaleError as exc:
            raise ResponseDecodeError(f"{message.label}: cannot decode output: {exc}") from exc
        return QueryResult(**common, outcome=Ok(value=value))


def bind(
    session: Session,
    interface: InterfaceDescription | str | Path | Mapping[str, Any],
    address: str,
    *,
    max_gas: int | None = None,
    ss58_format: int = DEFAULT_SS58_FORMAT,
) -> ContractBinding:
    """Bind an interface description to a contract address.

    Raises:
        MalformedInterfaceError: If *interface* does not parse.
        ConfigError: If *address* is not a valid address.
    """
    if not isinstance(interface, InterfaceDescription):
        interface = load_interface(interface)
    if not is_valid_address(address):
        raise ConfigError(f"invalid contract address {address!r}")
    binding = ContractBinding(session, interface, address, max_gas=max_gas, ss58_format=ss58_format)
    log.info("bound %s at %s (%d messages)", interface.name or "contract", address, len(interface.messages))
    return binding
