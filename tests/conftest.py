"""Shared fixtures: an in-process node that speaks JSON-RPC over a fake websocket.

No test touches the network. :class:`FakeNode` stands in for the connection
object returned by ``websockets.connect`` and answers requests from a table of
handlers; :func:`contract_handler` plays a deployed contract behind
``contracts_call`` by decoding the call data against the fixture metadata.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Callable

import pytest

from inkprobe.identity import Identity, derive, verify
from inkprobe.metadata import InterfaceDescription, load_interface
from inkprobe.types import parse_hex, ss58_encode

FIXTURES = Path(__file__).parent / "fixtures"
METADATA_PATH = FIXTURES / "polkasign.json"

CONTRACT_ADDRESS = ss58_encode(b"\x11" * 32)
MESSAGE = bytes.fromhex("a00f94828aebefb421b1180ffe372e0fd5fbdc90bc7348c1ad4a0819910f1dfe")

# Returned by a handler that must never answer.
NO_REPLY = object()
_DROP = object()


class NodeFault(Exception):
    """Raised by a handler to answer with a JSON-RPC error object."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class ContractFault:
    """Returned by a contract message to produce an ``Err`` result."""

    def __init__(self, fault: Any) -> None:
        self.fault = fault


class FakeNode:
    """Websocket stand-in with ``send``/``recv``/``close`` and a request log."""

    def __init__(self) -> None:
        self.handlers: dict[str, Callable[[list[Any]], Any]] = {
            "system_chain": lambda params: "Development",
            "system_name": lambda params: "Substrate Node",
            "system_version": lambda params: "3.0.0-dev",
        }
        self.requests: list[dict[str, Any]] = []
        self.opened: list[str] = []
        self.closed = False
        self.dropped = False
        self._outbox: asyncio.Queue[Any] = asyncio.Queue()

    # ----- websocket protocol ----------------------------------------------

    async def send(self, frame: str) -> None:
        if self.dropped:
            raise ConnectionResetError("connection reset by peer")
        request = json.loads(frame)
        self.requests.append(request)
        reply: dict[str, Any] = {"jsonrpc": "2.0", "id": request["id"]}
        handler = self.handlers.get(request["method"])
        if handler is None:
            reply["error"] = {"code": -32601, "message": f"Method not found: {request['method']}"}
        else:
            try:
                result = handler(request["params"])
            except NodeFault as fault:
                reply["error"] = {"code": fault.code, "message": fault.message}
            else:
                if result is NO_REPLY:
                    return
                reply["result"] = result
        await self._outbox.put(json.dumps(reply))

    async def recv(self) -> str:
        frame = await self._outbox.get()
        if frame is _DROP:
            raise ConnectionResetError("connection reset by peer")
        return frame

    async def close(self) -> None:
        self.closed = True

    # ----- test controls ---------------------------------------------------

    async def opener(self, url: str, timeout: float) -> "FakeNode":
        self.opened.append(url)
        return self

    def drop(self) -> None:
        """Simulate the peer going away."""
        self.dropped = True
        self._outbox.put_nowait(_DROP)

    def calls(self, method: str) -> list[dict[str, Any]]:
        return [r for r in self.requests if r["method"] == method]


def contract_handler(
    interface: InterfaceDescription,
    messages: dict[str, Callable[..., Any]],
    *,
    gas_consumed: int = 1_250_000_000,
) -> Callable[[list[Any]], Any]:
    """A ``contracts_call`` handler dispatching to Python functions by selector.

    Each function receives the caller address followed by the decoded
    arguments and returns the value to encode, or a :class:`ContractFault`.
    """
    codec = interface.codec()

    def handle(params: list[Any]) -> Any:
        request = params[0]
        data = parse_hex(request["inputData"])
        message = interface.by_selector(data[:4])
        args = codec.decode_all([a.type_id for a in message.args], data[4:])
        outcome = messages[message.label](request["origin"], *args)
        body: dict[str, Any] = {"gasConsumed": gas_consumed, "gasRequired": gas_consumed, "debugMessage": ""}
        if isinstance(outcome, ContractFault):
            body["result"] = {"Err": outcome.fault}
        else:
            output = codec.encode(message.return_type, outcome)
            body["result"] = {"Ok": {"flags": 0, "data": "0x" + output.hex()}}
        return body

    return handle


def make_agreement(index: int, creator: str) -> dict[str, Any]:
    return {
        "index": index,
        "creator": creator,
        "name": f"agreement-{index}",
        "create_at": 1_620_000_000 + index,
        "status": 0,
        "signers": [creator],
        "agreement_file": {
            "hash": "0x" + f"{index:02x}" * 32,
            "creator": creator,
            "usage": "agreement",
            "save_at": "ipfs",
            "url": f"ipfs://agreement/{index}",
        },
        "signs": {},
        "sign_infos": {},
        "resources": {},
    }


def page_result(items: list[dict[str, Any]], page: dict[str, int]) -> dict[str, Any]:
    size = page["page_size"]
    start = page["page_index"] * size
    return {
        "success": True,
        "err": "",
        "total": len(items),
        "pages": (len(items) + size - 1) // size if size else 0,
        "page_index": page["page_index"],
        "page_size": size,
        "data": items[start : start + size],
    }


def polkasign_messages(agreements: list[dict[str, Any]]) -> dict[str, Callable[..., Any]]:
    """Behaviour of the agreement-signing contract used throughout the tests."""

    def check_sign(caller: str, msg: str, sign: str) -> bool:
        return verify(caller, parse_hex(msg), parse_hex(sign), "ed25519")

    def by_creator(caller: str, creator: str, page: dict[str, int]) -> dict[str, Any]:
        return page_result([a for a in agreements if a["creator"] == creator], page)

    def by_collaborator(caller: str, collaborator: str, page: dict[str, int]) -> dict[str, Any]:
        return page_result([a for a in agreements if collaborator in a["signers"]], page)

    def by_id(caller: str, index: int) -> Any:
        for agreement in agreements:
            if agreement["index"] == index:
                return agreement
        return ContractFault({"Module": {"index": 18, "error": 5}})

    return {
        "check_sign": check_sign,
        "query_agreement_by_creator": by_creator,
        "query_agreement_by_collaborator": by_collaborator,
        "query_agreement_by_id": by_id,
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def interface() -> InterfaceDescription:
    return load_interface(METADATA_PATH)


@pytest.fixture
def alice() -> Identity:
    return derive("//Alice", "ed25519", "alice")


@pytest.fixture
def bob() -> Identity:
    return derive("//Bob", "ed25519", "bob")


@pytest.fixture
def agreements(alice: Identity, bob: Identity) -> list[dict[str, Any]]:
    owned = [make_agreement(i, alice.address) for i in range(5)]
    return owned + [make_agreement(10, bob.address)]


@pytest.fixture
def node(interface: InterfaceDescription, agreements: list[dict[str, Any]]) -> FakeNode:
    fake = FakeNode()
    fake.handlers["contracts_call"] = contract_handler(interface, polkasign_messages(agreements))
    return fake
