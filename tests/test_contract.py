"""Tests for inkprobe.contract: binding, call encoding and result decoding."""

from __future__ import annotations

from typing import Any

import pytest

from conftest import (
    CONTRACT_ADDRESS,
    METADATA_PATH,
    MESSAGE,
    FakeNode,
    contract_handler,
    make_agreement,
    polkasign_messages,
)
from inkprobe.contract import ContractBinding, bind
from inkprobe.errors import (
    ArgumentMismatchError,
    ConfigError,
    MalformedInterfaceError,
    ResponseDecodeError,
    UnknownMethodError,
)
from inkprobe.identity import Identity
from inkprobe.metadata import InterfaceDescription
from inkprobe.session import Session, connect
from inkprobe.types import Err, GasCeiling, Ok, PageWindow

WS_URL = "ws://127.0.0.1:9944"
UNBOUNDED = GasCeiling.unbounded()


async def _bound(node: FakeNode, interface: InterfaceDescription, **kwargs: Any) -> ContractBinding:
    session = await connect(WS_URL, opener=node.opener)
    return bind(session, interface, CONTRACT_ADDRESS, **kwargs)


class TestBind:
    """Constructing a binding."""

    @pytest.mark.asyncio
    async def test_bind_from_path(self, node: FakeNode) -> None:
        session = await connect(WS_URL, opener=node.opener)
        binding = bind(session, METADATA_PATH, CONTRACT_ADDRESS)
        assert binding.address == CONTRACT_ADDRESS
        assert binding.session is session
        assert "checkSign" in binding.interface
        await session.close()

    def test_invalid_address(self, interface: InterfaceDescription) -> None:
        with pytest.raises(ConfigError, match="contract address"):
            bind(Session(WS_URL), interface, "not-an-address")

    def test_malformed_interface(self) -> None:
        with pytest.raises(MalformedInterfaceError):
            bind(Session(WS_URL), {"spec": {}}, CONTRACT_ADDRESS)


class TestEncodeInput:
    """Selector and argument encoding, no traffic."""

    def test_selector_prefix(self, interface: InterfaceDescription) -> None:
        binding = ContractBinding(Session(WS_URL), interface, CONTRACT_ADDRESS)
        message, data = binding.encode_input("queryAgreementById", [7])
        assert message.label == "query_agreement_by_id"
        assert data == bytes.fromhex("8a6b1d90") + (7).to_bytes(8, "little")

    def test_page_window_fills_struct(self, interface: InterfaceDescription, alice: Identity) -> None:
        binding = ContractBinding(Session(WS_URL), interface, CONTRACT_ADDRESS)
        _, data = binding.encode_input("queryAgreementByCreator", [alice.address, [2, 5]])
        assert data[4:36] == alice.public_key
        assert data[36:] == (2).to_bytes(8, "little") + (5).to_bytes(8, "little")

    def test_wrong_arity(self, interface: InterfaceDescription) -> None:
        binding = ContractBinding(Session(WS_URL), interface, CONTRACT_ADDRESS)
        with pytest.raises(ArgumentMismatchError, match="takes 2 arguments, got 1"):
            binding.validate("checkSign", ["0x00"])

    def test_wrong_type(self, interface: InterfaceDescription) -> None:
        binding = ContractBinding(Session(WS_URL), interface, CONTRACT_ADDRESS)
        with pytest.raises(ArgumentMismatchError, match="msg"):
            binding.validate("checkSign", ["0x00", "0x" + "00" * 64])


class TestCall:
    """Dry-run dispatch through contracts_call."""

    @pytest.mark.asyncio
    async def test_check_sign_ok(self, node: FakeNode, interface: InterfaceDescription, alice: Identity) -> None:
        binding = await _bound(node, interface)
        signed = alice.sign_message(MESSAGE)
        result = await binding.call(
            "checkSign", alice.address, signed.message, signed.signature, gas=10_000_000_000_000
        )
        assert result.is_ok
        assert result.outcome == Ok(value=True)
        assert result.gas_consumed == 1_250_000_000
        await binding.session.close()

    @pytest.mark.asyncio
    async def test_check_sign_from_other_caller(
        self, node: FakeNode, interface: InterfaceDescription, alice: Identity, bob: Identity
    ) -> None:
        binding = await _bound(node, interface)
        signed = alice.sign_message(MESSAGE)
        result = await binding.call("checkSign", bob.address, signed.message, signed.signature, gas=UNBOUNDED)
        assert result.outcome == Ok(value=False)
        await binding.session.close()

    @pytest.mark.asyncio
    async def test_request_shape(self, node: FakeNode, interface: InterfaceDescription, alice: Identity) -> None:
        binding = await _bound(node, interface)
        await binding.call("queryAgreementById", alice.address, 0, gas=123)
        request = node.calls("contracts_call")[0]["params"][0]
        assert request["origin"] == alice.address
        assert request["dest"] == CONTRACT_ADDRESS
        assert request["value"] == 0
        assert request["gasLimit"] == 123
        assert request["inputData"] == "0x8a6b1d90" + "00" * 8
        await binding.session.close()

    @pytest.mark.asyncio
    async def test_unbounded_gas_uses_max(self, node: FakeNode, interface: InterfaceDescription, alice: Identity) -> None:
        binding = await _bound(node, interface, max_gas=5_000)
        await binding.call("queryAgreementById", alice.address, 0, gas=-1)
        assert node.calls("contracts_call")[0]["params"][0]["gasLimit"] == 5_000
        await binding.session.close()

    @pytest.mark.asyncio
    async def test_unbounded_gas_without_max_is_null(
        self, node: FakeNode, interface: InterfaceDescription, alice: Identity
    ) -> None:
        binding = await _bound(node, interface)
        await binding.call("queryAgreementById", alice.address, 0, gas="unbounded")
        assert node.calls("contracts_call")[0]["params"][0]["gasLimit"] is None
        await binding.session.close()

    @pytest.mark.asyncio
    async def test_paged_query_returns_limit(
        self, node: FakeNode, interface: InterfaceDescription, alice: Identity
    ) -> None:
        binding = await _bound(node, interface)
        result = await binding.call(
            "queryAgreementByCreator", alice.address, alice.address, gas=UNBOUNDED, page=PageWindow(offset=0, limit=3)
        )
        page = result.outcome.value
        assert page["total"] == 5
        assert len(page["data"]) == 3
        assert [a["index"] for a in page["data"]] == [0, 1, 2]
        first = page["data"][0]
        assert first["creator"] == alice.address
        assert first["signers"] == [alice.address]
        assert first["signs"] == {}
        assert first["agreement_file"]["hash"] == "0x" + "00" * 32
        await binding.session.close()

    @pytest.mark.asyncio
    async def test_page_wider_than_store(self, interface: InterfaceDescription, alice: Identity) -> None:
        node = FakeNode()
        store = [make_agreement(i, alice.address) for i in range(3)]
        node.handlers["contracts_call"] = contract_handler(interface, polkasign_messages(store))
        binding = await _bound(node, interface)
        result = await binding.call(
            "queryAgreementByCreator", alice.address, alice.address, gas=UNBOUNDED, page=PageWindow(offset=0, limit=10)
        )
        page = result.outcome.value
        assert page["total"] == 3
        assert [a["index"] for a in page["data"]] == [0, 1, 2]
        await binding.session.close()

    @pytest.mark.asyncio
    async def test_page_as_pair(self, node: FakeNode, interface: InterfaceDescription, alice: Identity) -> None:
        binding = await _bound(node, interface)
        result = await binding.call("queryAgreementByCreator", alice.address, alice.address, gas=UNBOUNDED, page=(1, 3))
        assert [a["index"] for a in result.outcome.value["data"]] == [3, 4]
        await binding.session.close()

    @pytest.mark.asyncio
    async def test_contract_err_is_outcome(self, node: FakeNode, interface: InterfaceDescription, alice: Identity) -> None:
        binding = await _bound(node, interface)
        result = await binding.call("queryAgreementById", alice.address, 404, gas=UNBOUNDED)
        assert not result.is_ok
        assert result.outcome == Err(fault={"Module": {"index": 18, "error": 5}})
        await binding.session.close()

    @pytest.mark.asyncio
    async def test_unknown_method_sends_nothing(
        self, node: FakeNode, interface: InterfaceDescription, alice: Identity
    ) -> None:
        binding = await _bound(node, interface)
        with pytest.raises(UnknownMethodError):
            await binding.call("transferOwnership", alice.address, gas=UNBOUNDED)
        assert node.calls("contracts_call") == []
        await binding.session.close()

    @pytest.mark.asyncio
    async def test_argument_mismatch_sends_nothing(
        self, node: FakeNode, interface: InterfaceDescription, alice: Identity
    ) -> None:
        binding = await _bound(node, interface)
        with pytest.raises(ArgumentMismatchError):
            await binding.call("checkSign", alice.address, MESSAGE, gas=UNBOUNDED)
        assert node.calls("contracts_call") == []
        await binding.session.close()

    @pytest.mark.asyncio
    async def test_value_transfer_rejected(self, node: FakeNode, interface: InterfaceDescription, alice: Identity) -> None:
        binding = await _bound(node, interface)
        with pytest.raises(ArgumentMismatchError, match="value"):
            await binding.call("queryAgreementById", alice.address, 0, gas=UNBOUNDED, value=1)
        await binding.session.close()

    @pytest.mark.asyncio
    async def test_invalid_caller_rejected(self, node: FakeNode, interface: InterfaceDescription) -> None:
        binding = await _bound(node, interface)
        with pytest.raises(ArgumentMismatchError, match="caller"):
            await binding.call("queryAgreementById", "nobody", 0, gas=UNBOUNDED)
        await binding.session.close()


class TestDecodeResponse:
    """Shapes of contracts_call results."""

    @pytest.fixture
    def binding(self, interface: InterfaceDescription) -> ContractBinding:
        return ContractBinding(Session(WS_URL), interface, CONTRACT_ADDRESS)

    def test_revert_flag_is_err(self, binding: ContractBinding) -> None:
        message = binding.interface.message("check_sign")
        result = binding.decode_response(message, {"gasConsumed": 9, "result": {"Ok": {"flags": 1, "data": "0x00"}}})
        assert isinstance(result.outcome, Err)
        assert result.outcome.fault["reverted"] is True

    def test_debug_message_decoded(self, binding: ContractBinding) -> None:
        message = binding.interface.message("check_sign")
        body = {"gasConsumed": 9, "debugMessage": "0x" + b"panicked".hex(), "result": {"Ok": {"flags": 0, "data": "0x01"}}}
        result = binding.decode_response(message, body)
        assert result.debug_message == "panicked"
        assert result.outcome.value is True

    @pytest.mark.parametrize(
        "body",
        [
            None,
            "0x01",
            {"gasConsumed": 1},
            {"result": {"Ok": {"flags": 0, "data": "0x01"}, "Err": "x"}},
            {"result": {"Maybe": 1}},
            {"result": {"Ok": {"flags": 0}}},
            {"result": {"Ok": {"flags": 0, "data": "0xzz"}}},
            {"result": {"Ok": {"flags": 0, "data": 5}}},
            {"result": {"Ok": {"flags": 0, "data": ["0x01"]}}},
            {"result": {"Ok": {"flags": 0, "data": "0x0102"}}},
        ],
    )
    def test_malformed_bodies(self, binding: ContractBinding, body: Any) -> None:
        with pytest.raises(ResponseDecodeError):
            binding.decode_response(binding.interface.message("check_sign"), body)
