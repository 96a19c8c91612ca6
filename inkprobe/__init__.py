"""inkprobe: verification client for ink! contracts on Substrate nodes.

Proves control of an identity with a local sign/verify self-check, opens a
session with a node, and runs read-only contract queries with explicit gas
ceilings and pagination windows.

Quick start::

    from inkprobe import bind, connect, derive

    identity = derive("//Alice", "sr25519")
    async with await connect("ws://127.0.0.1:9944") as session:
        contract = bind(session, "polkasign.contract", CONTRACT_ADDRESS)
        result = await contract.call("checkSign", identity.address, msg, sig, gas=-1)
"""

__version__ = "0.1.0"

from inkprobe.config import IdentityConfig, QueryStep, RunConfig, load_config
from inkprobe.contract import ContractBinding, bind
from inkprobe.errors import (
    ArgumentMismatchError,
    ConfigError,
    ConnectionFailedError,
    InkProbeError,
    InvalidPhraseError,
    MalformedInterfaceError,
    RequestTimeoutError,
    ResponseDecodeError,
    RpcError,
    SignatureSelfCheckError,
    UnknownMethodError,
)
from inkprobe.identity import Identity, derive, self_check, verify
from inkprobe.metadata import InterfaceDescription, MessageSpec, load_interface
from inkprobe.orchestrator import QueryOrchestrator, RunReport, StepReport, run
from inkprobe.session import Session, connect
from inkprobe.types import (
    Err,
    GasCeiling,
    KeyAlgorithm,
    NodeInfo,
    Ok,
    PageWindow,
    QueryCall,
    QueryResult,
    SessionState,
    SignedMessage,
    StepStatus,
)

__all__ = [
    # Identity
    "Identity",
    "derive",
    "self_check",
    "verify",
    # Session
    "Session",
    "connect",
    # Contract
    "ContractBinding",
    "InterfaceDescription",
    "MessageSpec",
    "bind",
    "load_interface",
    # Orchestration
    "IdentityConfig",
    "QueryOrchestrator",
    "QueryStep",
    "RunConfig",
    "RunReport",
    "StepReport",
    "load_config",
    "run",
    # Types
    "Err",
    "GasCeiling",
    "KeyAlgorithm",
    "NodeInfo",
    "Ok",
    "PageWindow",
    "QueryCall",
    "QueryResult",
    "SessionState",
    "SignedMessage",
    "StepStatus",
    # Errors
    "ArgumentMismatchError",
    "ConfigError",
    "ConnectionFailedError",
    "InkProbeError",
    "InvalidPhraseError",
    "MalformedInterfaceError",
    "RequestTimeoutError",
    "ResponseDecodeError",
    "RpcError",
    "SignatureSelfCheckError",
    "UnknownMethodError",
]
