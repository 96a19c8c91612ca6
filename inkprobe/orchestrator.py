"""End-to-end verification run.

:class:`QueryOrchestrator` sequences one run:

1. derive the identity and self-check a signature (no network yet);
2. connect and fetch node metadata as a three-way join;
3. bind the contract interface and validate every configured step;
4. run the steps in order, classifying each outcome and pausing between
   steps as configured;
5. close the session, on every exit path.

Faults in phases 1-3 abort the run. In phase 4 a step that fails is reported
and the next step still runs; only losing the connection aborts.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable

import httpx
from pydantic import BaseModel, Field

from inkprobe.config import QueryStep, RunConfig
from inkprobe.contract import ContractBinding, bind
from inkprobe.errors import ConfigError, RequestTimeoutError, ResponseDecodeError, RpcError
from inkprobe.identity import Identity, derive, self_check
from inkprobe.session import Opener, connect
from inkprobe.types import NodeInfo, QueryResult, SignedMessage, StepStatus

log = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"^\$[a-z_]+$")


class StepReport(BaseModel):
    """What happened to one query step."""

    index: int
    method: str
    status: StepStatus
    gas_consumed: Any = None
    value: Any = None
    fault: Any = None
    error: str | None = None
    entries: int | None = None


class RunReport(BaseModel):
    """Outcome of a whole run whose setup phases succeeded."""

    signer: str
    contract: str
    node: NodeInfo
    steps: list[StepReport] = Field(default_factory=list)

    @property
    def failed(self) -> list[StepReport]:
        return [s for s in self.steps if s.status is not StepStatus.OK]


def _page_entries(value: Any) -> int | None:
    """Entry count of a paged result (``{"data": [...], ...}``), if it is one."""
    if isinstance(value, dict) and isinstance(value.get("Ok"), dict):
        value = value["Ok"]
    if isinstance(value, dict) and isinstance(value.get("data"), list):
        return len(value["data"])
    return None


def resolve_placeholders(value: Any, bindings: dict[str, Any]) -> Any:
    """Replace ``$name`` strings (at any depth) with run-time values.

    Raises:
        ConfigError: On a placeholder with no binding.
    """
    if isinstance(value, str) and _PLACEHOLDER_RE.match(value):
        try:
            return bindings[value[1:]]
        except KeyError:
            raise ConfigError(f"unknown placeholder {value} (known: {sorted(bindings)})") from None
    if isinstance(value, list):
        return [resolve_placeholders(v, bindings) for v in value]
    if isinstance(value, dict):
        return {k: resolve_placeholders(v, bindings) for k, v in value.items()}
    return value


class QueryOrchestrator:
    """Drive one verification run from a :class:`RunConfig`.

    Args:
        config: The run configuration.
        opener: Optional websocket opener, passed through to
            :func:`~inkprobe.session.connect`.
        http_transport: Optional httpx transport for HTTP endpoints.
        sleep: Coroutine used for the inter-step delay.
    """

    def __init__(
        self,
        config: RunConfig,
        *,
        opener: Opener | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._opener = opener
        self._http_transport = http_transport
        self._sleep = sleep

    # ----- phases ----------------------------------------------------------

    def prove_identity(self) -> tuple[Identity, SignedMessage]:
        ident = self._config.identity
        if ident.suri is None:
            raise ConfigError("no secret URI configured")
        identity = derive(
            ident.suri.get_secret_value(),
            ident.algorithm,
            ident.label,
            ss58_format=self._config.ss58_format,
        )
        log.info("%s has address %s", identity.label or "identity", identity.address)
        return identity, self_check(identity, self._config.message)

    def prepare_steps(
        self, binding: ContractBinding, identity: Identity, signed: SignedMessage
    ) -> list[list[Any]]:
        """Resolve placeholders and validate every step before any query runs."""
        bindings = {
            "signer": identity.address,
            "message": signed.message,
            "signature": signed.signature,
            "contract": binding.address,
        }
        prepared = []
        for step in self._config.steps:
            args = resolve_placeholders(step.args, bindings)
            window = [step.page.as_arg()] if step.page is not None else []
            binding.validate(step.method, [*args, *window])
            prepared.append(args)
        return prepared

    async def run_step(
        self, binding: ContractBinding, caller: str, index: int, step: QueryStep, args: list[Any]
    ) -> StepReport:
        """Dispatch one step and classify its outcome; local faults are reported, not raised."""
        log.info("========= begin to query %s", step.method)
        try:
            result: QueryResult = await binding.call(
                step.method, caller, *args, gas=step.gas, page=step.page
            )
        except (ResponseDecodeError, RpcError, RequestTimeoutError) as exc:
            log.error("%s failed locally: %s", step.method, exc)
            return StepReport(index=index, method=step.method, status=StepStatus.LOCAL_FAULT, error=str(exc))

        log.info("gasConsumed %s", result.gas_consumed)
        if result.is_ok:
            value = result.outcome.value
            log.info("%s Success %s", step.method, value)
            return StepReport(
                index=index,
                method=step.method,
                status=StepStatus.OK,
                gas_consumed=result.gas_consumed,
                value=value,
                entries=_page_entries(value),
            )
        log.error("%s Error %s", step.method, result.outcome.fault)
        return StepReport(
            index=index,
            method=step.method,
            status=StepStatus.REMOTE_FAULT,
            gas_consumed=result.gas_consumed,
            fault=result.outcome.fault,
        )

    # ----- run -------------------------------------------------------------

    async def run(self) -> RunReport:
        """Execute the whole sequence.

        Raises:
            InkProbeError: Any fault during identity, connection or binding,
                or a lost connection during the steps.
        """
        cfg = self._config
        identity, signed = self.prove_identity()

        session = await connect(
            cfg.endpoint,
            open_timeout=cfg.open_timeout,
            request_timeout=cfg.request_timeout,
            opener=self._opener,
            http_transport=self._http_transport,
        )
        try:
            node = await session.node_info()
            log.info(
                "You are connected to chain %s using %s v%s",
                node.chain,
                node.implementation,
                node.version,
            )
            binding = bind(
                session,
                cfg.metadata,
                cfg.contract,
                max_gas=cfg.max_gas,
                ss58_format=cfg.ss58_format,
            )
            prepared = self.prepare_steps(binding, identity, signed)

            report = RunReport(signer=identity.address, contract=cfg.contract, node=node)
            last = len(cfg.steps) - 1
            for index, (step, args) in enumerate(zip(cfg.steps, prepared)):
                report.steps.append(await self.run_step(binding, identity.address, index, step, args))
                if index < last and step.delay_ms:
                    await self._sleep(step.delay_ms / 1000)
        finally:
            await session.close()

        if report.failed:
            log.warning("%d of %d steps failed", len(report.failed), len(report.steps))
        log.info("run finished: %d steps", len(report.steps))
        return report


async def run(config: RunConfig, **kwargs: Any) -> RunReport:
    """Convenience wrapper: ``await run(config)``."""
    return await QueryOrchestrator(config, **kwargs).run()
