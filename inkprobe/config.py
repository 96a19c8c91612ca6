"""Run configuration: endpoint, contract, identity and query steps.

Loaded once at startup from a YAML document. Secrets can stay out of the
file: ``INKPROBE_SURI`` supplies (and overrides) the identity's secret URI,
``INKPROBE_ENDPOINT`` overrides the endpoint. A relative ``metadata`` path is
resolved against the directory of the config file.

Example::

    endpoint: ws://127.0.0.1:9944
    metadata: polkasign.contract
    contract: 5DwS2NyzdJwf2axjvdPi6RRUVe28jsixBQ5zjL5mjMdvychX
    identity: {algorithm: ed25519, label: know pair}
    message: "0xa00f94828aebefb421b1180ffe372e0fd5fbdc90bc7348c1ad4a0819910f1dfe"
    steps:
      - {method: checkSign, args: [$message, $signature], gas: 10000000000000}
      - {method: queryAgreementByCreator, args: [5Grw...], page: [0, 10], gas: unbounded}
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated, Any, Mapping, Union
from urllib.parse import urlsplit

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
)

from inkprobe.errors import ConfigError
from inkprobe.types import (
    DEFAULT_SS58_FORMAT,
    GasCeiling,
    KeyAlgorithm,
    PageWindow,
    is_valid_address,
    parse_hex,
)

ENV_SURI = "INKPROBE_SURI"
ENV_ENDPOINT = "INKPROBE_ENDPOINT"

_SCHEMES = ("ws", "wss", "http", "https")


class IdentityConfig(BaseModel):
    """Which key to derive and how to label it."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    algorithm: KeyAlgorithm = KeyAlgorithm.ED25519
    label: str = ""
    suri: SecretStr | None = None


class QueryStep(BaseModel):
    """One declarative query: message, arguments, window, gas and pacing.

    ``gas`` has no default; every step states its own ceiling.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: Annotated[str, Field(min_length=1)]
    args: list[Any] = Field(default_factory=list)
    page: PageWindow | None = None
    gas: GasCeiling
    delay_ms: Annotated[int, Field(ge=0)] = 0


class RunConfig(BaseModel):
    """Everything one verification run needs."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    endpoint: str
    metadata: Union[dict[str, Any], Path]
    contract: str
    ss58_format: Annotated[int, Field(ge=0, lt=16384)] = DEFAULT_SS58_FORMAT
    open_timeout: Annotated[float, Field(gt=0)] = 15.0
    request_timeout: Annotated[float, Field(gt=0)] | None = None
    max_gas: Annotated[int, Field(ge=0)] | None = None
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    message: bytes
    steps: list[QueryStep] = Field(default_factory=list)

    @field_validator("endpoint")
    @classmethod
    def _check_endpoint(cls, v: str) -> str:
        parts = urlsplit(v)
        if parts.scheme.lower() not in _SCHEMES or not parts.hostname:
            raise ValueError(f"endpoint must be a {'/'.join(_SCHEMES)} URL with a host, got {v!r}")
        return v

    @field_validator("contract")
    @classmethod
    def _check_contract(cls, v: str) -> str:
        if not is_valid_address(v):
            raise ValueError(f"invalid contract address {v!r}")
        return v

    @field_validator("message", mode="before")
    @classmethod
    def _parse_message(cls, v: Any) -> bytes:
        if isinstance(v, (str, bytes, bytearray)):
            return parse_hex(v)
        raise ValueError("message must be hex-encoded bytes")


def load_config(
    path: str | Path,
    *,
    environ: Mapping[str, str] | None = None,
) -> RunConfig:
    """Read a YAML config file and apply environment overrides.

    Raises:
        ConfigError: If the file cannot be read, is not a mapping, fails
            validation, or no secret URI is available.
    """
    environ = os.environ if environ is None else environ
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot load {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping")

    if environ.get(ENV_ENDPOINT):
        raw["endpoint"] = environ[ENV_ENDPOINT]
    if environ.get(ENV_SURI):
        identity = dict(raw.get("identity") or {})
        identity["suri"] = environ[ENV_SURI]
        raw["identity"] = identity
    metadata = raw.get("metadata")
    if isinstance(metadata, str) and not Path(metadata).is_absolute():
        raw["metadata"] = str(path.parent / metadata)

    try:
        config = RunConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration in {path}:\n{exc}") from exc
    if config.identity.suri is None:
        raise ConfigError(f"no secret URI: set identity.suri in {path} or {ENV_SURI}")
    return config
