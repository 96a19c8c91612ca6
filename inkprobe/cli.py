"""
inkprobe.cli
============

`inkprobe`: command-line entry point.

Commands
--------
    $ inkprobe run probe.yaml            # full verification run
    $ inkprobe run probe.yaml --json     # ...and print the report as JSON
    $ inkprobe address --algorithm sr25519
    $ inkprobe methods polkasign.contract

The secret URI is never taken from the command line: `run` reads it from the
config file or `INKPROBE_SURI`, `address` from `INKPROBE_SURI` or a hidden
prompt.

Exit codes: 0 when identity, connection and binding succeed (individual
query steps may still have failed), 1 on any fatal error.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

import typer

from inkprobe import __version__
from inkprobe.config import ENV_SURI, load_config
from inkprobe.errors import InkProbeError
from inkprobe.identity import derive
from inkprobe.metadata import load_interface
from inkprobe.orchestrator import QueryOrchestrator
from inkprobe.types import DEFAULT_SS58_FORMAT, KeyAlgorithm

log = logging.getLogger("inkprobe")

app = typer.Typer(
    name="inkprobe",
    help="Verify an identity and run read-only queries against an ink! contract.",
    no_args_is_help=True,
    add_completion=False,
)

__all__ = ["app", "main"]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"inkprobe {__version__}")
        raise typer.Exit()


@app.callback()
def _root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log node traffic."),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit."
    ),
) -> None:
    _configure_logging(verbose)


@app.command()
def run(
    config: Path = typer.Argument(..., exists=True, dir_okay=False, help="YAML run configuration."),
    json_output: bool = typer.Option(False, "--json", help="Print the run report as JSON."),
) -> None:
    """Self-check the identity, connect, and run every configured query step."""
    try:
        cfg = load_config(config)
        report = asyncio.run(QueryOrchestrator(cfg).run())
    except InkProbeError as exc:
        log.error("aborted: %s", exc)
        raise typer.Exit(code=1) from exc
    if json_output:
        typer.echo(report.model_dump_json(indent=2))


@app.command()
def address(
    algorithm: KeyAlgorithm = typer.Option(KeyAlgorithm.ED25519, "--algorithm", "-a"),
    label: str = typer.Option("", "--label"),
    ss58_format: int = typer.Option(DEFAULT_SS58_FORMAT, "--ss58-format"),
) -> None:
    """Derive and print the address for a secret URI."""
    suri = os.environ.get(ENV_SURI) or typer.prompt("Secret URI", hide_input=True)
    try:
        identity = derive(suri, algorithm, label, ss58_format=ss58_format)
    except InkProbeError as exc:
        log.error("%s", exc)
        raise typer.Exit(code=1) from exc
    typer.echo(identity.address)


@app.command()
def methods(
    metadata: Path = typer.Argument(..., exists=True, dir_okay=False, help="Contract metadata JSON."),
) -> None:
    """List the messages of a contract interface description."""
    try:
        interface = load_interface(metadata)
    except InkProbeError as exc:
        log.error("%s", exc)
        raise typer.Exit(code=1) from exc
    registry = interface.registry
    for message in interface.messages:
        args = ", ".join(f"{a.name}: {a.display}" for a in message.args)
        returns = registry.type_name(message.return_type) if message.return_type is not None else "()"
        flag = " (mutates)" if message.mutates else ""
        typer.echo(f"{message.label}({args}) -> {returns}{flag}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
