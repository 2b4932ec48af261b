"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Cairn, a product of Garudex Labs

Command-line interface for the Cairn Policy SDK.

Provides commands for:
- Listing the resolved, organized gateways
- Querying and checking policy rules
- Reading, writing and removing data documents
"""

import asyncio
import json
import sys
from typing import Any, Optional

import click
from rich.console import Console
from rich.table import Table

from cairn._version import __version__
from cairn.config.settings import CairnConfig, load_config
from cairn.exceptions import CairnError
from cairn.logging_config import correlation_scope, get_logger, setup_logging
from cairn.sdk.client import PolicyClient

logger = get_logger(__name__)
console = Console()


class CLIContext:
    """State shared by every command."""

    def __init__(self, config: CairnConfig):
        self.config = config

    def client(self) -> PolicyClient:
        return PolicyClient(config=self.config.client)


pass_context = click.make_pass_decorator(CLIContext)


def _parse_json(value: Optional[str], option: str) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except ValueError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint=option)


def _run(coro_factory) -> Any:
    """Run a coroutine with a fresh client and correlation ID; exit 1 on SDK errors."""
    ctx = click.get_current_context().find_object(CLIContext)

    async def main():
        async with ctx.client() as client:
            return await coro_factory(client)

    with correlation_scope():
        try:
            return asyncio.run(main())
        except CairnError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)


def _echo_json(document: Any) -> None:
    click.echo(json.dumps(document, indent=2))


@click.group(name="cairn")
@click.version_option(__version__, prog_name="cairn")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to configuration file (default: ~/.cairn/config.yaml)",
)
@click.option("--url", default=None, help="Policy service base URL (overrides configuration)")
@click.option("--token", default=None, help="API bearer token (overrides configuration)")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level (overrides configuration)",
)
@click.pass_context
def cli(ctx, config_path: Optional[str], url: Optional[str], token: Optional[str], log_level: Optional[str]):
    """Cairn policy-decision service client."""
    try:
        config = load_config(config_path)
    except CairnError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if url:
        config.client.url = url
    if token:
        config.client.token = token
    if log_level:
        config.logging.level = log_level.upper()

    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        json_format=config.logging.json_format,
    )
    ctx.obj = CLIContext(config)


@cli.command("gateways")
@pass_context
def gateways(ctx: CLIContext):
    """
    List the gateways requests are sent to, in order.

    Organization runs synchronously here so that the listed order is the
    organized one.
    """
    ctx.config.client.async_gateway_organization = False

    async def resolve(client: PolicyClient):
        return await client.get_gateways()

    resolved = _run(resolve)

    table = Table(title="Gateways")
    table.add_column("#", justify="right")
    table.add_column("URL", style="cyan")
    table.add_column("Region")
    table.add_column("Zone ID")
    for i, gateway in enumerate(resolved, start=1):
        table.add_row(
            str(i),
            gateway.base_url,
            gateway.locality.region or "-",
            gateway.locality.zone_id or "-",
        )
    console.print(table)


@cli.command("query")
@click.argument("path")
@click.option("--input", "-i", "input_json", default=None, help="Input document as JSON")
def query(path: str, input_json: Optional[str]):
    """
    Query a policy rule and print the decision document.

    Examples:

        cairn query app/allow --input '{"subject": "alice"}'
    """
    input_document = _parse_json(input_json, "--input")
    _echo_json(_run(lambda client: client.query(path, input_document)))


@cli.command("check")
@click.argument("path")
@click.option("--input", "-i", "input_json", default=None, help="Input document as JSON")
def check(path: str, input_json: Optional[str]):
    """
    Check a policy rule; exits 0 when allowed and 2 when denied.
    """
    input_document = _parse_json(input_json, "--input")
    allowed = _run(lambda client: client.check(path, input_document))

    if allowed:
        click.echo("✓ Allowed")
    else:
        click.echo("✗ Denied")
        sys.exit(2)


@cli.group("data")
def data_group():
    """Read and write data documents."""


@data_group.command("get")
@click.argument("path")
@click.option("--default", "default_json", default=None, help="JSON value returned when the path does not exist")
def data_get(path: str, default_json: Optional[str]):
    """Print the data document at PATH."""
    default = _parse_json(default_json, "--default")
    _echo_json(_run(lambda client: client.get_data(path, default)))


@data_group.command("put")
@click.argument("path")
@click.argument("document")
def data_put(path: str, document: str):
    """Upload DOCUMENT (JSON) to PATH."""
    data = _parse_json(document, "DOCUMENT")
    _echo_json(_run(lambda client: client.put_data(path, data)))


@data_group.command("delete")
@click.argument("path")
def data_delete(path: str):
    """Remove the data document at PATH."""
    _echo_json(_run(lambda client: client.delete_data(path)))


def main():
    cli()


if __name__ == "__main__":
    main()
