from __future__ import annotations

import json
import logging
from typing import Optional

import click

from . import __version__
from .api import SalesforceAPI, SFConfig
from .auth import token_preview
from .credentials import Credentials
from .env_loader import load_env_files
from .exceptions import SalesforceRESTError
from .logging_config import configure_logging

_logger = logging.getLogger(__name__)


def _build_api(
    credentials_file: Optional[str],
    sandbox: bool,
    max_tries: Optional[int] = None,
) -> SalesforceAPI:
    cfg = SFConfig.from_env()
    if credentials_file:
        cfg.credentials_file = credentials_file
    if sandbox:
        cfg.is_sandbox = True
    if max_tries is not None:
        cfg.max_tries = max_tries
    return SalesforceAPI(cfg, Credentials.from_env())


credentials_file_option = click.option(
    "--credentials-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="JSON credentials file; refreshed tokens are written back to it.",
)
sandbox_option = click.option(
    "--sandbox", is_flag=True, help="Log in via test.salesforce.com."
)


@click.group(
    context_settings={"help_option_names": ["-h", "--help"]},
    invoke_without_command=True,
)
@click.version_option(__version__, "--version", prog_name="sfrest")
@click.option(
    "-v",
    "--verbose",
    "loglevel",
    flag_value=logging.INFO,
    default=None,
    help="Enable INFO logs.",
)
@click.option(
    "-vv",
    "--very-verbose",
    "loglevel",
    flag_value=logging.DEBUG,
    help="Enable DEBUG logs.",
)
@click.pass_context
def cli(ctx: click.Context, loglevel: Optional[int]) -> None:
    """Salesforce REST client. Use subcommands like 'login' or 'query'."""
    configure_logging(loglevel)
    load_env_files()
    _logger.debug("CLI start, version=%s", __version__)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("login")
@credentials_file_option
@sandbox_option
def cmd_login(credentials_file: Optional[str], sandbox: bool) -> None:
    """Fetch a new access token (and store it if a credentials file is given)."""
    try:
        api = _build_api(credentials_file, sandbox)
        token = api.refresh_access_token()
    except SalesforceRESTError as e:
        click.echo(f"❌  Login failed: {e}", err=True)
        raise click.Abort() from None

    click.echo("✅  Salesforce access token refreshed.")
    click.echo(f"Instance URL: {api.instance_url}")
    if api.store is not None:
        click.echo(f"Credentials file: {api.store.path}")
    click.echo(f"Token preview: {token_preview(token)}")


@cli.command("query")
@click.argument("soql")
@click.option("--options", default="", help="Extra query-string fragment, e.g. 'batchSize=200'.")
@click.option("--pretty", is_flag=True, help="Pretty-print JSON.")
@click.option("--max-tries", type=click.IntRange(min=1), default=None, help="Give up after N attempts.")
@credentials_file_option
@sandbox_option
def cmd_query(
    soql: str,
    options: str,
    pretty: bool,
    max_tries: Optional[int],
    credentials_file: Optional[str],
    sandbox: bool,
) -> None:
    """Run a SOQL query and print the JSON response."""
    try:
        api = _build_api(credentials_file, sandbox, max_tries)
        res = api.query(soql, options)
    except SalesforceRESTError as e:
        click.echo(f"Error: {e}", err=True)
        raise click.Abort() from None
    click.echo(json.dumps(res, indent=2 if pretty else None))
