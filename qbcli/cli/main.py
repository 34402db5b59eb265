"""CLI commands for the qBittorrent Web API client."""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click
import structlog
from pydantic import ValidationError

from qbcli import __version__
from qbcli.cache import CacheConfig, CacheError, EncryptedTokenCache
from qbcli.client import ClientConfig, QbClient, RequestError, redact_url_credentials
from qbcli.credentials import ConnectionIdentity, InvalidIdentityError
from qbcli.observability import configure_logging, parse_log_level
from qbcli.retry import RetryConfig, RetryError
from qbcli.settings import get_settings


logger = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_DELAY_SECONDS = 30.0

CLIENT_ERRORS = (
    RetryError,
    RequestError,
    CacheError,
    InvalidIdentityError,
    ValidationError,
)


@dataclass
class CliOptions:
    """Global options shared by every command."""

    host: str
    username: str
    password: str
    cache_dir: Path | None
    force_auth: bool
    timeout: float
    retry: bool
    max_retries: int
    delay: float

    def build_identity(self) -> ConnectionIdentity:
        """Build the connection identity.

        Raises:
            click.UsageError: If no password was supplied.
        """
        if not self.password:
            msg = "a password is required (--password or QBCLI_PASSWORD)"
            raise click.UsageError(msg)
        return ConnectionIdentity.from_url(self.host, self.username, self.password)

    def build_config(self) -> ClientConfig:
        """Build the client configuration."""
        if self.retry:
            retry = RetryConfig(
                max_attempts=self.max_retries,
                retry_delay_seconds=self.delay,
            )
        else:
            retry = RetryConfig(max_attempts=1)
        return ClientConfig(
            request_timeout_seconds=self.timeout,
            force_auth=self.force_auth,
            retry=retry,
        )

    def build_cache(self) -> EncryptedTokenCache | None:
        """Build the token cache, or None when caching is disabled."""
        if self.cache_dir is None:
            return None
        return EncryptedTokenCache(CacheConfig(directory=self.cache_dir.expanduser()))


@contextmanager
def open_client(options: CliOptions) -> Iterator[QbClient]:
    """Open a client for the duration of a command.

    Library failures are reported as click errors with exit code 1.
    """
    logger.debug(
        "client_opening",
        host=redact_url_credentials(options.host),
        cache_dir=str(options.cache_dir) if options.cache_dir else None,
    )
    try:
        with QbClient(
            options.build_identity(),
            options.build_config(),
            options.build_cache(),
        ) as client:
            yield client
    except CLIENT_ERRORS as e:
        logger.debug("command_failed", error_type=type(e).__name__)
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(__version__, "--version", "-v", prog_name="qbcli")
@click.option("--host", "-H", default=None, help="qBittorrent Web UI URL.")
@click.option("--username", "-u", default=None, help="Web UI username.")
@click.option("--password", "-p", default=None, help="Web UI password.")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warn", "error"], case_sensitive=False),
    default=None,
    help="Log level (default: warn).",
)
@click.option(
    "--json-logs/--no-json-logs",
    default=False,
    help="Use JSON format for logs (default: false).",
)
@click.option(
    "--cache",
    "cache_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for the encrypted session cache.",
)
@click.option("--no-cache", is_flag=True, help="Do not read or write the session cache.")
@click.option("--auth", "force_auth", is_flag=True, help="Force a fresh login.")
@click.option(
    "--timeout",
    type=click.FloatRange(min=0.0, min_open=True),
    default=DEFAULT_TIMEOUT_SECONDS,
    show_default=True,
    help="Per-request timeout in seconds.",
)
@click.option("--retry", is_flag=True, help="Retry transient failures.")
@click.option(
    "--max-retries",
    type=click.IntRange(min=0),
    default=DEFAULT_MAX_RETRIES,
    show_default=True,
    help="Maximum attempts when --retry is set (0 = unlimited).",
)
@click.option(
    "--delay",
    type=click.FloatRange(min=0.0),
    default=DEFAULT_RETRY_DELAY_SECONDS,
    show_default=True,
    help="Delay between attempts in seconds.",
)
@click.pass_context
def cli(  # noqa: PLR0913
    ctx: click.Context,
    host: str | None,
    username: str | None,
    password: str | None,
    log_level: str | None,
    json_logs: bool,
    cache_dir: Path | None,
    no_cache: bool,
    force_auth: bool,
    timeout: float,
    retry: bool,
    max_retries: int,
    delay: float,
) -> None:
    """Command line client for the qBittorrent Web API."""
    settings = get_settings()

    try:
        level = parse_log_level(log_level or settings.log_level)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="QBCLI_LOG_LEVEL") from e
    configure_logging(level=level, json_format=json_logs)

    ctx.obj = CliOptions(
        host=host or settings.host_url,
        username=username or settings.username,
        password=password or settings.password,
        cache_dir=None if no_cache else (cache_dir or settings.resolved_cache_dir()),
        force_auth=force_auth,
        timeout=timeout,
        retry=retry,
        max_retries=max_retries,
        delay=delay,
    )


@cli.command()
@click.pass_obj
def login(options: CliOptions) -> None:
    """Log in and report the server version."""
    with open_client(options) as client:
        version = client.login()
    click.echo(f"Logged in (qBittorrent {version})")


@cli.command()
@click.pass_obj
def logout(options: CliOptions) -> None:
    """Log out and forget the cached session."""
    with open_client(options) as client:
        client.logout()
    click.echo("Logged out")


@cli.command("get-preferences")
@click.pass_obj
def get_preferences(options: CliOptions) -> None:
    """Print the application preferences as JSON."""
    with open_client(options) as client:
        prefs = client.get_preferences()
    click.echo(json.dumps(prefs, indent=2, sort_keys=True))


@cli.command("set-preferences")
@click.argument("prefs_json", metavar="[JSON]", required=False)
@click.option(
    "--file",
    "prefs_file",
    type=click.File("r"),
    default=None,
    help="Read preferences JSON from a file ('-' for stdin).",
)
@click.pass_obj
def set_preferences(
    options: CliOptions,
    prefs_json: str | None,
    prefs_file: Any,
) -> None:
    """Update application preferences from a JSON object."""
    prefs = _load_preferences(prefs_json, prefs_file)
    with open_client(options) as client:
        client.set_preferences(prefs)
    click.echo(f"Updated {len(prefs)} preference(s)")


@cli.command("get-listening-port")
@click.pass_obj
def get_listening_port(options: CliOptions) -> None:
    """Print the incoming connection port."""
    with open_client(options) as client:
        port = client.get_listening_port()
    click.echo(str(port))


@cli.command("set-listening-port")
@click.argument("port", type=click.IntRange(0, 65535))
@click.pass_obj
def set_listening_port(options: CliOptions, port: int) -> None:
    """Set the incoming connection port."""
    with open_client(options) as client:
        client.set_listening_port(port)
    click.echo(f"Listening port set to {port}")


def _load_preferences(prefs_json: str | None, prefs_file: Any) -> dict[str, Any]:
    if (prefs_json is None) == (prefs_file is None):
        msg = "provide preferences either as a JSON argument or with --file"
        raise click.UsageError(msg)

    raw = prefs_json if prefs_json is not None else prefs_file.read()
    try:
        prefs = json.loads(raw)
    except json.JSONDecodeError as e:
        msg = f"invalid preferences JSON: {e}"
        raise click.BadParameter(msg, param_hint="JSON") from e

    if not isinstance(prefs, dict):
        msg = "preferences must be a JSON object"
        raise click.BadParameter(msg, param_hint="JSON")
    return prefs


def main() -> None:
    """Console script entry point."""
    cli(prog_name="qbcli")


if __name__ == "__main__":
    main()
