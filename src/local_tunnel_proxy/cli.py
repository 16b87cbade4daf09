"""Command line entry point."""

import asyncio
import sys

import click
from pydantic import ValidationError

from . import __version__
from .common.exceptions import TunnelProxyError
from .common.logging import get_logger, setup_logging
from .config import (
    AUTHTOKEN_ENV_VAR,
    DEFAULT_CALLBACK_PATH,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_TARGET_HOST,
    TargetAddress,
    TunnelProxyConfig,
)
from .orchestrator import Orchestrator
from .tunnels import NgrokTunnelManager, StatusBroadcaster, TunnelStatus

logger = get_logger(__name__)


class ConsoleAnnouncer:
    """Writes lifecycle milestones to the console.

    In URL-only mode the public URL is the only thing printed on stdout.
    """

    def __init__(self, url_only: bool = False):
        self.url_only = url_only

    def probing(self, target: TargetAddress) -> None:
        if not self.url_only:
            click.echo(f"Checking local target {target.url} for reachability...")

    def running(self, public_url: str, config: TunnelProxyConfig) -> None:
        if self.url_only:
            click.echo(public_url)
            return
        click.echo(f"Public OAuth redirect base URL: {public_url}")
        click.echo(f"Forwarding to {config.target.url}")
        click.echo(
            f"Configure your provider with redirect URI: "
            f"{config.redirect_uri(public_url)} (or append your own path)."
        )
        click.echo("Tunnel is running. Press Ctrl+C to stop.")

    def shutting_down(self) -> None:
        if not self.url_only:
            click.echo("\nShutting down tunnel...", err=True)

    def status(self, status: TunnelStatus) -> None:
        if not self.url_only:
            click.echo(f"[ngrok] {status.value}", err=True)


@click.command(
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option(
    "-p",
    "--port",
    type=click.IntRange(1, 65535),
    required=True,
    help="Local target port to forward to.",
)
@click.option(
    "--host",
    default=DEFAULT_TARGET_HOST,
    show_default=True,
    help="Local target host.",
)
@click.option(
    "--ngrok-authtoken",
    "auth_token",
    envvar=AUTHTOKEN_ENV_VAR,
    show_envvar=True,
    help=f"ngrok authtoken (falls back to {AUTHTOKEN_ENV_VAR}).",
)
@click.option(
    "--print-url-only",
    is_flag=True,
    help="Print only the public URL (handy for scripting).",
)
@click.option(
    "--callback-path",
    default=DEFAULT_CALLBACK_PATH,
    show_default=True,
    help="Path appended to the public URL in the suggested redirect URI.",
)
@click.option(
    "--probe-timeout",
    type=click.FloatRange(min=0, min_open=True, max=60),
    default=DEFAULT_PROBE_TIMEOUT,
    show_default=True,
    help="Seconds to wait for the local target to accept a connection.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
)
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines.")
@click.option(
    "--log-file", type=click.Path(dir_okay=False), help="Also write logs to a file."
)
@click.version_option(__version__, prog_name="local-tunnel-proxy")
def main(
    port: int,
    host: str,
    auth_token: str | None,
    print_url_only: bool,
    callback_path: str,
    probe_timeout: float,
    log_level: str,
    json_logs: bool,
    log_file: str | None,
) -> None:
    """Expose a localhost OAuth callback endpoint via ngrok with transparent proxying."""
    if not auth_token:
        raise click.UsageError(
            f"Missing ngrok authtoken. Prefer exporting {AUTHTOKEN_ENV_VAR} "
            "(or use --ngrok-authtoken for testing only)."
        )

    try:
        config = TunnelProxyConfig(
            target=TargetAddress(host=host, port=port),
            auth_token=auth_token,
            probe_timeout=probe_timeout,
            callback_path=callback_path,
            print_url_only=print_url_only,
        )
    except ValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise click.BadParameter(messages) from e

    setup_logging(
        level="WARNING" if print_url_only else log_level,
        json_format=json_logs,
        log_file=log_file,
    )

    sys.exit(run(config))


def run(config: TunnelProxyConfig) -> int:
    """Run one tunnel session and return the process exit status."""
    announcer = ConsoleAnnouncer(url_only=config.print_url_only)
    status = StatusBroadcaster()
    status.subscribe(announcer.status)
    orchestrator = Orchestrator(
        config,
        tunnel_provider=NgrokTunnelManager(status=status),
        announcer=announcer,
    )

    try:
        return asyncio.run(orchestrator.run())
    except TunnelProxyError as e:
        click.echo(f"Error: {e}", err=True)
        return 1
    except KeyboardInterrupt:
        click.echo("Interrupted before the tunnel was running.", err=True)
        return 1
    except Exception as e:
        logger.exception("Unexpected error", error=str(e))
        click.echo(f"Error: {e}", err=True)
        return 1
