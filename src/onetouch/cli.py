"""CLI entry point for onetouch."""

import asyncio
from pathlib import Path

import click

from onetouch import __version__
from onetouch.config import Config, load_config
from onetouch.errors import OnetouchError
from onetouch.logging import setup_logging
from onetouch.pairing.session import ClaimResult, PairingStatus, format_timestamp


@click.group()
@click.version_option(__version__, prog_name="onetouch")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None) -> None:
    """onetouch - Pair two devices with a short-lived code."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


def _build_service(config: Config):
    from onetouch.pairing.service import PairingService
    from onetouch.pairing.store import open_store

    return PairingService(
        store=open_store(config.store),
        ttl=config.pairing.ttl_seconds,
        max_ttl=config.pairing.max_ttl_seconds,
        max_create_attempts=config.pairing.max_create_attempts,
    )


def _client(config: Config):
    from onetouch.client import PairingClient

    return PairingClient(
        config.server_url,
        request_timeout=config.polling.request_timeout,
    )


@main.command()
@click.option("--host", default=None, help="Bind address (default from config).")
@click.option("--port", type=int, default=None, help="Port (default from config).")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the pairing HTTP server."""
    from onetouch.server import PairingServer, RateLimiter

    config = ctx.obj["config"]
    host = host or config.bind_address
    port = port if port is not None else config.port

    async def _serve():
        try:
            service = _build_service(config)
        except (ValueError, OnetouchError) as e:
            click.echo(f"Startup error: {e}", err=True)
            raise SystemExit(1)

        server = PairingServer(
            service,
            claim_base_url=config.pairing.claim_base_url,
            rate_limiter=RateLimiter(
                max_requests=config.rate_limit.max_requests,
                window_seconds=config.rate_limit.window_seconds,
            ),
        )
        try:
            await server.start(host, port)
            click.echo(f"Pairing server listening on {host}:{server.get_port()}")
            click.echo("Press Ctrl+C to stop")
            await asyncio.Event().wait()
        finally:
            await server.stop()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        click.echo("\nShutting down...")


@main.command()
@click.option("--ttl", type=float, default=None, help="Session lifetime in seconds.")
@click.option("--initiator", default=None, help="Initiator reference.")
@click.option("--wait", "wait_for_claim", is_flag=True, help="Poll until claimed or expired.")
@click.pass_context
def create(
    ctx: click.Context,
    ttl: float | None,
    initiator: str | None,
    wait_for_claim: bool,
) -> None:
    """Create a pairing session and print its code."""
    from onetouch.pairing.poller import StatusPoller

    config = ctx.obj["config"]

    async def _create():
        async with _client(config) as client:
            created = await client.create_session(initiator_ref=initiator, ttl=ttl)
            click.echo(f"Code: {created.code}")
            click.echo(f"Expires: {format_timestamp(created.expires_at)}")
            if created.claim_url:
                click.echo(f"Claim URL: {created.claim_url}")

            if not wait_for_claim:
                return None

            click.echo("Waiting for claim...")
            async with StatusPoller(
                client.get_status,
                created.code,
                interval=config.polling.interval,
            ) as poller:
                report = await poller.wait()
                if poller.error is not None:
                    raise poller.error
                return report

    try:
        report = asyncio.run(_create())
    except OnetouchError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if report is None:
        return
    if report.status is PairingStatus.CLAIMED:
        click.echo(f"Claimed at {format_timestamp(report.claimed_at)}")
    else:
        click.echo(f"Session {report.status.value}")
        raise SystemExit(1)


@main.command()
@click.argument("code")
@click.pass_context
def status(ctx: click.Context, code: str) -> None:
    """Show the status of a pairing session."""
    config = ctx.obj["config"]

    async def _status():
        async with _client(config) as client:
            return await client.get_status(code)

    try:
        report = asyncio.run(_status())
    except OnetouchError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Status: {report.status.value}")
    click.echo(f"Expires: {format_timestamp(report.expires_at)}")
    if report.claimed_at is not None:
        click.echo(f"Claimed: {format_timestamp(report.claimed_at)}")


@main.command()
@click.argument("code")
@click.option("--responder", default=None, help="Responder reference.")
@click.pass_context
def claim(ctx: click.Context, code: str, responder: str | None) -> None:
    """Claim a pairing session by code."""
    config = ctx.obj["config"]

    async def _claim():
        async with _client(config) as client:
            return await client.claim_session(code, responder_ref=responder)

    try:
        result = asyncio.run(_claim())
    except OnetouchError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if result is ClaimResult.OK:
        click.echo("Claimed")
    else:
        click.echo(f"Not claimed: {result.value}", err=True)
        raise SystemExit(1)


@main.command()
@click.pass_context
def purge(ctx: click.Context) -> None:
    """Delete sessions expired longer than the grace period."""
    config = ctx.obj["config"]

    async def _purge():
        service = _build_service(config)
        try:
            return await service.purge_expired(config.store.purge_grace_seconds)
        finally:
            await service.store.close()

    try:
        removed = asyncio.run(_purge())
    except (ValueError, OnetouchError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Removed {removed} expired session(s)")


if __name__ == "__main__":
    main()
