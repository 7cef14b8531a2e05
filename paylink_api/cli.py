"""
CLI entry point for the Paylink service.
"""

import asyncio
import os
from pathlib import Path
from typing import Optional

import structlog
import typer

from .config import ENV_FILE_VAR, Settings, check_claim_grace, get_settings
from .errors import PaylinkError
from .services import Services, build_services

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

app = typer.Typer(
    name="paylink",
    help="Paylink payment link service",
    add_completion=False,
)


ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to .env configuration file",
)


def _load_settings(config_path: Optional[Path]) -> Settings:
    try:
        return Settings(_env_file=config_path) if config_path else Settings()
    except ValueError as e:
        typer.echo(f"✗ Invalid configuration: {e}")
        raise typer.Exit(code=2)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Run the HTTP API.
    """
    import uvicorn

    if config_path:
        # The app loads its own settings, possibly in a reloader subprocess.
        os.environ[ENV_FILE_VAR] = str(config_path)
        get_settings.cache_clear()
    settings = _load_settings(config_path)
    uvicorn.run(
        "paylink_api.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=settings.debug,
    )


@app.command()
def reconcile(
    config_path: Optional[Path] = ConfigOption,
    once: bool = typer.Option(
        False,
        "--once",
        help="Run one sweep and exit",
    ),
    grace: Optional[int] = typer.Option(
        None,
        "--grace",
        help="Override CLAIM_GRACE_SECONDS",
    ),
) -> None:
    """
    Release links stuck in CLAIMING past the grace period.
    """
    settings = _load_settings(config_path)
    if grace is not None:
        try:
            check_claim_grace(
                grace,
                settings.withdraw_timeout_seconds,
                settings.balance_timeout_seconds,
            )
        except ValueError as e:
            typer.echo(f"✗ {e}")
            raise typer.Exit(code=2)
        settings.claim_grace_seconds = grace

    services = build_services(settings)
    sweeper = services.sweeper
    try:
        if once:
            released = sweeper.run_once()
            for link_id in released:
                typer.echo(f"✓ Released: {link_id}")
            typer.echo(f"Released {len(released)} stale claims")
        else:
            typer.echo("Running in continuous mode. Press Ctrl+C to stop.")
            try:
                sweeper.run()
            except KeyboardInterrupt:
                typer.echo("\nStopping sweeper...")
                sweeper.stop()
    finally:
        asyncio.run(services.close())


@app.command()
def balance(config_path: Optional[Path] = ConfigOption) -> None:
    """
    Show the operator balance and the margin the guard enforces.
    """
    settings = _load_settings(config_path)
    services = build_services(settings)

    async def _read(services: Services) -> None:
        try:
            available = await services.guard.read_balance()
        finally:
            await services.close()

        required = services.relayer.safety_buffer + services.relayer.relay_fee_estimate
        typer.echo(f"Operator: {services.relayer.operator_address or '(not configured)'}")
        typer.echo(f"Balance: {available}")
        typer.echo(f"Safety buffer: {services.relayer.safety_buffer}")
        typer.echo(f"Relay fee estimate: {services.relayer.relay_fee_estimate}")
        if available < required:
            typer.echo("✗ Balance below buffer + fee estimate; claims will be refused")
            raise typer.Exit(code=1)
        typer.echo(f"✓ Can cover payouts up to {available - required}")

    try:
        asyncio.run(_read(services))
    except PaylinkError as e:
        typer.echo(f"✗ {e.message}")
        raise typer.Exit(code=1)


@app.command()
def deposit(
    link_id: str = typer.Argument(..., help="Link to fund"),
    from_address: str = typer.Option(..., "--from-address", help="Sender account to record"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Deposit a link's amount through the relay and record it (development helper).
    """
    settings = _load_settings(config_path)
    services = build_services(settings)

    async def _deposit(services: Services) -> None:
        try:
            link = services.store.get(link_id)
            ref = await services.relay.deposit(link.amount)
            typer.echo(f"Deposit sent: {ref}")
            link = services.deposits.attach(link_id, ref, from_address)
            typer.echo(f"✓ Link {link.id} is {link.state.value}")
        finally:
            await services.close()

    try:
        asyncio.run(_deposit(services))
    except PaylinkError as e:
        typer.echo(f"✗ {e.message}")
        raise typer.Exit(code=1)


@app.command()
def version() -> None:
    """Show the service version."""
    from paylink_api import __version__
    typer.echo(f"paylink v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
