"""CLI for the clawtrl wallet signing proxy."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="clawtrl-wallet",
    help="Local signing proxy that keeps an agent's wallet key out of the agent's reach.",
    no_args_is_help=True,
)
console = Console()

_config_path: Path | None = None


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"clawtrl-wallet {version('clawtrl-wallet')}")
        raise typer.Exit()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


@app.callback()
def main(
    config: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config.yaml (default: ~/.clawtrl/config.yaml if present)",
        envvar="CLAWTRL_CONFIG",
    ),
    log_level: str = typer.Option("info", "--log-level", "-l", help="Logging level"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Local signing proxy that keeps an agent's wallet key out of the agent's reach."""
    global _config_path
    _config_path = config
    _setup_logging(log_level)


def _load_context():
    """Resolve config and key, exiting with a diagnostic on failure."""
    from clawtrl_wallet.config import resolve_config
    from clawtrl_wallet.context import build_context
    from clawtrl_wallet.errors import KeyResolutionError

    try:
        config = resolve_config(_config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise typer.Exit(1)

    try:
        return config, build_context(config)
    except KeyResolutionError as e:
        console.print(f"[red]{config.key_env_var} not found or invalid[/red]")
        console.print(f"[red]{e}[/red]")
        if e.searched:
            console.print("[dim]Searched:[/dim]")
            for location in e.searched:
                console.print(f"  [dim]{location}[/dim]")
        raise typer.Exit(1)


# ------------------------------------------------------------------
# serve
# ------------------------------------------------------------------


@app.command()
def serve(
    port: int = typer.Option(None, "--port", "-p", help="Port to serve on (default 8128)"),
    host: str = typer.Option(None, "--host", help="Host to bind to (default 127.0.0.1)"),
    log_level: str = typer.Option("info", "--uvicorn-log-level", help="Uvicorn log level"),
):
    """Run the signing proxy."""
    from clawtrl_wallet.proxy.server import run_server

    config, context = _load_context()
    host = host or config.server.host
    port = port or config.server.port
    if host not in ("127.0.0.1", "localhost", "::1"):
        console.print(f"[yellow]Warning: binding to {host} exposes the wallet beyond this machine.[/yellow]")

    console.print(
        f"[bold green]Clawtrl signing proxy on {host}:{port}[/bold green] "
        f"| wallet: [cyan]{context.account.address}[/cyan]"
    )
    run_server(context, host=host, port=port, log_level=log_level)


# ------------------------------------------------------------------
# address / balance / sign
# ------------------------------------------------------------------


@app.command()
def address():
    """Show the wallet address."""
    _, context = _load_context()
    asyncio.run(context.aclose())
    console.print(Panel(
        f"[cyan]{context.account.address}[/cyan]\n\n"
        f"[dim]Chain: {context.chain.name} ({context.chain.chain_id})\n"
        f"Explorer: {context.chain.explorer_url}/address/{context.account.address}[/dim]",
        title="Wallet Address",
    ))


@app.command()
def balance():
    """Show ETH and USDC balances."""
    from clawtrl_wallet.errors import ProxyError

    _, context = _load_context()
    try:
        result = context.wallet.get_balances()
    except ProxyError as e:
        console.print(f"[red]Balance query failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        asyncio.run(context.aclose())

    table = Table(title=f"Wallet Balances ({result['chain']})")
    table.add_column("Token", style="cyan")
    table.add_column("Balance", justify="right")
    table.add_row(context.chain.native_symbol, result["eth"])
    table.add_row(context.chain.stable_symbol, result["usdc"])
    console.print(table)
    console.print(f"[dim]{result['address']}[/dim]")


@app.command()
def sign(
    url: str = typer.Argument(help="Full URL of the request to sign"),
    method: str = typer.Option("GET", "--method", "-X", help="HTTP method"),
    body: str = typer.Option("", "--body", "-d", help="Request body"),
):
    """Print ERC-8128 signature headers for a request."""
    from clawtrl_wallet.signing import sign_request

    _, context = _load_context()
    headers = sign_request(context.account, context.chain.chain_id, url, method, body)
    asyncio.run(context.aclose())
    # plain output so it can be piped
    typer.echo(json.dumps({"headers": headers}, indent=2))


# ------------------------------------------------------------------
# init-config
# ------------------------------------------------------------------


@app.command("init-config")
def init_config(
    path: Path = typer.Option(None, "--path", help="Where to write (default: ~/.clawtrl/config.yaml)"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
):
    """Write a default config.yaml."""
    from clawtrl_wallet.config import ProxyConfig, default_config_path, save_config

    target = path or default_config_path()
    if target.exists() and not force:
        console.print(f"[yellow]{target} already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)
    save_config(ProxyConfig(), target)
    console.print(f"[green]Wrote {target}[/green]")
