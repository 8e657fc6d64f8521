"""
gitstream.cli
=============

`gitstream` — operator command line.

Commands
--------
    $ gitstream version
    $ gitstream validate-config tiers.json
    $ gitstream allocate tiers.json members.json --amount 100000000
    $ gitstream status                # ClearNode connection + ledger balances
    $ gitstream balance [--address 0x..] [--asset usdc]
    $ gitstream serve --host 0.0.0.0 --port 8080

`status` and `balance` connect with the operator key from
``OPERATOR_PRIVATE_KEY`` (see :mod:`gitstream.config`).

File formats
------------
tiers.json   : {"tiers": [{"name": "Core", "revenueShare": 60, "splitMethod": "equal"}, ...],
                "treasuryShare": 10}
members.json : {"Core": [{"walletAddress": "0x...", "weight": 3}, ...], ...}
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, NoReturn, Optional

import typer
import uvicorn

from .allocation.engine import compute_tier_allocations, undistributed_amount
from .allocation.models import TierConfig, members_by_tier_from_mapping
from .clearnode.registry import ClearNodeRegistry
from .clearnode.streaming import get_session_balance
from .config import get_settings
from .errors import GitStreamError
from .logging import setup_logging
from .version import __version__

app = typer.Typer(
    name="gitstream",
    help="GitStream — tier-based revenue distribution over ClearNode.",
    no_args_is_help=True,
    add_completion=False,
)

__all__ = ["app", "main"]


def _print_json(obj: Any) -> None:
    typer.echo(json.dumps(obj, indent=2, ensure_ascii=False))


def _load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise typer.BadParameter(f"cannot read {path}: {e}") from e


def _fail(err: GitStreamError) -> NoReturn:
    typer.echo(json.dumps({"error": err.to_problem()}, indent=2), err=True)
    raise typer.Exit(code=1)


@app.callback()
def _root(
    log_level: Optional[str] = typer.Option(None, "--log-level", envvar="LOG_LEVEL", help="DEBUG, INFO, WARNING, ERROR"),
) -> None:
    setup_logging(level=(log_level or "WARNING").upper(), log_format="console")


@app.command("version")
def version() -> None:
    """Print the CLI version."""
    typer.echo(f"gitstream {__version__}")


@app.command("validate-config")
def validate_config(config: Path = typer.Argument(..., help="Tier config JSON file")) -> None:
    """Check a tier config: 1-10 unique tiers, shares plus treasury equal 100."""
    try:
        cfg = TierConfig.parse(_load_json(config))
    except GitStreamError as e:
        _fail(e)
    _print_json({"valid": True, "tiers": len(cfg.tiers), "treasuryShare": cfg.treasury_share})


@app.command("allocate")
def allocate(
    config: Path = typer.Argument(..., help="Tier config JSON file"),
    members: Path = typer.Argument(..., help="Tier -> members JSON file"),
    amount: int = typer.Option(..., "--amount", "-a", min=0, help="Total amount in the asset's smallest unit"),
) -> None:
    """Compute per-member shares (no network access)."""
    try:
        cfg = TierConfig.parse(_load_json(config))
        by_tier = members_by_tier_from_mapping(_load_json(members))
        allocations = compute_tier_allocations(amount, cfg, by_tier)
    except GitStreamError as e:
        _fail(e)
    _print_json(
        {
            "totalAmount": str(amount),
            "undistributedAmount": str(undistributed_amount(amount, allocations)),
            "allocations": [a.to_display() for a in allocations],
        }
    )


async def _with_client(fn):
    registry = ClearNodeRegistry.from_settings(get_settings())
    try:
        client = await registry.get()
        return await fn(client)
    finally:
        await registry.close()


@app.command("status")
def status() -> None:
    """Connect, authenticate and print connection status plus ledger balances."""

    async def _status(client):
        balances = await client.get_ledger_balances()
        channels = await client.get_channels()
        return {
            "address": client.address,
            **client.status().to_dict(),
            "channels": len(channels),
            "balances": [{"asset": b.asset, "amount": b.amount} for b in balances],
        }

    try:
        _print_json(asyncio.run(_with_client(_status)))
    except GitStreamError as e:
        _fail(e)


@app.command("balance")
def balance(
    address: Optional[str] = typer.Option(None, "--address", help="Defaults to the operator wallet"),
    asset: Optional[str] = typer.Option(None, "--asset", help="Asset symbol (default: SESSION_ASSET)"),
) -> None:
    """Print the ledger balance of one asset."""
    symbol = asset or get_settings().session_asset

    async def _balance(client):
        return await get_session_balance(client, address, asset=symbol)

    try:
        _print_json({"asset": symbol, "balance": asyncio.run(_with_client(_balance))})
    except GitStreamError as e:
        _fail(e)


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host", envvar="HOST"),
    port: int = typer.Option(8080, "--port", envvar="PORT"),
    reload: bool = typer.Option(False, "--reload", help="Autoreload (dev only)"),
) -> None:
    """Run the HTTP API under uvicorn."""
    # one process: the ClearNode connection and the per-project locks live in memory
    uvicorn.run(
        "gitstream.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        workers=1,
        proxy_headers=True,
        log_level=get_settings().log_level.lower(),
    )


def main() -> None:  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
