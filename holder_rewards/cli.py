from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any

import click
from loguru import logger
from pydantic import BaseModel

from holder_rewards.core.config import load_config
from holder_rewards.core.errors import HolderRewardsError
from holder_rewards.core.results import Failure, Result
from holder_rewards.core.settings import load_settings
from holder_rewards.service import VerificationService


def _jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if is_dataclass(data) and not isinstance(data, type):
        return asdict(data)
    if isinstance(data, dict):
        return {k: _jsonable(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [_jsonable(d) for d in data]
    return data


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(_jsonable(data), indent=2, default=str))


def _echo_result(result: Result[Any]) -> None:
    if isinstance(result, Failure):
        _echo_json({"ok": False, "error": result.to_dict()})
        raise SystemExit(1)
    _echo_json({"ok": True, "result": _jsonable(result.value)})


def _service(ctx: click.Context) -> VerificationService:
    obj = ctx.ensure_object(dict)
    if obj.get("service") is None:
        try:
            obj["service"] = VerificationService.from_settings(load_settings())
        except HolderRewardsError as exc:
            _echo_json({"ok": False, "error": exc.to_dict()})
            raise SystemExit(2) from exc
    return obj["service"]


def _run(ctx: click.Context, coro: Any) -> Any:
    service = _service(ctx)

    async def _main() -> Any:
        try:
            return await coro(service)
        finally:
            await service.close()

    return asyncio.run(_main())


@click.group(name="holder-rewards", help="Wallet verification and holder scoring.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Config file (defaults to HOLDER_REWARDS_CONFIG_PATH or ./config.json).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=str(log_level).upper())
    ctx.ensure_object(dict)
    if config_path is not None:
        load_config(config_path, require_exists=True)


@cli.command(name="issue-nonce", help="Issue a single-use challenge for a wallet.")
@click.argument("wallet")
@click.pass_context
def issue_nonce_cmd(ctx: click.Context, wallet: str) -> None:
    _echo_result(_service(ctx).issue_nonce(wallet))


@cli.command(name="verify", help="Verify a signed challenge and record the holder.")
@click.argument("wallet")
@click.option("--nonce", required=True)
@click.option("--timestamp", type=int, required=True, help="Challenge time in ms.")
@click.option("--signature", required=True)
@click.option("--handle", "social_handle", required=True)
@click.pass_context
def verify_cmd(
    ctx: click.Context,
    wallet: str,
    nonce: str,
    timestamp: int,
    signature: str,
    social_handle: str,
) -> None:
    result = _run(
        ctx,
        lambda s: s.verify_and_record(wallet, nonce, timestamp, signature, social_handle),
    )
    _echo_result(result)


@cli.command(name="status", help="Show the stored verification record for a wallet.")
@click.argument("wallet")
@click.pass_context
def status_cmd(ctx: click.Context, wallet: str) -> None:
    holder = _service(ctx).get_verification_status(wallet)
    _echo_json({"ok": True, "result": {"verified": holder is not None, "holder": holder}})


@cli.command(name="leaderboard", help="Show the leaderboard joined with verifications.")
@click.pass_context
def leaderboard_cmd(ctx: click.Context) -> None:
    _echo_json({"ok": True, "result": _service(ctx).get_leaderboard()})


@cli.command(name="holders", help="List verified holders, highest value first.")
@click.option("--eligible", is_flag=True, help="Only holders at or above the minimum.")
@click.option("--public", is_flag=True, help="Hide the configured excluded handles.")
@click.pass_context
def holders_cmd(ctx: click.Context, eligible: bool, public: bool) -> None:
    listing = _service(ctx).list_holders(eligible_only=eligible, public=public)
    _echo_json(
        {
            "ok": True,
            "result": {
                "count": listing.count,
                "holders": listing.holders,
                "minimum_qualifying_value": listing.minimum_qualifying_value,
            },
        }
    )


@cli.command(name="delete-holder", help="Remove a wallet's verification record (admin).")
@click.argument("wallet")
@click.pass_context
def delete_holder_cmd(ctx: click.Context, wallet: str) -> None:
    _echo_result(_service(ctx).delete_holder(wallet))


@cli.command(name="refresh-leaderboard", help="Replace the leaderboard from a JSON file.")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--minimum", type=float, default=None, help="Minimum qualifying value.")
@click.pass_context
def refresh_leaderboard_cmd(ctx: click.Context, file: Path, minimum: float | None) -> None:
    try:
        payload = json.loads(file.read_text())
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"not valid JSON: {exc}", param_hint="FILE") from exc
    rows = payload.get("leaderboard", []) if isinstance(payload, dict) else payload
    if not isinstance(rows, list):
        raise click.BadParameter("expected a list of rows", param_hint="FILE")
    _echo_result(
        _service(ctx).refresh_leaderboard(rows, minimum_qualifying_value=minimum)
    )


@cli.command(name="lp", help="Value a wallet's program-pair liquidity positions.")
@click.argument("wallet")
@click.pass_context
def lp_cmd(ctx: click.Context, wallet: str) -> None:
    try:
        report = _run(ctx, lambda s: s.liquidity.value_wallet(wallet))
    except HolderRewardsError as exc:
        _echo_json({"ok": False, "error": exc.to_dict()})
        raise SystemExit(1) from exc
    _echo_json(
        {
            "ok": True,
            "result": {
                **asdict(report),
                "total_usd": report.total_usd,
                "counted": report.counted,
            },
        }
    )


@cli.command(name="balances", help="Show the qualifying value breakdown for a wallet.")
@click.argument("wallet")
@click.pass_context
def balances_cmd(ctx: click.Context, wallet: str) -> None:
    value = _run(ctx, lambda s: s.compute_qualifying_value(wallet))
    tier = _service(ctx).engine.resolve_tier(value.total)
    _echo_json(
        {
            "ok": True,
            "result": {
                "wallet": wallet.lower(),
                "total": value.total,
                "breakdown": value.breakdown,
                "complete": value.complete,
                "failures": list(value.failures),
                "tier": tier.tier,
                "multiplier": tier.multiplier,
            },
        }
    )


@cli.command(name="tiers", help="Show the configured tier table.")
@click.pass_context
def tiers_cmd(ctx: click.Context) -> None:
    _echo_json({"ok": True, "result": _service(ctx).engine.describe()})


@cli.command(name="purge-nonces", help="Delete nonces past their retention window.")
@click.pass_context
def purge_nonces_cmd(ctx: click.Context) -> None:
    _echo_json({"ok": True, "result": {"removed": _service(ctx).purge_nonces()}})


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
