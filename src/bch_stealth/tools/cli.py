#!/usr/bin/env python3
"""bch-stealth CLI: stealth payments and shard pool operations.

    # New wallet (mnemonic, paycode, base key)
    python -m bch_stealth.tools.cli generate

    # Paycode of the configured wallet
    python -m bch_stealth.tools.cli paycode

    # Pool lifecycle
    python -m bch_stealth.tools.cli pool-init [shards] [--fresh]
    python -m bch_stealth.tools.cli pool-deposit <sats> [--to <paycode>] [--base]
    python -m bch_stealth.tools.cli pool-stage-from <txid:vout>
    python -m bch_stealth.tools.cli pool-import [txid:vout] [--shard N] [--fresh] [--allow-base]
    python -m bch_stealth.tools.cli pool-withdraw <shard> <sats> [--to <paycode> | --to-hash160 <hex>]
                                                  [--fee-mode from-shard|external]

    # Wallet
    python -m bch_stealth.tools.cli send <paycode> <sats>
    python -m bch_stealth.tools.cli scan [height_lo] [height_hi]
    python -m bch_stealth.tools.cli state

Global options: ``--config <path.yaml>`` and ``--debug``. Everything else
comes from ``BCHSTEALTH_*`` environment variables (see config/settings.py).
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from bch_stealth.config.settings import AppConfig
from bch_stealth.errors.stealth_errors import StealthError, ValidationError
from bch_stealth.logging_setup import configure_logging
from bch_stealth.utils.hexutil import parse_outpoint

# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def _pop_flag(args: list[str], name: str) -> bool:
    if name in args:
        args.remove(name)
        return True
    return False


def _pop_option(args: list[str], name: str) -> str | None:
    if name not in args:
        return None
    i = args.index(name)
    if i + 1 >= len(args):
        msg = f"{name} needs a value"
        raise ValidationError(msg)
    value = args[i + 1]
    del args[i : i + 2]
    return value


def _int_arg(value: str, label: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        msg = f"{label} must be an integer, got {value!r}"
        raise ValidationError(msg) from exc


def _outpoint_arg(value: str) -> tuple[str, int]:
    try:
        return parse_outpoint(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _usage(message: str) -> None:
    print(f"Usage: {message}")
    sys.exit(1)


def _emit(data: dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, default=str))


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _open_context(config: AppConfig) -> AsyncIterator[Any]:
    """Build one :class:`PoolOpContext` backed by Electrum, closing it after."""
    from bch_stealth.chain.electrum.client import ElectrumClient
    from bch_stealth.ops.context import PoolOpContext, Wallet
    from bch_stealth.state.store import FileStateStore

    wallet = Wallet.from_config(config.wallet)
    electrum = ElectrumClient(config.electrum, fee_rate_fallback=config.fee_rate_fallback)
    await electrum.connect()
    try:
        yield PoolOpContext(config=config, wallet=wallet, store=FileStateStore(config.state_file), chain=electrum)
    finally:
        await electrum.close()


def _run(config: AppConfig, op: Callable[[Any], Awaitable[dict[str, Any]]]) -> None:
    async def _main() -> None:
        async with _open_context(config) as ctx:
            _emit(await op(ctx))

    asyncio.run(_main())


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_generate(config: AppConfig) -> None:
    """Print a fresh mnemonic with its paycode and base key."""
    from mnemonic import Mnemonic

    from bch_stealth.bch.keys import privkey_to_wif
    from bch_stealth.config.settings import Network
    from bch_stealth.ops.context import BASE_KEY_PATH, SCAN_KEY_PATH, Wallet

    words = Mnemonic("english").generate(strength=128)
    wallet = Wallet.from_mnemonic(words)
    testnet = config.network != Network.MAINNET
    _emit(
        {
            "mnemonic": words,
            "paycode": wallet.paycode,
            "basePath": BASE_KEY_PATH,
            "baseHash160": wallet.base_hash160.hex(),
            "baseWif": privkey_to_wif(wallet.base_priv, testnet=testnet),
            "scanPath": SCAN_KEY_PATH,
            "scanPub": wallet.scan_pub.hex(),
        }
    )


def _cmd_paycode(config: AppConfig) -> None:
    from bch_stealth.ops.context import Wallet

    wallet = Wallet.from_config(config.wallet)
    _emit({"paycode": wallet.paycode, "scanPub": wallet.scan_pub.hex(), "spendPub": wallet.spend_pub.hex()})


def _cmd_pool_init(config: AppConfig, args: list[str]) -> None:
    from bch_stealth.ops.pool_init import run_init

    fresh = _pop_flag(args, "--fresh")
    shards = _int_arg(args[0], "shards") if args else None

    async def op(ctx: Any) -> dict[str, Any]:
        result = await run_init(ctx, shards, fresh=fresh)
        return {
            "txid": result.txid,
            "categoryHex": result.category_hex,
            "reused": result.reused,
            "shards": [s.to_json_dict() for s in result.shards],
        }

    _run(config, op)


def _cmd_pool_deposit(config: AppConfig, args: list[str]) -> None:
    from bch_stealth.ops.deposit import run_deposit
    from bch_stealth.state.models import DepositKind

    kind = DepositKind.BASE_P2PKH if _pop_flag(args, "--base") else DepositKind.RPA
    receiver = _pop_option(args, "--to")
    if not args:
        _usage("pool-deposit <sats> [--to <paycode>] [--base]")
    amount = _int_arg(args[0], "amount")

    async def op(ctx: Any) -> dict[str, Any]:
        result = await run_deposit(ctx, amount, receiver, deposit_kind=kind)
        return {
            "txid": result.txid,
            "vout": result.vout,
            "value": result.value,
            "fee": result.fee,
            "receiverHash160Hex": result.receiver_hash160_hex,
            "staged": result.staged,
            "grindFound": result.grind.found if result.grind else None,
        }

    _run(config, op)


def _cmd_pool_stage_from(config: AppConfig, args: list[str]) -> None:
    from bch_stealth.ops.deposit import stage_from_outpoint

    if not args:
        _usage("pool-stage-from <txid:vout>")
    txid, vout = _outpoint_arg(args[0])

    async def op(ctx: Any) -> dict[str, Any]:
        return (await stage_from_outpoint(ctx, txid, vout)).to_json_dict()

    _run(config, op)


def _cmd_pool_import(config: AppConfig, args: list[str]) -> None:
    from bch_stealth.ops.import_deposit import run_import

    fresh = _pop_flag(args, "--fresh")
    allow_base = _pop_flag(args, "--allow-base")
    shard = _pop_option(args, "--shard")
    txid, vout = _outpoint_arg(args[0]) if args else (None, None)

    async def op(ctx: Any) -> dict[str, Any]:
        result = await run_import(
            ctx,
            txid,
            vout,
            _int_arg(shard, "shard") if shard is not None else None,
            fresh=fresh,
            allow_base=allow_base,
        )
        return {
            "txid": result.txid,
            "shardIndex": result.shard_index,
            "deposit": f"{result.deposit_txid}:{result.deposit_vout}",
            "reused": result.reused,
            "shard": result.shard.to_json_dict() if result.shard else None,
        }

    _run(config, op)


def _cmd_pool_withdraw(config: AppConfig, args: list[str]) -> None:
    from bch_stealth.ops.withdraw import run_withdraw
    from bch_stealth.pool.shards import FeeMode

    paycode = _pop_option(args, "--to")
    hash160_hex = _pop_option(args, "--to-hash160")
    fee_mode = _pop_option(args, "--fee-mode") or FeeMode.FROM_SHARD
    if len(args) < 2:
        _usage("pool-withdraw <shard> <sats> [--to <paycode> | --to-hash160 <hex>] [--fee-mode <mode>]")
    shard = _int_arg(args[0], "shard")
    amount = _int_arg(args[1], "amount")
    try:
        mode = FeeMode(fee_mode)
    except ValueError as exc:
        msg = f"unknown fee mode {fee_mode!r}"
        raise ValidationError(msg) from exc

    async def op(ctx: Any) -> dict[str, Any]:
        result = await run_withdraw(
            ctx,
            shard,
            amount,
            receiver_paycode=paycode,
            receiver_hash160_hex=hash160_hex,
            fee_mode=mode,
        )
        return {
            "txid": result.txid,
            "payment": result.payment,
            "receiverHash160Hex": result.receiver_hash160_hex,
            "feeMode": str(result.fee_mode),
            "shard": result.shard.to_json_dict(),
        }

    _run(config, op)


def _cmd_send(config: AppConfig, args: list[str]) -> None:
    from bch_stealth.ops.send import run_send

    if len(args) < 2:
        _usage("send <paycode> <sats>")
    paycode = args[0]
    amount = _int_arg(args[1], "amount")

    async def op(ctx: Any) -> dict[str, Any]:
        result = await run_send(ctx, paycode, amount)
        return {
            "txid": result.txid,
            "paymentHash160Hex": result.payment_hash160_hex,
            "value": result.value,
            "fee": result.fee,
            "grindFound": result.grind.found if result.grind else None,
        }

    _run(config, op)


def _cmd_scan(config: AppConfig, args: list[str]) -> None:
    from bch_stealth.ops.scan import run_scan

    lo = _int_arg(args[0], "height_lo") if args else None
    hi = _int_arg(args[1], "height_hi") if len(args) > 1 else None

    async def op(ctx: Any) -> dict[str, Any]:
        added = await run_scan(ctx, lo, hi)
        return {"found": [rec.to_json_dict() for rec in added]}

    _run(config, op)


def _cmd_state(config: AppConfig) -> None:
    from bch_stealth.state.store import FileStateStore

    state = FileStateStore(config.state_file).load()
    if state is None:
        print(f"No state file at {config.state_file}")
        return
    _emit(state.to_json_dict())


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """CLI entry point."""
    args = sys.argv[1:]
    if not args:
        print(__doc__)
        sys.exit(1)

    try:
        config_path = _pop_option(args, "--config")
        debug = _pop_flag(args, "--debug")
        config = AppConfig.from_yaml(config_path) if config_path else AppConfig()
        configure_logging("DEBUG" if debug or config.debug else "INFO")
        if not args:
            print(__doc__)
            sys.exit(1)

        cmd, rest = args[0].lower(), args[1:]
        if cmd == "generate":
            _cmd_generate(config)
        elif cmd == "paycode":
            _cmd_paycode(config)
        elif cmd == "pool-init":
            _cmd_pool_init(config, rest)
        elif cmd == "pool-deposit":
            _cmd_pool_deposit(config, rest)
        elif cmd == "pool-stage-from":
            _cmd_pool_stage_from(config, rest)
        elif cmd == "pool-import":
            _cmd_pool_import(config, rest)
        elif cmd == "pool-withdraw":
            _cmd_pool_withdraw(config, rest)
        elif cmd == "send":
            _cmd_send(config, rest)
        elif cmd == "scan":
            _cmd_scan(config, rest)
        elif cmd == "state":
            _cmd_state(config)
        else:
            print(f"Unknown command: {cmd}")
            print(__doc__)
            sys.exit(1)
    except StealthError as exc:
        print(f"error [{exc.code}]: {exc.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
