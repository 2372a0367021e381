"""Stake rebalancer entrypoint.

Reads cluster state over JSON-RPC, rebalances delegated stake according to
the settings document, and signs transactions with the wallet hotkey.
Runs once by default; ``--loop`` reruns once per epoch.

Exit codes: 0 clean run, 1 config or snapshot error, 2 run finished with
failed or unresolved operations.
"""

import argparse
import asyncio
import os
import signal
import sys
from typing import Any, Mapping

import bittensor as bt
from dotenv import load_dotenv

from stakematic.config.settings import (
    RebalanceSettings,
    parse_settings,
    read_settings_document,
    sanitize_dict,
)
from stakematic.rebalancer.errors import ConfigError, SnapshotError

_TRUE = {"1", "true", "yes", "on"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Stakematic stake rebalancer")
    bt.Wallet.add_args(parser)
    bt.logging.add_args(parser)
    parser.add_argument("--config", type=str, default="stakematic.yaml")
    parser.add_argument("--rpc-url", dest="rpc_url", type=str, default=None)
    parser.add_argument("--budget", type=int, default=None)
    parser.add_argument("--dry-run", dest="dry_run", action="store_true")
    parser.add_argument("--loop", action="store_true")
    parser.add_argument("--interval", type=float, default=300.0)
    parser.add_argument("--report-dir", dest="report_dir", type=str, default=None)
    parser.add_argument("--webhook-url", dest="webhook_url", type=str, default=None)
    return parser


def collect_options(args: argparse.Namespace, environ: Mapping[str, str] = os.environ) -> dict[str, Any]:
    """CLI values overridden by STAKEMATIC_* env vars (env takes precedence over CLI).

    Raises:
        ConfigError: An env var holds an unparseable number.
    """

    def number(key: str, cast, default):
        raw = environ.get(key)
        if raw is None or raw == "":
            return default
        try:
            return cast(raw)
        except ValueError as e:
            raise ConfigError(f"{key} must be a number, got {raw!r}") from e

    def flag(key: str, default: bool) -> bool:
        raw = environ.get(key)
        return default if raw is None else raw.strip().lower() in _TRUE

    return {
        "config": environ.get("STAKEMATIC_CONFIG", args.config),
        "rpc_url": environ.get("STAKEMATIC_LEDGER__RPC_URL", args.rpc_url or ""),
        "budget": number("STAKEMATIC_REBALANCE__BUDGET", int, args.budget),
        "dry_run": flag("STAKEMATIC_REBALANCE__DRY_RUN", args.dry_run),
        "loop": flag("STAKEMATIC_REBALANCE__LOOP", args.loop),
        "interval": number("STAKEMATIC_REBALANCE__INTERVAL_SECONDS", float, args.interval),
        "report_dir": environ.get("STAKEMATIC_REBALANCE__REPORT_DIR", args.report_dir),
        "webhook_url": environ.get("STAKEMATIC_REBALANCE__WEBHOOK_URL", args.webhook_url),
        "wallet_name": environ.get("STAKEMATIC_WALLET__NAME", getattr(args, "wallet.name", None) or "default"),
        "wallet_hotkey": environ.get("STAKEMATIC_WALLET__HOTKEY", getattr(args, "wallet.hotkey", None) or "default"),
    }


def merge_settings(document: Mapping[str, Any], options: Mapping[str, Any]) -> RebalanceSettings:
    """Overlay CLI/env options on the YAML document and validate the result."""
    data = dict(document)
    for key in ("budget", "report_dir", "webhook_url"):
        if options.get(key) is not None:
            data[key] = options[key]
    return parse_settings(data)


def main(argv: list[str] | None = None) -> None:
    # Load .env if not in test mode
    if os.environ.get("STAKEMATIC_TEST_MODE") != "true":
        load_dotenv()

    bt.logging.info({"rebalance": "starting"})

    args = build_parser().parse_args(argv)

    try:
        options = collect_options(args)
        settings = merge_settings(read_settings_document(options["config"]), options)
    except ConfigError as e:
        bt.logging.error({"rebalance": "config_error", "error": str(e)})
        sys.exit(1)

    if not options["rpc_url"]:
        bt.logging.error("STAKEMATIC_LEDGER__RPC_URL (or --rpc-url) is required")
        sys.exit(1)

    wallet = bt.Wallet(name=options["wallet_name"], hotkey=options["wallet_hotkey"])

    bt.logging.info({
        "rebalance_config": {
            **sanitize_dict(settings.model_dump(mode="json", exclude={"account_pool"})),
            "account_pool": len(settings.account_pool),
            "rpc_url": options["rpc_url"],
            "dry_run": options["dry_run"],
            "loop": options["loop"],
            "hotkey": wallet.hotkey.ss58_address,
        }
    })

    from stakematic.ledger.rpc_client import JsonRpcLedgerClient
    from stakematic.rebalancer.runtime import RebalanceRuntime

    client = JsonRpcLedgerClient(options["rpc_url"], staker=wallet.hotkey.ss58_address)
    runtime = RebalanceRuntime(client, wallet, settings, interval=options["interval"])

    # Graceful shutdown
    loop = asyncio.new_event_loop()

    def _signal_handler(sig, frame):
        bt.logging.info({"rebalance": "shutdown_signal_received"})
        runtime.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    exit_code = 0
    try:
        if options["loop"]:
            loop.run_until_complete(runtime.run(dry_run=options["dry_run"]))
        else:
            report = loop.run_until_complete(runtime.run_once(dry_run=options["dry_run"]))
            print(report.render_text())
            exit_code = 0 if report.ok else 2
    except SnapshotError as e:
        bt.logging.error({"rebalance": "snapshot_error", "error": str(e)})
        exit_code = 1
    except KeyboardInterrupt:
        bt.logging.info({"rebalance": "keyboard_interrupt"})
    finally:
        loop.run_until_complete(client.close())
        loop.close()
        bt.logging.info({"rebalance": "stopped"})

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
