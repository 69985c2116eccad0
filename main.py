import argparse
import asyncio
import signal
import sys

from core.errors import CopyTradingError
from core.initialization import initialize_components, load_configuration
from models.events import SESSION_STOPPED
from modules.stats import summarize
from utils.config_validator import validate_config
from utils.crypto import TokenCipher
from utils.logger import setup_logger


async def run_bot(config: dict) -> None:
    """
    Entrypoint coroutine for the mirroring engine.

    Authorizes the master channel, restores and re-validates the stored linked
    accounts, then starts one copy session per configured trader (the master's
    own loginid when none is configured).  Runs until interrupted or until
    every session has ended; shutdown lets in-flight mirror requests finish.
    """
    engine = initialize_components(config, overrides={"logger": setup_logger("CopyBot", to_console=True)})
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # Windows
            pass

    def on_session_stopped(_event) -> None:
        if not engine.sessions.sessions():
            stop.set()

    engine.bus.subscribe(SESSION_STOPPED, on_session_stopped)

    try:
        await engine.connect_master(config["DERIV_API"]["master_token"])
        active = await engine.restore_accounts()
        engine.logger.info("🔗 %d linked account(s) ready", len(active))

        # defaults to the master's own loginid
        await engine.start(config.get("COPY_TRADER_IDS") or None)
        await stop.wait()
    finally:
        await engine.shutdown()
        report = summarize(engine.executor.recent_trades())
        if not report.empty:
            engine.logger.info("📈 Session summary:\n%s", report.to_string())


async def add_account(config: dict, token: str) -> None:
    engine = initialize_components(config)
    try:
        engine.registry.load()
        account = await engine.registry.add_account(token)
        print(f"✅ Added {account.account_id} ({account.account_type}, {account.currency} {account.balance:.2f})")
    finally:
        await engine.registry.close()


async def remove_account(config: dict, account_id: str) -> None:
    engine = initialize_components(config)
    engine.registry.load()
    removed = await engine.registry.remove_account(account_id)
    await engine.registry.close()
    print(f"🗑️ Removed {account_id}" if removed else f"{account_id} not found")


async def list_accounts(config: dict) -> None:
    engine = initialize_components(config)
    try:
        for acc in engine.registry.load():
            state = "active" if acc.is_active else "paused"
            print(f"{acc.account_id:<14} {acc.account_type:<5} {acc.currency:<5} {acc.balance:>12.2f}  {state}  {acc.added_at}")
    finally:
        await engine.registry.close()


async def list_traders(config: dict) -> None:
    engine = initialize_components(config, overrides={"store": None})
    try:
        await engine.connect_master(config["DERIV_API"]["master_token"])
        for t in await engine.copy_service.list_traders():
            print(f"{t.trader_id:<14} {t.name:<20} followers={t.followers_count:<5} "
                  f"profit={t.total_profit:.2f} win={t.win_rate:.2f}% risk={t.risk_level}")
    finally:
        await engine.master.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Copy-trading mirroring engine")
    parser.add_argument("--env", default="config.env", help="path to the .env config file")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="mirror master trades onto linked accounts")
    p_add = sub.add_parser("add-account", help="link an account by API token")
    p_add.add_argument("token")
    p_rm = sub.add_parser("remove-account", help="unlink an account")
    p_rm.add_argument("account_id")
    sub.add_parser("list-accounts", help="show stored linked accounts")
    sub.add_parser("traders", help="list traders offered by the copy service")
    sub.add_parser("gen-key", help="print a new COPY_MASTER_KEY")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    if args.command == "gen-key":
        print(TokenCipher.generate_key())
        return 0

    config = load_configuration(args.env)
    try:
        validate_config(config, require_master=args.command in ("run", "traders"))
        if args.command == "run":
            asyncio.run(run_bot(config))
        elif args.command == "add-account":
            asyncio.run(add_account(config, args.token))
        elif args.command == "remove-account":
            asyncio.run(remove_account(config, args.account_id))
        elif args.command == "list-accounts":
            asyncio.run(list_accounts(config))
        elif args.command == "traders":
            asyncio.run(list_traders(config))
    except (CopyTradingError, ValueError, TypeError) as e:
        print(f"❌ {e}")
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
