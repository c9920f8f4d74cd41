#!/usr/bin/env python3
"""Command line interface for the Polygon agent. Every command prints JSON on stdout."""

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from polygon_agent.config import settings
from polygon_agent.core.execution import CustodialWalletClient, TransactionExecutor
from polygon_agent.core.polymarket import TradeOrchestrator, TradeOutcome, VenueAuthSigner
from polygon_agent.core.recovery import ErrorCategory, MissingSession, RecoverableError, UnrecoverableError, classify_error
from polygon_agent.core.vault import VaultStore
from polygon_agent.core.wallet.broker import CALLBACK_MODE_MANUAL, RequestBroker
from polygon_agent.core.wallet.codec import SealedSessionCodec
from polygon_agent.core.wallet.identity import SigningIdentity
from polygon_agent.core.wallet.models import ApprovalRequest, SessionConstraints
from polygon_agent.logging_config import setup_logging
from polygon_agent.providers.polymarket import PolymarketClient
from polygon_agent.services.address import normalize_chain

logger = logging.getLogger("polygon_agent.cli")


def emit(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))


def open_store() -> VaultStore:
    return VaultStore.open(settings.storage_dir)


def read_ciphertext(value: str) -> str:
    """`@path` reads the blob from a file."""
    if value.startswith("@"):
        path = Path(value[1:]).expanduser()
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise ValueError(f"Failed to read ciphertext from file '{path}': {e}") from e
    return value.strip()


def parse_decimal(value: str, name: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise ValueError(f"Invalid {name}: {value}") from e


def load_identity(store: VaultStore) -> SigningIdentity:
    identity = SigningIdentity.load(store)
    if identity is None:
        raise MissingSession(message="No signing identity stored; run `setup` first")
    return identity


# =============================================================================
# setup
# =============================================================================

async def cli_setup(args: argparse.Namespace) -> Dict[str, Any]:
    store = open_store()
    existing = SigningIdentity.load(store)
    if existing is not None and not args.force:
        return {
            "ok": True,
            "address": existing.address,
            "created": False,
            "message": "Signing identity already exists. Use --force to replace it.",
        }

    identity = SigningIdentity.from_private_key(args.private_key) if args.private_key else SigningIdentity.generate()
    identity.save(store)
    return {
        "ok": True,
        "address": identity.address,
        "created": True,
        "message": "Fund this address with a little POL for gas before trading.",
    }


# =============================================================================
# wallet
# =============================================================================

def constraints_from_args(args: argparse.Namespace) -> SessionConstraints:
    return SessionConstraints(
        native_limit=args.native_limit,
        usdc_limit=args.usdc_limit,
        usdt_limit=args.usdt_limit,
        token_limits=args.token_limit or [],
        contracts=args.contract or [],
        usdc_to=args.usdc_to,
        usdc_amount=args.usdc_amount,
    )


async def cli_wallet_create(args: argparse.Namespace) -> Dict[str, Any]:
    store = open_store()
    broker = RequestBroker(store)
    constraints = constraints_from_args(args)

    if args.no_wait:
        approval = broker.create_request(
            args.name,
            chain=args.chain,
            constraints=constraints,
            access_token=args.access_key,
        )
        return {
            "ok": True,
            "walletName": args.name,
            "chain": normalize_chain(args.chain),
            **approval.to_dict(),
            "message": "Open the url to approve, then run `wallet import --ciphertext <blob>`.",
        }

    def on_link(approval: ApprovalRequest, mode: str) -> None:
        emit({
            "ok": True,
            "walletName": args.name,
            "chain": normalize_chain(args.chain),
            "callbackMode": mode,
            **approval.to_dict(),
            "message": (
                "Open the COMPLETE url to approve the session, then paste the encrypted blob here."
                if mode == CALLBACK_MODE_MANUAL
                else f"Open the COMPLETE url to approve the session. Waiting up to {args.timeout}s..."
            ),
        })
        if mode == CALLBACK_MODE_MANUAL:
            sys.stderr.write("> ")
            sys.stderr.flush()

    outcome = await broker.create_and_wait(
        args.name,
        chain=args.chain,
        constraints=constraints,
        access_token=args.access_key,
        timeout_seconds=args.timeout,
        on_link=on_link,
    )
    result = {"ok": True, **outcome.session.summary(), "message": "Session started. Wallet ready for operations."}
    if outcome.blob_path:
        result["blobPath"] = str(outcome.blob_path)
    return result


async def cli_wallet_import(args: argparse.Namespace) -> Dict[str, Any]:
    store = open_store()
    codec = SealedSessionCodec(store)
    ciphertext = read_ciphertext(args.ciphertext)
    if not ciphertext:
        raise ValueError("Missing --ciphertext")

    if args.rid:
        session = codec.bind(args.rid, ciphertext, wallet_name=args.name)
    else:
        session = codec.bind_latest(args.name, ciphertext)
    return {"ok": True, **session.summary(), "message": "Session imported."}


async def cli_wallet_list(args: argparse.Namespace) -> Dict[str, Any]:
    store = open_store()
    wallets = []
    for name in store.list_sessions():
        try:
            wallets.append(store.load_session(name).summary())
        except UnrecoverableError as e:
            wallets.append({"walletName": name, "error": e.message})
    return {"ok": True, "wallets": wallets}


async def cli_wallet_address(args: argparse.Namespace) -> Dict[str, Any]:
    session = open_store().load_session(args.name)
    return {"ok": True, **session.summary()}


async def cli_wallet_remove(args: argparse.Namespace) -> Dict[str, Any]:
    removed = open_store().delete_session(args.name)
    if not removed:
        raise MissingSession(args.name)
    return {"ok": True, "walletName": args.name, "removed": True}


# =============================================================================
# polymarket
# =============================================================================

async def cli_markets(args: argparse.Namespace, venue: PolymarketClient) -> Dict[str, Any]:
    markets = await venue.get_markets(limit=args.limit, offset=args.offset, search=args.search)
    return {"ok": True, "count": len(markets), "markets": [m.summary() for m in markets]}


async def cli_market(args: argparse.Namespace, venue: PolymarketClient) -> Dict[str, Any]:
    market = await venue.get_market(args.condition_id)
    return {"ok": True, **market.summary()}


async def cli_buy(args: argparse.Namespace, venue: PolymarketClient) -> Dict[str, Any]:
    store = open_store()
    custodial = CustodialWalletClient()
    try:
        orchestrator = TradeOrchestrator(
            venue=venue,
            store=store,
            custodial=custodial,
            executor_factory=lambda identity: TransactionExecutor(identity),
        )
        result = await orchestrator.execute(
            wallet_name=args.wallet,
            market_id=args.condition_id,
            outcome=TradeOutcome(args.outcome.upper()),
            usd_amount=parse_decimal(args.amount, "amount"),
            price=parse_decimal(args.price, "price") if args.price is not None else None,
            dry_run=not args.broadcast,
        )
    finally:
        await custodial.close()
    return result.to_dict()


async def cli_positions(args: argparse.Namespace, venue: PolymarketClient) -> Dict[str, Any]:
    if args.address:
        address = args.address
    elif args.wallet:
        address = open_store().load_session(args.wallet).wallet_address
    else:
        address = load_identity(open_store()).address
    positions = await venue.get_positions(address, limit=args.limit)
    return {
        "ok": True,
        "address": address,
        "count": len(positions),
        "positions": [p.model_dump(by_alias=True, mode="json") for p in positions],
    }


async def cli_orders(args: argparse.Namespace, venue: PolymarketClient) -> Dict[str, Any]:
    identity = load_identity(open_store())
    signer = VenueAuthSigner(venue)
    credential = await signer.derive_credential(identity)
    orders = await venue.get_open_orders(signer.sign_request(credential, "GET", "/data/orders"))
    return {
        "ok": True,
        "address": identity.address,
        "count": len(orders),
        "orders": [o.model_dump(mode="json") for o in orders],
    }


async def cli_cancel(args: argparse.Namespace, venue: PolymarketClient) -> Dict[str, Any]:
    identity = load_identity(open_store())
    signer = VenueAuthSigner(venue)
    credential = await signer.derive_credential(identity)
    path = f"/order/{args.order_id}"
    response = await venue.cancel_order(args.order_id, signer.sign_request(credential, "DELETE", path))
    return {"ok": True, "orderId": args.order_id, "result": response}


POLYMARKET_COMMANDS = {
    "markets": cli_markets,
    "market": cli_market,
    "buy": cli_buy,
    "positions": cli_positions,
    "orders": cli_orders,
    "cancel": cli_cancel,
}

WALLET_COMMANDS = {
    "create": cli_wallet_create,
    "import": cli_wallet_import,
    "list": cli_wallet_list,
    "address": cli_wallet_address,
    "remove": cli_wallet_remove,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="polygon-agent", description="Polygon agent CLI")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command")

    setup_parser = subparsers.add_parser("setup", help="Create or import the signing identity")
    setup_parser.add_argument("--private-key", help="Import this key instead of generating one")
    setup_parser.add_argument("--force", action="store_true", help="Replace an existing identity")

    wallet_parser = subparsers.add_parser("wallet", help="Manage custodial wallet sessions")
    wallet_sub = wallet_parser.add_subparsers(dest="wallet_command")

    create = wallet_sub.add_parser("create", help="Request a new session from the approver")
    create.add_argument("--name", default="main", help="Wallet name (default: main)")
    create.add_argument("--chain", default=settings.default_chain, help="Chain (default: polygon)")
    create.add_argument("--access-key", help="Project access key (default: PROJECT_ACCESS_KEY)")
    create.add_argument("--no-wait", action="store_true", help="Print the link and exit (manual import)")
    create.add_argument("--timeout", type=int, default=settings.callback_timeout_seconds, help="Seconds to wait for approval")
    create.add_argument("--native-limit", "--pol-limit", dest="native_limit", help="Native token spending limit")
    create.add_argument("--usdc-limit", help="USDC spending limit (default: 50)")
    create.add_argument("--usdt-limit", help="USDT spending limit")
    create.add_argument("--token-limit", action="append", help="SYMBOL:amount, repeatable")
    create.add_argument("--contract", action="append", help="Whitelisted contract, repeatable")
    create.add_argument("--usdc-to", help="Recipient of a one-off USDC transfer")
    create.add_argument("--usdc-amount", help="Amount of the one-off USDC transfer")

    imp = wallet_sub.add_parser("import", help="Import an approval blob")
    imp.add_argument("--ciphertext", required=True, help="Blob, or @file to read it from a file")
    imp.add_argument("--name", default="main", help="Wallet name (default: main)")
    imp.add_argument("--rid", help="Request id (default: latest pending request for the wallet)")

    wallet_sub.add_parser("list", help="List stored sessions")
    for name, help_text in (("address", "Show a wallet's address"), ("remove", "Delete a stored session")):
        sub = wallet_sub.add_parser(name, help=help_text)
        sub.add_argument("--name", default="main", help="Wallet name (default: main)")

    pm_parser = subparsers.add_parser("polymarket", help="Polymarket prediction markets")
    pm_sub = pm_parser.add_subparsers(dest="polymarket_command")

    markets = pm_sub.add_parser("markets", help="List active markets by 24h volume")
    markets.add_argument("--search", help="Filter by question text")
    markets.add_argument("--limit", type=int, default=20)
    markets.add_argument("--offset", type=int, default=0)

    market = pm_sub.add_parser("market", help="Show one market")
    market.add_argument("condition_id")

    buy = pm_sub.add_parser("buy", help="Buy an outcome by splitting and selling the other side")
    buy.add_argument("condition_id")
    buy.add_argument("outcome", choices=["YES", "NO", "yes", "no"])
    buy.add_argument("amount", help="USDC.e amount")
    buy.add_argument("--price", help="Limit price for the unwanted side (resting order)")
    buy.add_argument("--wallet", default="main", help="Wallet that funds the trade")
    buy.add_argument("--broadcast", action="store_true", help="Execute (default is a dry run)")

    positions = pm_sub.add_parser("positions", help="Positions held by the signing identity")
    holder = positions.add_mutually_exclusive_group()
    holder.add_argument("--address", help="Look up another address")
    holder.add_argument("--wallet", help="Look up a stored session wallet instead")
    positions.add_argument("--limit", type=int, default=20)

    pm_sub.add_parser("orders", help="Open orders of the signing identity")

    cancel = pm_sub.add_parser("cancel", help="Cancel an open order")
    cancel.add_argument("order_id")

    return parser


async def dispatch(args: argparse.Namespace, parser: argparse.ArgumentParser) -> Optional[Dict[str, Any]]:
    if args.command == "setup":
        return await cli_setup(args)

    if args.command == "wallet" and args.wallet_command in WALLET_COMMANDS:
        return await WALLET_COMMANDS[args.wallet_command](args)

    if args.command == "polymarket" and args.polymarket_command in POLYMARKET_COMMANDS:
        venue = PolymarketClient()
        try:
            return await POLYMARKET_COMMANDS[args.polymarket_command](args, venue)
        finally:
            await venue.close()

    parser.print_help(sys.stderr)
    return None


async def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        result = await dispatch(args, parser)
    except (RecoverableError, UnrecoverableError) as e:
        emit({"ok": False, "error": e.message, "category": e.category.value})
        return 1
    except ValueError as e:
        emit({"ok": False, "error": str(e), "category": ErrorCategory.VALIDATION.value})
        return 1
    except httpx.HTTPError as e:
        logger.debug("HTTP failure", exc_info=True)
        emit({"ok": False, "error": str(e), "category": classify_error(e).category.value})
        return 1

    if result is None:
        return 2
    emit(result)
    return 0 if result.get("ok", True) else 1


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
