import argparse
import asyncio
import json
import logging
import sys
import time

from services.blocks import (
    BlockFinder,
    BlockFinderError,
    BlockIndexStore,
    JsonRpcChainClient,
    call_rpc,
)
from services.blocks.dates import parse_date

from .common.config import settings
from .common.logging_setup import setup_logging, log_summary


def build_finder(store_dir: str) -> BlockFinder:
    client = JsonRpcChainClient(settings.require_rpc_url(), timeout=settings.http_timeout)
    store = BlockIndexStore(store_dir)
    return BlockFinder(
        client,
        store,
        retry_options=settings.retry_options(),
        default_chain_id=settings.default_chain_id,
    )


async def _resolve(args: argparse.Namespace) -> dict:
    finder = build_finder(args.store_dir)
    index = await finder.find_blocks_for_date_range(
        parse_date(args.start_date), parse_date(args.end_date)
    )
    return index.to_dict()


def cmd_resolve(args: argparse.Namespace) -> int:
    setup_logging()
    logging.info("resolving end-of-day blocks")
    started = time.monotonic()

    try:
        result = asyncio.run(_resolve(args))
    except BlockFinderError as e:
        logging.error(str(e), extra={"operation": e.operation, "status": "failed", "error": e.kind.value})
        return 1
    except ValueError as e:
        logging.error(str(e), extra={"status": "failed"})
        return 1

    log_summary("block_index.cli", len(result["blocks"]), time.monotonic() - started)
    print(json.dumps(result, indent=2))
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    setup_logging()
    index = BlockIndexStore(args.store_dir).read()
    if index is None:
        logging.info("no block index stored yet")
        return 0
    print(json.dumps(index.to_dict(), indent=2))
    return 0


async def _health() -> dict:
    finder = build_finder(settings.store_dir)
    safe_head = await finder.get_safe_current_block()
    chain_id = await call_rpc(finder.client.get_network, finder.retry_options.named("getNetwork"))
    return {"chain_id": chain_id, "safe_head": safe_head}


def cmd_health(_: argparse.Namespace) -> int:
    setup_logging()
    logging.info("testing RPC connectivity")
    try:
        status = asyncio.run(_health())
    except BlockFinderError as e:
        logging.error(str(e), extra={"operation": e.operation, "status": "failed", "error": e.kind.value})
        return 1
    except ValueError as e:
        logging.error(str(e), extra={"status": "failed"})
        return 1
    logging.info({"rpc": "ok", **status})
    print(json.dumps(status))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser("daily-block-index")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_resolve = sub.add_parser("resolve")
    p_resolve.add_argument("--start-date", required=True, help="YYYY-MM-DD (UTC)")
    p_resolve.add_argument("--end-date", required=True, help="YYYY-MM-DD (UTC)")
    p_resolve.add_argument("--store-dir", default=settings.store_dir)
    p_resolve.set_defaults(func=cmd_resolve)

    p_show = sub.add_parser("show")
    p_show.add_argument("--store-dir", default=settings.store_dir)
    p_show.set_defaults(func=cmd_show)

    sub.add_parser("health").set_defaults(func=cmd_health)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
