"""Main indexer service with CLI."""

import argparse
import json
import signal
import sys
from typing import Optional

from escrow_indexer.config import Config
from escrow_indexer.db.healthcheck import check_tables_exist
from escrow_indexer.db.session import create_tables, get_session, init_db
from escrow_indexer.eth.client import EthereumClient
from escrow_indexer.log import get_logger, setup_logging
from escrow_indexer.pipeline.block_processor import BlockRangeProcessor
from escrow_indexer.pipeline.poll_loop import Indexer
from escrow_indexer.services.aggregator import AggregationEngine
from escrow_indexer.services.checkpoint import get_checkpoint
from escrow_indexer.services.event_store import count_events

logger = get_logger(__name__)

# Indexer currently driven by the CLI, stopped by the signal handler
_indexer: Optional[Indexer] = None


def signal_handler(signum, frame):
    """Handle shutdown signals."""
    logger.info("Shutdown signal received, stopping ..")
    if _indexer is not None:
        _indexer.stop()


def build_indexer(config: Config) -> Indexer:
    """Wire the chain client, aggregation engine and processor together.

    Args:
        config: Configuration object

    Returns:
        Indexer ready to run
    """
    global _indexer

    client = EthereumClient(config)
    engine = AggregationEngine(client)
    processor = BlockRangeProcessor(config, client, engine)
    _indexer = Indexer(config, client, processor)
    return _indexer


def run_indexer(config: Config) -> None:
    """Backfill from the checkpoint, then poll until stopped.

    Args:
        config: Configuration object
    """
    logger.info("Starting indexer in polling mode")
    build_indexer(config).run()


def backfill(config: Config, from_block: int, to_block: int) -> None:
    """Re-process an explicit block range.

    Args:
        config: Configuration object
        from_block: Starting block number
        to_block: Ending block number
    """
    if from_block > to_block:
        raise ValueError(f"--from-block ({from_block}) is after --to-block ({to_block})")

    logger.info(f"Backfilling blocks {from_block} to {to_block}")
    inserted = build_indexer(config).reindex_range(from_block, to_block)
    logger.info(f"Backfill complete, {inserted} new events stored")


def show_status(config: Config) -> None:
    """Show indexer status.

    Args:
        config: Configuration object
    """
    with get_session() as session:
        checkpoint = get_checkpoint(session)
        total_events = count_events(session)

    latest_block = EthereumClient(config).get_current_height()

    print(f"RPC URL: {config.rpc_url}")
    print(f"Factory Address: {config.factory_address}")
    print(f"Last Indexed Block: {checkpoint if checkpoint is not None else 'none'}")
    print(f"Latest Block (with confirmations): {latest_block}")
    if checkpoint is not None:
        print(f"Blocks Behind: {max(0, latest_block - checkpoint)}")
    print(f"Total Events: {total_events}")


def recompute(config: Config, campaign: Optional[str], wallet: Optional[str]) -> None:
    """Rebuild stats for one campaign and/or one wallet and print them.

    Args:
        config: Configuration object
        campaign: Campaign address to recompute
        wallet: Wallet address to recompute in both roles
    """
    if not campaign and not wallet:
        raise ValueError("recompute needs --campaign and/or --wallet")

    engine = AggregationEngine(EthereumClient(config))
    if campaign:
        stats = engine.recompute_campaign_stats(campaign)
        print(json.dumps(stats, indent=2))
        engine.recompute_creator_stats(stats["creator"])
    if wallet:
        creator = engine.recompute_creator_stats(wallet)
        investor = engine.recompute_investor_stats(wallet)
        print(json.dumps({"wallet": wallet.lower(), **creator, **investor}, indent=2))


def main(argv: Optional[list] = None) -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Event indexer for escrow fundraising campaigns")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("run", help="Backfill, then poll for new blocks")

    backfill_parser = subparsers.add_parser("backfill", help="Re-process an explicit block range")
    backfill_parser.add_argument("--from-block", type=int, required=True, help="Starting block number")
    backfill_parser.add_argument("--to-block", type=int, required=True, help="Ending block number")

    subparsers.add_parser("status", help="Show indexer status")

    recompute_parser = subparsers.add_parser("recompute", help="Rebuild stats from stored events")
    recompute_parser.add_argument("--campaign", help="Campaign address")
    recompute_parser.add_argument("--wallet", help="Wallet address")

    subparsers.add_parser("init-db", help="Create database tables")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Load config
    try:
        config = Config.from_env()
        config.validate()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    init_db(config)

    if args.command == "init-db":
        create_tables()
        logger.info("Database tables created")
        return

    try:
        check_tables_exist()
    except RuntimeError as e:
        logger.error(str(e))
        sys.exit(1)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if args.command == "run":
            run_indexer(config)
        elif args.command == "backfill":
            backfill(config, args.from_block, args.to_block)
        elif args.command == "status":
            show_status(config)
        elif args.command == "recompute":
            recompute(config, args.campaign, args.wallet)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
