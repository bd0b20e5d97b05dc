#!/usr/bin/env python3
"""Fee Oracle.

Aggregates trading fee observations from multiple CEX and DEX sources into a
single confidence-scored fee per symbol, every update interval.

Configure with env vars or CLI flags (CLI flags take precedence).
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from .src.AggregationEngine import AggregationEngine
from .src.config import AggregationConfig
from .src.EngineContext import EngineContext
from .src.errors import ObservationError
from .src.FeeSymbol import FeeSymbol
from .src.FeedPublisher import DEFAULT_NAMESPACE, FeedPublisher
from .src.Observation import Observation
from .src.sources import (
    BaseObservationSource,
    InMemoryObservationSource,
    get_available_sources,
    get_source,
)
from .src.SourceWeights import SourceWeightModel, parse_weights

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# CLI flag -> config field, for flags overriding AggregationConfig.from_env()
CONFIG_FLAGS: dict[str, str] = {
    "update_interval": "update_interval",
    "outlier_threshold": "outlier_threshold",
    "max_data_age": "max_data_age",
    "staleness_threshold": "staleness_threshold",
    "min_sources": "minimum_sources",
    "confidence_threshold": "confidence_threshold",
    "expected_sources": "expected_source_count",
    "consensus_threshold": "consensus_threshold",
    "history_limit": "history_limit",
    "min_history": "min_history",
    "max_concurrency": "max_concurrency",
    "symbol_timeout": "symbol_timeout",
    "fee_field": "fee_field",
}


def parse_symbols(symbols_str: str | None) -> list[str]:
    """Parse a comma-separated symbol list into normalized symbols.

    :param symbols_str: Symbols like "btc/usdt,ETH/USDT", or None.
    :returns: Normalized symbols, duplicates removed, in the given order.
    :raises ValueError: If an entry is not in BASE/QUOTE format.
    """
    symbols = [
        str(FeeSymbol.from_string(s.strip()))
        for s in (symbols_str or "").split(",")
        if s.strip()
    ]
    return list(dict.fromkeys(symbols))


def load_observations(path: str) -> list[Observation]:
    """Load observations from a JSON file holding a list of payloads.

    :param path: Path of the JSON file.
    :returns: Parsed observations.
    :raises ObservationError: If an entry is invalid.
    """
    with open(path, encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, list):
        raise ObservationError(f"{path}: expected a JSON list of observations")
    return [Observation.from_dict(entry) for entry in payload]


def build_source(args: argparse.Namespace, symbols: list[str]) -> BaseObservationSource:
    """Create the observation source selected on the command line."""
    if args.observation_source == "http":
        return get_source(
            "http",
            base_url=args.observation_url,
            api_key=args.api_key,
            symbols=symbols or None,
        )

    source = InMemoryObservationSource(symbols=symbols or None)
    if args.observations_file:
        source.extend(load_observations(args.observations_file))
    return source


def build_config(args: argparse.Namespace) -> AggregationConfig:
    """Environment config with CLI overrides applied."""
    config = AggregationConfig.from_env()
    overrides = {
        field: getattr(args, flag)
        for flag, field in CONFIG_FLAGS.items()
        if getattr(args, flag) is not None
    }
    if args.no_compression:
        overrides["compression_enabled"] = False
    return config.with_updates(**overrides) if overrides else config


def build_parser() -> argparse.ArgumentParser:
    """CLI parser, with defaults read from the environment."""
    available_sources = get_available_sources()

    parser = argparse.ArgumentParser(
        description="Fee Oracle: Multi-source trading fee aggregation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available observation sources:
  {', '.join(available_sources)}

Examples:
  # Aggregate fees reported by an ingestion service
  python -m feeoracle.main --observation-source http \\
      --observation-url http://ingest:8080 --symbols BTC/USDT,ETH/USDT

  # Replay a file of observations once a minute
  python -m feeoracle.main --observations-file fees.json --update-interval 60

  # Override source weights
  python -m feeoracle.main --weights binance=1.0,curve=0.6

Environment variables (CLI args take precedence):
  SYMBOLS, OBSERVATION_SOURCE, OBSERVATION_URL, OBSERVATION_API_KEY,
  OBSERVATIONS_FILE, SOURCE_WEIGHTS, FEED_NAMESPACE, UPDATE_INTERVAL,
  OUTLIER_THRESHOLD, MAX_DATA_AGE, STALENESS_THRESHOLD, MIN_SOURCES,
  CONFIDENCE_THRESHOLD, EXPECTED_SOURCES, CONSENSUS_THRESHOLD,
  COMPRESSION_ENABLED, HISTORY_LIMIT, MIN_HISTORY, MAX_CONCURRENCY,
  SYMBOL_TIMEOUT, FEE_FIELD
""",
    )

    parser.add_argument(
        "--symbols",
        type=str,
        help="Comma-separated symbols (e.g., BTC/USDT,ETH/USDT). "
        "Default: every symbol the source reports",
        default=os.environ.get("SYMBOLS"),
    )

    parser.add_argument(
        "--observation-source",
        dest="observation_source",
        type=str,
        choices=available_sources,
        help="Where observations come from (default: memory)",
        default=os.environ.get("OBSERVATION_SOURCE") or "memory",
    )

    parser.add_argument(
        "--observation-url",
        dest="observation_url",
        type=str,
        help="Ingestion service base URL (http source)",
        default=os.environ.get("OBSERVATION_URL"),
    )

    parser.add_argument(
        "--api-key",
        dest="api_key",
        type=str,
        help="Bearer token for the ingestion service (http source)",
        default=os.environ.get("OBSERVATION_API_KEY"),
    )

    parser.add_argument(
        "--observations-file",
        dest="observations_file",
        type=str,
        help="JSON file of observations to load (memory source)",
        default=os.environ.get("OBSERVATIONS_FILE"),
    )

    parser.add_argument(
        "--weights",
        type=str,
        help="Comma-separated source weight overrides (e.g., binance=1.0,curve=0.6)",
        default=os.environ.get("SOURCE_WEIGHTS"),
    )

    parser.add_argument(
        "--feed-namespace",
        dest="feed_namespace",
        type=str,
        help=f"Namespace of published feed hashes (default: {DEFAULT_NAMESPACE})",
        default=os.environ.get("FEED_NAMESPACE") or DEFAULT_NAMESPACE,
    )

    parser.add_argument(
        "--update-interval", dest="update_interval", type=float,
        help="Seconds between aggregation ticks (default: 30)",
    )
    parser.add_argument(
        "--outlier-threshold", dest="outlier_threshold", type=float,
        help="Z-score threshold for outliers and anomalies (default: 2.0)",
    )
    parser.add_argument(
        "--max-data-age", dest="max_data_age", type=float,
        help="Max observation age in seconds (default: 600)",
    )
    parser.add_argument(
        "--staleness-threshold", dest="staleness_threshold", type=float,
        help="Age in seconds beyond which observations are stale (default: 300)",
    )
    parser.add_argument(
        "--min-sources", dest="min_sources", type=int,
        help="Minimum sources for full confidence (default: 3)",
    )
    parser.add_argument(
        "--confidence-threshold", dest="confidence_threshold", type=float,
        help="Minimum confidence of a valid aggregation (default: 0.5)",
    )
    parser.add_argument(
        "--expected-sources", dest="expected_sources", type=int,
        help="Source count of a complete aggregation (default: 8)",
    )
    parser.add_argument(
        "--consensus-threshold", dest="consensus_threshold", type=float,
        help="Max share of high-deviation sources (default: 0.3)",
    )
    parser.add_argument(
        "--history-limit", dest="history_limit", type=int,
        help="Anomaly baseline length per symbol (default: 1000)",
    )
    parser.add_argument(
        "--min-history", dest="min_history", type=int,
        help="Baseline length required before anomaly scoring (default: 999)",
    )
    parser.add_argument(
        "--max-concurrency", dest="max_concurrency", type=int,
        help="Symbols aggregated concurrently (default: 8)",
    )
    parser.add_argument(
        "--symbol-timeout", dest="symbol_timeout", type=float,
        help="Per-symbol pipeline timeout in seconds (default: half the interval)",
    )
    parser.add_argument(
        "--fee-field", dest="fee_field", type=str, choices=["maker_fee", "taker_fee"],
        help="Fee field to aggregate (default: maker_fee)",
    )
    parser.add_argument(
        "--no-compression",
        dest="no_compression",
        action="store_true",
        help="Store aggregated records uncompressed",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    return parser


def main() -> None:
    """Main entry point for the Fee Oracle CLI."""
    parser = build_parser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.observation_source == "http" and not args.observation_url:
        parser.error("--observation-url is required for the http observation source")

    try:
        symbols = parse_symbols(args.symbols)
        config = build_config(args)
        weights = SourceWeightModel(parse_weights(args.weights))
    except ValueError as e:
        parser.error(str(e))

    # Log configuration
    logger.info("=" * 60)
    logger.info("Fee Oracle - Multi-Source Fee Aggregation")
    logger.info("=" * 60)
    logger.info(f"Observation Source: {args.observation_source}")
    logger.info(f"Symbols:            {', '.join(symbols) if symbols else 'all active'}")
    logger.info(f"Update Interval:    {config.update_interval}s")
    logger.info(f"Outlier Threshold:  {config.outlier_threshold}")
    logger.info(f"Max Data Age:       {config.max_data_age}s")
    logger.info(f"Min Sources:        {config.minimum_sources}")
    logger.info(f"Confidence Min:     {config.confidence_threshold}")
    logger.info(f"Fee Field:          {config.fee_field}")
    logger.info(f"Compression:        {'enabled' if config.compression_enabled else 'disabled'}")
    logger.info(f"Feed Namespace:     {args.feed_namespace}")
    if args.weights:
        logger.info(f"Weight Overrides:   {args.weights}")
    logger.info("=" * 60)

    try:
        source = build_source(args, symbols)
        context = EngineContext.in_memory(source, config=config, weights=weights)
        engine = AggregationEngine(context)
        engine.subscribe(FeedPublisher(namespace=args.feed_namespace))
        asyncio.run(run_engine(engine))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


async def run_engine(engine: AggregationEngine) -> None:
    """Run the engine until interrupted, then release the source."""
    try:
        await engine.run()
    finally:
        await engine.context.observation_source.close()


if __name__ == "__main__":
    main()
