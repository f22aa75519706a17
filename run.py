#!/usr/bin/env python3
"""
NPC Engine - Main runner script

Usage:
    python run.py                     # Run with defaults from config/config.yaml
    python run.py --npcs 4            # Override population size
    python run.py --mode trade        # Pin every NPC to buying and selling
    python run.py --no-respawn        # Dead NPCs stay dead
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime

from dotenv import load_dotenv
from pydantic import ValidationError

from npc_engine.agents.actions import MODE_OVERRIDES
from npc_engine.config import (
    get_validated_config,
    load_config,
    require_environment,
    set_config_value,
)
from npc_engine.config_schema import AppConfig
from npc_engine.simulation import NpcEngine
from npc_engine.world import CollaboratorError, ConfigurationError, EventLogger, WorldClient

# Load environment variables
load_dotenv()

logger = logging.getLogger("npc_engine")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_event_logger(config: AppConfig) -> EventLogger:
    if config.logging.logs_dir:
        run_id = f"run_{datetime.now():%Y%m%d_%H%M%S}"
        return EventLogger(logs_dir=config.logging.logs_dir, run_id=run_id)
    return EventLogger(output_file=config.logging.output_file)


async def run_engine(config: AppConfig) -> int:
    """Run until SIGINT/SIGTERM. Returns the process exit code."""
    credentials = require_environment(config)
    stop_requested = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_requested.set))

    async with WorldClient(
        credentials.base_url,
        credentials.api_key,
        timeout=config.api.timeout_seconds,
    ) as client:
        engine = NpcEngine(config, client, event_logger=build_event_logger(config))
        try:
            await engine.start()
        except CollaboratorError as e:
            logger.error(f"Failed to start NPC engine: {e}")
            await engine.stop()
            return 1

        await stop_requested.wait()
        logger.info("Shutting down NPC engine...")
        await engine.stop()

        errors = engine.error_stats
        if errors.total_errors:
            logger.info(f"Errors by type: {errors.by_type}")
    return 0


def main() -> None:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Run the autonomous NPC engine"
    )
    parser.add_argument(
        "--config", default="config/config.yaml", help="Path to config file"
    )
    parser.add_argument("--npcs", type=int, help="Override target NPC count")
    parser.add_argument(
        "--mode",
        choices=sorted(MODE_OVERRIDES),
        default=None,
        help="Pin every NPC to one activity for the whole run",
    )
    parser.add_argument(
        "--no-respawn", action="store_true", help="Disable respawning of dead NPCs"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Override logging.level",
    )
    args: argparse.Namespace = parser.parse_args()

    try:
        load_config(args.config)
        if args.npcs is not None:
            set_config_value("engine.npc_count", args.npcs)
        if args.mode is not None:
            set_config_value("engine.override_action", MODE_OVERRIDES[args.mode])
        if args.no_respawn:
            set_config_value("lifecycle.respawn_enabled", False)
        if args.log_level:
            set_config_value("logging.level", args.log_level)
        config = get_validated_config()
    except (FileNotFoundError, ValidationError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.logging.level)
    if args.mode:
        logger.info(f"Mode: {args.mode}")

    try:
        exit_code = asyncio.run(run_engine(config))
    except ConfigurationError as e:
        logger.error(str(e))
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
