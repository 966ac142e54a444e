"""Command-line entry points for running the scaling loop outside the API process.

``capacity-gate-scale once`` runs a single tick (for cron / scheduled tasks),
``capacity-gate-scale loop`` runs ticks forever on the configured interval.
"""
import argparse
import asyncio
import json
import sys

from dotenv import load_dotenv

from capacity_gate.core.config import Settings
from capacity_gate.core.logger import get_logger, setup_logging
from capacity_gate.services.providers import build_scaling_controller
from capacity_gate.services.scaling_controller import ScalingLoop

logger = get_logger(__name__)


async def run_once(config: Settings) -> int:
    controller = build_scaling_controller(config)
    report = await controller.run_once()
    print(json.dumps(report.to_dict(), indent=2, default=str))
    return 0 if report.success else 1


async def run_forever(config: Settings) -> int:
    loop = ScalingLoop(build_scaling_controller(config), config.SCALING_INTERVAL_SECONDS)
    loop.start()
    try:
        await asyncio.Event().wait()
    finally:
        await loop.stop()
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="capacity-gate-scale", description=__doc__)
    parser.add_argument("mode", choices=["once", "loop"], nargs="?", default="once")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    load_dotenv()
    config = Settings()
    setup_logging(args.log_level or config.LOG_LEVEL, config.LOG_DIR, json_logs=config.ENVIRONMENT == "production")

    try:
        if args.mode == "loop":
            return asyncio.run(run_forever(config))
        return asyncio.run(run_once(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
