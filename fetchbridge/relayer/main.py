"""Relayer entrypoint: load .env and config, init logging, run the poll loop,
stop cleanly on SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from dotenv import load_dotenv

from fetchbridge.config import RelayerConfig, load_config
from fetchbridge.relayer.client import LedgerClient
from fetchbridge.relayer.worker import RelayWorker, build_http_client

logger = logging.getLogger(__name__)


def load_relayer_config(config_path: str | None = None) -> RelayerConfig:
    """Environment first; a config file is used only when it has a relayer section."""
    if config_path is None:
        return RelayerConfig.from_env()

    config = load_config(config_path)
    if config.relayer is None:
        raise ValueError(f"{config_path} has no 'relayer' section")
    return config.relayer


async def run_relayer(config: RelayerConfig) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:
            logger.warning(f"Cannot install handler for signal {signum} on this platform")

    async with build_http_client(config) as http:
        worker = RelayWorker(config, LedgerClient(config, http), http)
        await worker.run(stop)


def main(argv: list[str] | None = None) -> None:
    args = sys.argv[1:] if argv is None else argv
    config_path = args[0] if args else None

    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    try:
        config = load_relayer_config(config_path)
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Invalid relayer configuration: {e}")
        sys.exit(1)

    asyncio.run(run_relayer(config))


if __name__ == "__main__":
    main()
