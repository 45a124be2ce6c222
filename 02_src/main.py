"""Main entry point for Concierge."""

import asyncio
from pathlib import Path

from dotenv import load_dotenv

from concierge import Application, Settings
from concierge.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


async def run() -> None:
    """Run the agent pipeline until cancelled."""
    app = Application(Settings.from_env())
    await app.start()
    try:
        await asyncio.Event().wait()
    finally:
        await app.stop()


def main():
    """Run the application."""
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    setup_logging()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
