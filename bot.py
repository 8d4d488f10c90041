from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from vbot.app_factory import build_registry, build_router, build_runtime
from vbot.config import load_config, load_env
from vbot.router import LoggedOutError
from vbot.session import CredentialsError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("bot")

CONFIG_PATH = Path("config.json")
ENV_PATH = Path(".env")


def _log_uncaught(exc_type: type[BaseException], exc: BaseException, tb: Any) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc, tb)
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc, tb))


def _log_loop_error(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    exc = context.get("exception")
    message = context.get("message", "Unhandled error in event loop")
    if exc is not None:
        logger.error("%s", message, exc_info=(type(exc), exc, exc.__traceback__))
    else:
        logger.error("%s", message)


async def main() -> int:
    try:
        config = load_config(CONFIG_PATH, load_env(ENV_PATH))
    except (OSError, ValueError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1
    logging.getLogger().setLevel(config.log_level)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_log_loop_error)

    runtime = build_runtime(config)
    try:
        registry = build_registry(runtime)
        try:
            router = build_router(config, runtime, registry)
        except ValueError as exc:
            logger.error("Invalid SESSION_ENCRYPTION_KEY: %s", exc)
            return 1
        logger.info("Loaded %s commands, prefix %r", len(registry), config.prefix)

        stop_event = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

        try:
            await router.start()
        except CredentialsError as exc:
            logger.error("Cannot start: %s", exc)
            return 1

        stop_task = asyncio.create_task(stop_event.wait())
        closed_task = asyncio.create_task(router.wait_closed())
        done, _ = await asyncio.wait({stop_task, closed_task}, return_when=asyncio.FIRST_COMPLETED)

        if closed_task in done:
            stop_task.cancel()
            exc = closed_task.exception()
            if isinstance(exc, LoggedOutError):
                return 1
            if exc is not None:
                logger.error("Router stopped unexpectedly", exc_info=(type(exc), exc, exc.__traceback__))
                return 1
            return 0

        logger.warning("Shutdown signal received, closing bot...")
        await router.stop()
        closed_task.cancel()
        return 0
    finally:
        await runtime.aclose()


def run() -> None:
    sys.excepthook = _log_uncaught
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
