"""
Crypto Payment Kiosk - Main entry point.

Starts the kiosk and listens for operator/frontend commands on Redis pub/sub.
"""

import asyncio
import json

from redis.asyncio import Redis

from application.api_facade import KioskFacade
from application.command_handler import CommandHandler
from infrastructure.settings import Settings, get_settings
from loggers import logger


# =============================================================================
# Redis Command Listener
# =============================================================================


async def listen_to_redis(redis: Redis, api: KioskFacade, settings: Settings) -> None:
    """
    Listen for commands on Redis pub/sub and process them.

    Args:
        redis: Redis client instance.
        api: KioskFacade instance for command execution.
        settings: Application settings.
    """
    command_channel = settings.payment.command_channel
    response_channel = settings.payment.response_channel
    handler = CommandHandler(api)

    pubsub = redis.pubsub()
    await pubsub.subscribe(command_channel)
    commands = ", ".join(cmd["name"] for cmd in handler.get_available_commands())
    logger.info(f"Listening for commands on channel: {command_channel} ({commands})")

    async for message in pubsub.listen():
        if message.get("type") != "message":
            continue

        raw_data = message.get("data")
        if raw_data == "ping":
            continue

        try:
            command = json.loads(raw_data)
        except json.JSONDecodeError as e:
            logger.error(f"Command parsing error: {e}")
            continue

        if not isinstance(command, dict):
            logger.error(f"Command must be a JSON object: {raw_data!r}")
            continue

        logger.info(f"Received command: {command}")
        try:
            response = await handler.execute(command)
            await redis.publish(response_channel, json.dumps(response))
            logger.info(f"Response sent to {response_channel}: {response}")
        except Exception as e:
            logger.error(f"Unexpected error processing command: {e}")


# =============================================================================
# Main Entry Point
# =============================================================================


async def main() -> None:
    """
    Main entry point for the kiosk service.

    Connects to Redis, starts the kiosk and the command listener.
    """
    settings = get_settings()

    redis = Redis(
        host=settings.redis.host,
        port=settings.redis.port,
        decode_responses=settings.redis.decode_responses,
    )

    kiosk = KioskFacade(redis, settings)

    try:
        await kiosk.init()
        await listen_to_redis(redis, kiosk, settings)
    finally:
        await kiosk.shutdown()
        await redis.aclose()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Application stopped by user")


if __name__ == "__main__":
    run()
