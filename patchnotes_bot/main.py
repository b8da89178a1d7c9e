"""Long-running poller: one cycle at startup, then one every poll interval."""

import sys
import time

from .config import Config, resolve_bot_token
from .discord import DiscordClient, Publisher
from .exceptions import ConfigError, PublishFailed, PublishRateLimited
from .logging_config import (
    create_execution_logger,
    new_execution_id,
    setup_structured_logging,
)
from .pipeline import create_runner


def run(max_cycles: int | None = None) -> int:
    """Validate configuration, then poll until interrupted.

    Args:
        max_cycles: Stop after this many cycles (None polls forever)

    Returns:
        Process exit status
    """
    try:
        config = Config()
        setup_structured_logging(config.log_level)
        config.validate()
    except ConfigError as e:
        setup_structured_logging("INFO")
        create_execution_logger("main").error(f"Configuration error: {e}", error=str(e))
        return 1

    execution_id = new_execution_id("poller")
    logger = create_execution_logger("main", execution_id)

    try:
        bot_token = resolve_bot_token(config, execution_id)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}", error=str(e))
        return 1

    client = DiscordClient(config.get_discord_config(bot_token), execution_id=execution_id)
    # Force applies to the first cycle after boot only
    runner = create_runner(
        config, execution_id=execution_id, force=config.force_post_on_boot, client=client
    )

    startup_message = config.get_message_config().startup_message
    if startup_message:
        try:
            Publisher(client, client.config, execution_id=execution_id).publish(
                [startup_message], []
            )
        except (PublishFailed, PublishRateLimited) as e:
            logger.warning(f"Startup message not posted: {e}", error=str(e))

    logger.info("Poller started", poll_seconds=config.poll_seconds)
    cycles = 0
    try:
        while True:
            result = runner.run_cycle()
            cycles += 1
            logger.info(f"Cycle finished: {result.outcome}", outcome=result.outcome)
            if max_cycles is not None and cycles >= max_cycles:
                break
            time.sleep(config.poll_seconds)
    except KeyboardInterrupt:
        logger.info("Poller stopped")
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
