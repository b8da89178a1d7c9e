"""Main Lambda handler for the patch notes bot."""

import json
import os
from typing import Any

from .config import Config
from .exceptions import ConfigError
from .logging_config import (
    create_execution_logger,
    new_execution_id,
    setup_structured_logging,
)
from .pipeline import create_runner

# Setup structured logging
setup_structured_logging(
    "DEBUG" if os.getenv("DEBUG", "").lower() == "true" else os.getenv("LOG_LEVEL", "INFO")
)


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Run one pipeline cycle per scheduled invocation.

    The EventBridge schedule invokes this on a fixed period. An event carrying
    ``{"force": true}`` bypasses the duplicate check for this invocation.
    ``FORCE_POST_ON_BOOT`` is not read here: every scheduled invocation is a
    fresh boot, so the flag would repost the same update each period.

    Args:
        event: Lambda event data
        context: Lambda context object

    Returns:
        Response dictionary with status and metrics

    Raises:
        ConfigError: If required configuration is missing, so the invocation
            fails instead of silently doing nothing
    """
    execution_id = new_execution_id("lambda")
    main_logger = create_execution_logger("main", execution_id)

    main_logger.log_execution_start(
        lambda_request_id=getattr(context, "aws_request_id", "unknown"),
        lambda_function_name=getattr(context, "function_name", "unknown"),
    )

    try:
        config = Config()
        config.validate()
    except ConfigError as e:
        main_logger.error(f"Configuration error: {e}", error=str(e))
        raise

    force = bool((event or {}).get("force"))
    runner = create_runner(config, execution_id=execution_id, force=force)
    result = runner.run_cycle()

    status_code = 500 if result.outcome == "error" else 200
    main_logger.log_execution_end(
        success=status_code == 200, outcome=result.outcome, metrics=result.metrics
    )

    return {
        "statusCode": status_code,
        "body": json.dumps(
            {
                "message": "Patch notes bot cycle completed",
                "execution_id": execution_id,
                "outcome": result.outcome,
                "candidate_link": result.candidate.link if result.candidate else None,
                "metrics": result.metrics,
            }
        ),
    }
