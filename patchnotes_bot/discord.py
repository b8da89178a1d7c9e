"""Discord publisher for the patch notes bot."""

import math
import time

import requests

from .config import DiscordConfig
from .exceptions import PublishFailed, PublishRateLimited
from .logging_config import create_execution_logger
from .models import SendOutcome

SUPPRESS_EMBEDS = 1 << 2
USER_AGENT = "DiscordBot (patchnotes-bot, 1.0)"


def parse_retry_after_ms(response: requests.Response, minimum_ms: int) -> int:
    """Read the server-supplied wait from a 429 response, in milliseconds.

    Discord sends ``retry_after`` in seconds in the JSON body; the
    ``Retry-After`` header is used when the body has none. Absent, malformed
    or non-positive values fall back to ``minimum_ms``.
    """
    value = None
    try:
        data = response.json()
        if isinstance(data, dict):
            value = data.get("retry_after")
    except ValueError:
        value = None
    if value is None:
        value = response.headers.get("Retry-After")

    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return minimum_ms
    if not math.isfinite(seconds) or seconds <= 0:
        return minimum_ms
    return int(math.ceil(seconds * 1000))


class DiscordClient:
    """Thin client for the Discord channel message endpoints."""

    def __init__(
        self,
        config: DiscordConfig,
        timeout: int = 30,
        execution_id: str | None = None,
        session: requests.Session | None = None,
    ):
        self.config = config
        self.timeout = timeout
        self.logger = create_execution_logger("discord_client", execution_id)
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bot {config.bot_token}",
                "User-Agent": USER_AGENT,
            }
        )
        self.messages_url = f"{config.api_base}/channels/{config.channel_id}/messages"
        self._bot_user_id: str | None = None

    def send(self, text: str, suppress_preview: bool = False) -> SendOutcome:
        """Post one message. Never raises; the outcome carries the result."""
        payload = {"content": text, "allowed_mentions": {"parse": []}}
        if suppress_preview:
            payload["flags"] = SUPPRESS_EMBEDS

        try:
            response = self.session.post(
                self.messages_url, json=payload, timeout=self.timeout
            )
        except requests.RequestException as e:
            return SendOutcome.failed(None, str(e))

        if response.status_code == 429:
            return SendOutcome.rate_limited(
                parse_retry_after_ms(response, self.config.min_retry_after_ms)
            )
        if 200 <= response.status_code < 300:
            return SendOutcome.success()
        return SendOutcome.failed(response.status_code, response.text[:200])

    def recent_messages(self, limit: int) -> list[dict]:
        """Return the latest channel messages as ``{"author", "content"}`` dicts.

        Raises:
            requests.RequestException: If the history cannot be read
        """
        response = self.session.get(
            self.messages_url,
            params={"limit": max(1, min(limit, 100))},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return [
            {
                "author": (message.get("author") or {}).get("id"),
                "content": message.get("content", ""),
            }
            for message in response.json()
        ]

    def bot_user_id(self) -> str | None:
        """Return the bot's own user ID, or None if it cannot be resolved."""
        if self._bot_user_id is None:
            try:
                response = self.session.get(
                    f"{self.config.api_base}/users/@me", timeout=self.timeout
                )
                response.raise_for_status()
                self._bot_user_id = str(response.json()["id"])
            except (requests.RequestException, ValueError, KeyError) as e:
                self.logger.warning(f"Could not resolve bot user ID: {e}", error=str(e))
                return None
        return self._bot_user_id


class Publisher:
    """Delivers message segments in order with rate-limit aware retries."""

    def __init__(
        self,
        client: DiscordClient,
        config: DiscordConfig,
        execution_id: str | None = None,
    ):
        """Initialize the publisher.

        Args:
            client: Object with a ``send(text, suppress_preview)`` method
            config: Retry, backoff and pacing settings
            execution_id: Execution ID for logging context
        """
        self.client = client
        self.config = config
        self.logger = create_execution_logger("publisher", execution_id)
        self.sent = 0

        self.logger.info(
            "Publisher initialized",
            retry_attempts=config.retry_attempts,
            pacing_seconds=config.pacing_seconds,
        )

    def publish(self, segments: list[str], link_segments: list[str]) -> None:
        """Send all segments, then all link segments with previews suppressed.

        Raises:
            PublishFailed: On a non rate-limit failure; later segments are not sent
            PublishRateLimited: If bounded rate-limit retries run out
        """
        self.sent = 0
        sends = [(text, False) for text in segments]
        sends += [(link, True) for link in link_segments]

        for index, (text, suppress) in enumerate(sends):
            if index > 0 and self.config.pacing_seconds > 0:
                time.sleep(self.config.pacing_seconds)
            self._deliver(text, suppress)
            self.sent += 1

        self.logger.info(f"Published {self.sent} messages", messages_sent=self.sent)

    def _deliver(self, text: str, suppress_preview: bool) -> None:
        rate_limited = 0
        transient_failures = 0

        while True:
            self.logger.debug(
                "Sending message",
                message_length=len(text),
                suppress_preview=suppress_preview,
            )
            outcome = self.client.send(text, suppress_preview=suppress_preview)

            if outcome.ok:
                return

            if outcome.status == "rate_limited":
                rate_limited += 1
                limit = self.config.max_rate_limit_retries
                if limit is not None and rate_limited > limit:
                    self.logger.error("Max retry attempts reached for rate limiting")
                    raise PublishRateLimited(
                        f"Still rate limited after {limit} retries"
                    )
                self.handle_rate_limit(outcome.retry_after_ms, rate_limited)
                continue

            if outcome.code is not None:
                self.logger.error(
                    f"HTTP error sending message: {outcome.code} - {outcome.error}",
                    http_code=outcome.code,
                )
                raise PublishFailed(
                    f"Discord returned HTTP {outcome.code}", code=outcome.code
                )

            transient_failures += 1
            if transient_failures >= self.config.retry_attempts:
                self.logger.error(
                    f"Giving up after {transient_failures} failed attempts: {outcome.error}",
                    error=outcome.error,
                )
                raise PublishFailed(f"Transport failure: {outcome.error}")

            backoff_time = self.config.backoff_factor ** (transient_failures - 1)
            self.logger.warning(
                f"Send failed, retrying in {backoff_time} seconds: {outcome.error}",
                attempt=transient_failures,
                backoff_time=backoff_time,
            )
            time.sleep(backoff_time)

    def handle_rate_limit(self, retry_after_ms: int | None, retry_count: int) -> None:
        """Wait out a rate limit for the server-supplied duration."""
        wait_ms = retry_after_ms or self.config.min_retry_after_ms
        self.logger.warning(
            f"Rate limited, waiting {wait_ms} ms before retry {retry_count}",
            retry_count=retry_count,
            retry_after_ms=wait_ms,
        )
        time.sleep(wait_ms / 1000)
