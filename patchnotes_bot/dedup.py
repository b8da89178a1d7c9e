"""Deduplication of published updates."""

import json
import os
import re
import tempfile
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol
from urllib.parse import urlsplit

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .logging_config import create_execution_logger
from .models import Candidate

HOST_ALIAS_PREFIXES = ("www.", "m.")

_NUMERIC_SEGMENT_RE = re.compile(r"^\d+$")


def canonical_url(link: str) -> str:
    """Lower-case the URL, force https, drop host aliases, query and fragment."""
    link = (link or "").strip()
    if not link:
        return ""
    try:
        parts = urlsplit(link if "://" in link else f"https://{link}")
    except ValueError:
        return link.lower()
    host = parts.netloc.lower()
    for prefix in HOST_ALIAS_PREFIXES:
        if host.startswith(prefix):
            host = host[len(prefix):]
            break
    path = parts.path.rstrip("/").lower()
    return f"https://{host}{path}"


def candidate_identity(link: str) -> str:
    """Stable identity for a link.

    A numeric trailing path segment (``/news/post/123`` -> ``123``) is used when
    present, otherwise the canonical URL.
    """
    canonical = canonical_url(link)
    if not canonical:
        return ""
    last_segment = canonical.rsplit("/", 1)[-1]
    if _NUMERIC_SEGMENT_RE.match(last_segment):
        return last_segment
    return canonical


def marker_identity(marker: str | None) -> str:
    """Identity of a stored marker, tolerating markers saved as raw links."""
    return candidate_identity(marker or "")


class MarkerStore(Protocol):
    """Durable storage for the single last-published marker."""

    def load(self) -> str | None: ...

    def save(self, marker: str) -> None: ...


class DeduplicationGate:
    """Decides whether a selected candidate has already been published.

    The durable marker is the primary check. When a history reader and the bot's
    own user ID are given, recent messages posted by the bot are scanned as a
    second opinion so a lost marker does not cause a repost. A force flag lets one call through.
    """

    def __init__(
        self,
        history_reader: Callable[[int], list[dict]] | None = None,
        bot_user_id: str | None = None,
        history_depth: int = 20,
        force: bool = False,
        execution_id: str | None = None,
    ):
        self.history_reader = history_reader
        self.bot_user_id = bot_user_id
        self.history_depth = history_depth
        self.force = force
        self.logger = create_execution_logger("deduplicator", execution_id)

    def is_new(self, candidate: Candidate, marker: str | None) -> bool:
        """Return True if the candidate should be published."""
        if self.force:
            self.force = False
            self.logger.info(
                "Force flag set, bypassing duplicate check",
                candidate_link=candidate.link,
            )
            return True

        identity = candidate_identity(candidate.link)
        if marker is not None and identity == marker_identity(marker):
            self.logger.debug("Candidate matches stored marker", candidate_link=candidate.link)
            return False

        if self.history_reader is not None and self.already_in_history(candidate):
            return False

        return True

    def already_in_history(self, candidate: Candidate) -> bool:
        """Check the bot's recent channel messages for the candidate link."""
        if not candidate.link:
            return False
        if not self.bot_user_id:
            self.logger.debug("Bot user ID unknown, skipping channel history check")
            return False

        try:
            messages = self.history_reader(self.history_depth) or []
        except Exception as e:
            self.logger.debug(f"Channel history unavailable: {e}", error=str(e))
            return False

        needles = {candidate.link.lower(), canonical_url(candidate.link)[len("https://"):]}
        for message in messages:
            author = message.get("author")
            if author is None or str(author) != str(self.bot_user_id):
                continue
            content = (message.get("content") or "").lower()
            if any(needle and needle in content for needle in needles):
                self.logger.info(
                    "Candidate already present in channel history",
                    candidate_link=candidate.link,
                )
                return True
        return False


class DynamoMarkerStore:
    """Marker store backed by a single DynamoDB item."""

    def __init__(
        self,
        table_name: str,
        marker_key: str = "latest-update",
        aws_region: str = "us-east-1",
        execution_id: str | None = None,
    ):
        """Initialize the store with DynamoDB configuration.

        Args:
            table_name: Name of the DynamoDB table holding the marker
            marker_key: Partition key value of the marker item
            aws_region: AWS region for DynamoDB client
            execution_id: Execution ID for logging context
        """
        self.table_name = table_name
        self.marker_key = marker_key
        self.logger = create_execution_logger("marker_store", execution_id)
        self.dynamodb = boto3.resource("dynamodb", region_name=aws_region)
        self.table = self.dynamodb.Table(table_name)

        self.logger.info(
            "DynamoMarkerStore initialized", table_name=table_name, aws_region=aws_region
        )

    def load(self) -> str | None:
        """Return the stored marker, or None if absent or unreadable."""
        try:
            response = self.table.get_item(Key={"marker_id": self.marker_key})
        except (ClientError, BotoCoreError) as e:
            self.logger.error(f"Error loading marker: {e}", error=str(e))
            return None
        item = response.get("Item")
        if not item:
            return None
        return item.get("value") or None

    def save(self, marker: str) -> None:
        """Persist the marker; failures are logged and ignored."""
        try:
            self.table.put_item(
                Item={
                    "marker_id": self.marker_key,
                    "value": marker,
                    "updated_at": datetime.now(UTC).isoformat(),
                }
            )
            self.logger.info("Stored marker in DynamoDB", marker=marker)
        except (ClientError, BotoCoreError) as e:
            self.logger.error(f"Error storing marker {marker}: {e}", error=str(e))


class FileMarkerStore:
    """Marker store backed by a small JSON file."""

    def __init__(self, path: str | Path, execution_id: str | None = None):
        self.path = Path(path)
        self.logger = create_execution_logger("marker_store", execution_id)

    def load(self) -> str | None:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Error loading marker file {self.path}: {e}", error=str(e))
            return None
        if not isinstance(data, dict):
            return None
        return data.get("value") or None

    def save(self, marker: str) -> None:
        payload = {"value": marker, "updated_at": datetime.now(UTC).isoformat()}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Write then rename so a crash never leaves a truncated marker
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_path, self.path)
            self.logger.info("Stored marker file", marker=marker)
        except OSError as e:
            self.logger.error(f"Error storing marker file {self.path}: {e}", error=str(e))
