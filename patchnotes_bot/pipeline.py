"""Orchestration of one ingestion and publishing cycle."""

import threading
from enum import Enum

from .chunker import DEFAULT_SLICE_SIZE, DISCORD_MESSAGE_LIMIT, build_header, chunk
from .config import Config, FeedSource, resolve_bot_token
from .dedup import (
    DeduplicationGate,
    DynamoMarkerStore,
    FileMarkerStore,
    MarkerStore,
    candidate_identity,
)
from .discord import DiscordClient, Publisher
from .exceptions import (
    ContentTooShort,
    FetchError,
    ParseError,
    PublishFailed,
    PublishRateLimited,
)
from .feeds import FeedFetcher
from .logging_config import create_execution_logger
from .models import Candidate, CycleResult
from .normalize import MIN_CONTENT_LENGTH, is_usable, normalize
from .selector import UpdateSelector


class CycleState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    SELECTING = "selecting"
    DEDUPING = "deduping"
    NORMALIZING = "normalizing"
    CHUNKING = "chunking"
    PUBLISHING = "publishing"
    MARKER_UPDATE = "marker_update"


class PipelineRunner:
    """Runs fetch, select, dedup, normalize, chunk, publish and marker update.

    ``run_cycle`` never raises. Any failure ends the cycle with a logged
    diagnostic and the next call starts from scratch. The marker is loaded
    from the store on first use and kept in memory afterwards.
    """

    def __init__(
        self,
        sources: list[FeedSource],
        fetcher: FeedFetcher,
        selector: UpdateSelector,
        gate: DeduplicationGate,
        publisher: Publisher,
        marker_store: MarkerStore,
        header: str,
        execution_id: str | None = None,
        min_content_length: int = MIN_CONTENT_LENGTH,
        message_limit: int = DISCORD_MESSAGE_LIMIT,
        slice_size: int = DEFAULT_SLICE_SIZE,
    ):
        self.sources = sources
        self.fetcher = fetcher
        self.selector = selector
        self.gate = gate
        self.publisher = publisher
        self.marker_store = marker_store
        self.header = header
        self.min_content_length = min_content_length
        self.message_limit = message_limit
        self.slice_size = slice_size
        self.logger = create_execution_logger("pipeline", execution_id)
        self.state = CycleState.IDLE
        self._marker: str | None = None
        self._marker_loaded = False
        self._lock = threading.Lock()

    @property
    def marker(self) -> str | None:
        if not self._marker_loaded:
            self._marker = self.marker_store.load()
            self._marker_loaded = True
            self.logger.info("Loaded marker", marker=self._marker)
        return self._marker

    def run_cycle(self) -> CycleResult:
        """Run one cycle to completion and report what happened."""
        if not self._lock.acquire(blocking=False):
            self.logger.warning("Cycle already running, skipping this trigger")
            return CycleResult(
                outcome="error",
                state=self.state.value,
                metrics={"errors": ["cycle already running"]},
            )
        try:
            return self._run()
        finally:
            self._enter(CycleState.IDLE)
            self._lock.release()

    def _enter(self, state: CycleState) -> None:
        self.state = state
        self.logger.log_state(state.value)

    def _run(self) -> CycleResult:
        metrics = {
            "sources_tried": 0,
            "candidates_found": 0,
            "segments_sent": 0,
            "errors": [],
        }
        self.logger.log_execution_start(source_count=len(self.sources))
        candidate = None

        def finish(outcome: str) -> CycleResult:
            result = CycleResult(
                outcome=outcome,
                state=self.state.value,
                candidate=candidate,
                metrics=metrics,
            )
            self.logger.log_metrics(metrics)
            self.logger.log_execution_end(
                success=outcome != "error", outcome=outcome, state=self.state.value
            )
            return result

        try:
            candidate, source = self._select(metrics)
            if candidate is None:
                self.logger.info("No new update")
                return finish("nothing_new")

            self._enter(CycleState.DEDUPING)
            if not self.gate.is_new(candidate, self.marker):
                self.logger.info("Update already published", candidate_link=candidate.link)
                return finish("duplicate")

            identity = candidate_identity(candidate.link)

            self._enter(CycleState.NORMALIZING)
            try:
                text = self._normalized_body(candidate, source)
            except ContentTooShort as e:
                self.logger.warning(
                    f"Update text empty or short, skipping post: {e}",
                    candidate_link=candidate.link,
                )
                self._update_marker(identity)
                return finish("too_short")

            self._enter(CycleState.CHUNKING)
            segments = chunk(self.header, text, self.message_limit, self.slice_size)
            link_segments = [candidate.link] if candidate.link else []

            self._enter(CycleState.PUBLISHING)
            outcome = "published"
            try:
                self.publisher.publish(segments, link_segments)
                self.logger.info("Posted update", candidate_link=candidate.link)
            except (PublishFailed, PublishRateLimited) as e:
                outcome = "publish_failed"
                error_msg = f"Failed to publish {candidate.link}: {e}"
                self.logger.error(error_msg, candidate_link=candidate.link)
                metrics["errors"].append(error_msg)
            metrics["segments_sent"] = self.publisher.sent

            self._enter(CycleState.MARKER_UPDATE)
            self._update_marker(identity)
            return finish(outcome)

        except Exception as e:
            error_msg = f"Cycle failed in state {self.state.value}: {e}"
            self.logger.error(error_msg, error=str(e))
            metrics["errors"].append(error_msg)
            return finish("error")

    def _select(self, metrics: dict) -> tuple[Candidate | None, FeedSource | None]:
        """Try sources in order; the first one yielding a selection wins."""
        fetch_failures = 0
        for source in self.sources:
            self._enter(CycleState.FETCHING)
            metrics["sources_tried"] += 1
            try:
                candidates = self.fetcher.fetch_candidates(source)
            except FetchError as e:
                fetch_failures += 1
                metrics["errors"].append(str(e))
                self.logger.error(
                    f"Failed to fetch source {source.url}: {e}", source_url=source.url
                )
                continue
            except ParseError as e:
                self.logger.warning(
                    f"No entries recognized in {source.url}: {e}", source_url=source.url
                )
                continue

            metrics["candidates_found"] += len(candidates)
            self._enter(CycleState.SELECTING)
            selected = self.selector.select(candidates, source.update_path_pattern)
            if selected is not None:
                return selected, source

        if self.sources and fetch_failures == len(self.sources):
            raise FetchError("All sources failed to fetch")
        return None, None

    def _normalized_body(self, candidate: Candidate, source: FeedSource) -> str:
        body = candidate.body_markup
        if not body and candidate.link:
            body = self.fetcher.fetch_content(candidate.link, source)

        text = normalize(body)
        self.logger.info(
            f"Extracted text length: {len(text)}", candidate_link=candidate.link
        )
        if not is_usable(text, self.min_content_length):
            raise ContentTooShort(f"{len(text)} characters after normalization")
        return text

    def _update_marker(self, identity: str) -> None:
        self._marker = identity
        self._marker_loaded = True
        if identity:
            self.marker_store.save(identity)


def create_marker_store(config: Config, execution_id: str | None = None) -> MarkerStore:
    """DynamoDB when a table is configured, otherwise a local JSON file."""
    if config.marker_table:
        return DynamoMarkerStore(
            config.marker_table,
            marker_key=config.marker_key,
            aws_region=config.aws_region,
            execution_id=execution_id,
        )
    return FileMarkerStore(config.marker_file, execution_id=execution_id)


def create_runner(
    config: Config,
    execution_id: str | None = None,
    force: bool = False,
    client: DiscordClient | None = None,
) -> PipelineRunner:
    """Wire a runner from validated configuration."""
    if client is None:
        bot_token = resolve_bot_token(config, execution_id)
        client = DiscordClient(config.get_discord_config(bot_token), execution_id=execution_id)
    discord_config = client.config
    message = config.get_message_config()

    gate = DeduplicationGate(
        history_reader=client.recent_messages,
        bot_user_id=client.bot_user_id(),
        history_depth=discord_config.history_depth,
        force=force,
        execution_id=execution_id,
    )

    return PipelineRunner(
        sources=config.get_feed_sources(),
        fetcher=FeedFetcher(execution_id=execution_id),
        selector=UpdateSelector(config.get_selector_config(), execution_id=execution_id),
        gate=gate,
        publisher=Publisher(client, discord_config, execution_id=execution_id),
        marker_store=create_marker_store(config, execution_id),
        header=build_header(message.header_text, message.custom_emoji),
        execution_id=execution_id,
        message_limit=discord_config.message_limit,
        slice_size=discord_config.slice_size,
    )
