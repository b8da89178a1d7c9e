"""Selection of the candidate that is a genuine product update."""

import re

from .config import SelectorConfig
from .logging_config import create_execution_logger
from .models import Candidate

_TAG_RE = re.compile(
    r"</?[a-z][a-z0-9:-]*(?:\s[^<>]*)?/?>|"
    r"\[/?[a-z*][a-z0-9]*(?:=[^\]]*)?\]",
    re.IGNORECASE,
)


class UpdateSelector:
    """Picks the first candidate whose link shape and text mark it as an update.

    The dedicated update path is trusted more than a generic news-post path:
    the former needs only an update keyword, the latter also needs the product
    to be named explicitly.
    """

    def __init__(self, config: SelectorConfig | None = None, execution_id: str | None = None):
        self.config = config or SelectorConfig()
        self.logger = create_execution_logger("selector", execution_id)
        self._update_path = re.compile(self.config.update_path_pattern, re.IGNORECASE)
        self._news_paths = [
            re.compile(pattern, re.IGNORECASE)
            for pattern in self.config.news_post_patterns
        ]
        self._product = re.compile(
            r"(?<!\w)(?:"
            + "|".join(re.escape(name) for name in self.config.product_names)
            + r")(?!\w)",
            re.IGNORECASE,
        )
        self._keywords = [keyword.lower() for keyword in self.config.keywords]

    def select(
        self, candidates: list[Candidate], update_path_pattern: str | None = None
    ) -> Candidate | None:
        """Return the first accepted candidate, or None when nothing qualifies.

        ``update_path_pattern`` replaces the configured dedicated update path,
        for sources whose update posts live under a different URL shape.
        """
        update_path = self._update_path_for(update_path_pattern)
        for candidate in candidates:
            if self._accepts(candidate, update_path):
                self.logger.info(
                    "Selected candidate",
                    candidate_link=candidate.link,
                    candidate_title=candidate.title,
                )
                return candidate
            self.logger.debug(
                "Rejected candidate",
                candidate_link=candidate.link,
                candidate_title=candidate.title,
            )
        return None

    def accepts(self, candidate: Candidate, update_path_pattern: str | None = None) -> bool:
        return self._accepts(candidate, self._update_path_for(update_path_pattern))

    def _update_path_for(self, pattern: str | None) -> re.Pattern:
        if not pattern:
            return self._update_path
        return re.compile(pattern, re.IGNORECASE)

    def _accepts(self, candidate: Candidate, update_path: re.Pattern) -> bool:
        text = self._searchable_text(candidate)

        if update_path.search(candidate.link):
            # Listing pages carry no text; the dedicated path is the only signal
            if not text.strip():
                return True
            return self.has_update_keyword(text)

        if any(pattern.search(candidate.link) for pattern in self._news_paths):
            return self.has_update_keyword(text) and self.names_product(text)

        return False

    def has_update_keyword(self, text: str) -> bool:
        lowered = text.lower()
        return any(keyword in lowered for keyword in self._keywords)

    def names_product(self, text: str) -> bool:
        if not self.config.product_names:
            return False
        return bool(self._product.search(text))

    @staticmethod
    def _searchable_text(candidate: Candidate) -> str:
        description = _TAG_RE.sub(" ", candidate.description or "")
        return f"{candidate.title or ''}\n{description}"
