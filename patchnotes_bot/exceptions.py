"""Error taxonomy for the patch notes bot."""


class PatchnotesBotError(Exception):
    """Base class for all bot errors."""


class ConfigError(PatchnotesBotError):
    """Required configuration is missing or invalid."""


class FetchError(PatchnotesBotError):
    """Network, transport or non-2xx failure while fetching a source."""


class ParseError(PatchnotesBotError):
    """A fetched document had no recognizable entry structure."""


class ContentTooShort(PatchnotesBotError):
    """Normalized body is below the minimum usable length."""


class PublishRateLimited(PatchnotesBotError):
    """Rate-limit retries were exhausted on a bounded retry path."""


class PublishFailed(PatchnotesBotError):
    """A segment could not be delivered to the channel."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code
