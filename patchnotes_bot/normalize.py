"""Markup normalization: HTML or BBCode to Discord-safe text.

The conversion is an ordered list of pure rewrite rules. Each rule takes the
output of the previous one, so the order in ``RULES`` is significant: entities
are decoded before any tag matching, BBCode is translated to HTML before the
HTML rules run, and headings are rendered before emphasis so heading text
comes out without emphasis markers.
"""

import html
import logging
import re
from collections.abc import Callable

logger = logging.getLogger(__name__)

BULLET = "• "
MIN_CONTENT_LENGTH = 10

_FLAGS = re.IGNORECASE | re.DOTALL

# BBCode
_BB_TAG_RE = re.compile(r"\[(/?)([a-z*][a-z0-9]*)(?:=([^\]]*))?\]", re.IGNORECASE)
_BB_URL_WITH_TARGET_RE = re.compile(r"\[url=([^\]]*)\](.*?)\[/url\]", _FLAGS)
_BB_URL_BARE_RE = re.compile(r"\[url\](.*?)\[/url\]", _FLAGS)
_BB_MEDIA_RE = re.compile(
    r"\[(img|previewyoutube|video)\b[^\]]*\].*?\[/\1\]", _FLAGS
)
_BB_BLOCK_NEWLINES_RE = re.compile(
    r"\n*(\[/?(?:list|olist|\*|h[1-6]|p|hr|table|tr|quote)(?:=[^\]]*)?\])\n*",
    re.IGNORECASE,
)
_BB_TO_HTML = {
    "b": "b",
    "i": "i",
    "u": "u",
    "p": "p",
    "list": "ul",
    "olist": "ol",
    "*": "li",
    "h1": "h1",
    "h2": "h2",
    "h3": "h3",
    "h4": "h4",
    "h5": "h5",
    "h6": "h6",
}
# Recognized codes that carry no destination formatting; text is kept
_BB_DROPPED = {
    "s",
    "strike",
    "quote",
    "code",
    "noparse",
    "spoiler",
    "table",
    "tr",
    "td",
    "th",
    "expand",
    "hr",
    "url",
    "img",
    "previewyoutube",
    "video",
    "emoticon",
}

# HTML: a tag name follows "<" directly
_ATTRS = r"(?:\s[^<>]*)?"
_TAG_RE = re.compile(rf"</?[a-z][a-z0-9:-]*{_ATTRS}/?>", re.IGNORECASE)
_DECLARATION_RE = re.compile(r"<![^<>]*>")
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_PSEUDO_HEADING_RE = re.compile(
    r"<(div|span|p)\s[^<>]*\bclass\s*=\s*[\"'][^\"']*\bbb_h[1-6]\b[^\"']*[\"'][^<>]*>"
    r"(.*?)</\1\s*>",
    _FLAGS,
)
_BR_RE = re.compile(rf"<br{_ATTRS}/?>", re.IGNORECASE)
_LI_OPEN_RE = re.compile(rf"<li{_ATTRS}>", re.IGNORECASE)
_LI_CLOSE_RE = re.compile(r"</li\s*>", re.IGNORECASE)
_BLOCK_RE = re.compile(
    rf"</?(?:p|div|ul|ol|blockquote|section|table|tr){_ATTRS}/?>", re.IGNORECASE
)
_HEADING_RE = re.compile(rf"<h([1-6]){_ATTRS}>(.*?)</h\1\s*>", _FLAGS)
_EMPHASIS = (
    (re.compile(rf"<(strong|b){_ATTRS}>(.*?)</\1\s*>", _FLAGS), "**"),
    (re.compile(rf"<(em|i){_ATTRS}>(.*?)</\1\s*>", _FLAGS), "*"),
    (re.compile(rf"<(u){_ATTRS}>(.*?)</\1\s*>", _FLAGS), "__"),
)
_LINK_RE = re.compile(rf"<a{_ATTRS}>(.*?)</a\s*>", _FLAGS)
_DROP_BLOCK_RE = re.compile(
    rf"<(script|style|noscript|iframe|video|audio|svg|object){_ATTRS}>.*?</\1\s*>",
    _FLAGS,
)
_IMG_RE = re.compile(rf"<img{_ATTRS}/?>", re.IGNORECASE)
_INLINE_SPACE_RE = re.compile(r"[ \t\xa0]{2,}")
_BLANK_RUN_RE = re.compile(r"\n{3,}")


def looks_like_bbcode(text: str) -> bool:
    """Return True if the text carries recognized BBCode codes."""
    for match in _BB_TAG_RE.finditer(text):
        name = match.group(2).lower()
        if name in _BB_TO_HTML or name in _BB_DROPPED:
            return True
    return False


def looks_like_html(text: str) -> bool:
    """Return True if the text contains at least one HTML tag."""
    return bool(_TAG_RE.search(text))


def decode_entities(text: str) -> str:
    """Decode numeric and named character entities."""
    return html.unescape(text.replace("\r", ""))


def translate_bbcode(text: str) -> str:
    """Rewrite BBCode into the HTML equivalents the later rules understand."""
    if not looks_like_bbcode(text):
        return text

    text = _BB_MEDIA_RE.sub("", text)
    # Newlines around block codes are layout, not content
    text = _BB_BLOCK_NEWLINES_RE.sub(r"\1", text)
    text = text.replace("\n", "<br>")
    text = _BB_URL_WITH_TARGET_RE.sub(r'<a href="\1">\2</a>', text)
    text = _BB_URL_BARE_RE.sub(r"\1", text)

    def _replace(match: re.Match) -> str:
        closing, name = match.group(1), match.group(2).lower()
        if name in _BB_TO_HTML:
            tag = _BB_TO_HTML[name]
            if tag == "li" and closing:
                return ""
            return f"<{closing}{tag}>"
        if name in _BB_DROPPED:
            return "<br>" if name == "hr" and not closing else ""
        return match.group(0)

    return _BB_TAG_RE.sub(_replace, text)


def translate_pseudo_headings(text: str) -> str:
    """Turn styled heading blocks (``class="bb_h1"`` etc.) into ``<h2>``."""
    return _PSEUDO_HEADING_RE.sub(lambda m: f"<h2>{m.group(2)}</h2>", text)


def convert_line_breaks(text: str) -> str:
    """Breaks, paragraphs and list items become newlines and bullet lines."""
    if not looks_like_html(text):
        return text

    # Source whitespace inside HTML is not significant
    text = re.sub(r"\s+", " ", text)
    text = _BR_RE.sub("\n", text)
    text = _LI_OPEN_RE.sub("\n" + BULLET, text)
    text = _LI_CLOSE_RE.sub("", text)
    return _BLOCK_RE.sub("\n", text)


def convert_headings(text: str) -> str:
    """Render headings as ``\\n[ UPPER CASE ]\\n``."""

    def _replace(match: re.Match) -> str:
        inner = _TAG_RE.sub("", match.group(2))
        inner = " ".join(inner.split()).upper()
        return f"\n[ {inner} ]\n" if inner else "\n"

    return _HEADING_RE.sub(_replace, text)


def _wrap(marker: str) -> Callable[[re.Match], str]:
    def _replace(match: re.Match) -> str:
        inner = match.group(2)
        core = inner.strip()
        if not core:
            return inner
        lead = inner[: len(inner) - len(inner.lstrip())]
        trail = inner[len(inner.rstrip()):]
        return f"{lead}{marker}{core}{marker}{trail}"

    return _replace


def convert_emphasis(text: str) -> str:
    """Map bold, italic and underline to ``**``, ``*`` and ``__``."""
    for pattern, marker in _EMPHASIS:
        text = pattern.sub(_wrap(marker), text)
    return text


def collapse_links(text: str) -> str:
    """Keep only the visible text of hyperlinks."""
    return _LINK_RE.sub(r"\1", text)


def strip_remaining_markup(text: str) -> str:
    """Drop media, script and style blocks, then every leftover tag."""
    text = _COMMENT_RE.sub("", text)
    text = _DROP_BLOCK_RE.sub("", text)
    text = _IMG_RE.sub("", text)
    text = _DECLARATION_RE.sub("", text)
    return _TAG_RE.sub("", text)


def collapse_blank_lines(text: str) -> str:
    """Trim lines, collapse 3+ newlines to one blank line, trim the text."""
    lines = [_INLINE_SPACE_RE.sub(" ", line).strip() for line in text.split("\n")]
    text = _BLANK_RUN_RE.sub("\n\n", "\n".join(lines))
    return text.strip()


RULES: list[tuple[str, Callable[[str], str]]] = [
    ("decode_entities", decode_entities),
    ("translate_bbcode", translate_bbcode),
    ("translate_pseudo_headings", translate_pseudo_headings),
    ("convert_line_breaks", convert_line_breaks),
    ("convert_headings", convert_headings),
    ("convert_emphasis", convert_emphasis),
    ("collapse_links", collapse_links),
    ("strip_remaining_markup", strip_remaining_markup),
    ("collapse_blank_lines", collapse_blank_lines),
]


def normalize(raw_markup: str | None) -> str:
    """Convert HTML or BBCode markup into Discord text.

    Never raises: a rule that fails is logged and skipped, and the text
    produced so far carries on to the next rule.
    """
    if not raw_markup:
        return ""

    text = str(raw_markup)
    for name, rule in RULES:
        try:
            text = rule(text)
        except Exception:
            logger.warning("Normalization rule %s failed, skipping", name, exc_info=True)
    return text


def is_usable(text: str, min_length: int = MIN_CONTENT_LENGTH) -> bool:
    """Return True if normalized text is long enough to be worth posting."""
    return len((text or "").strip()) >= min_length
