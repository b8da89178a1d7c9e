"""Splitting of announcement text into size-bounded Discord messages."""

DISCORD_MESSAGE_LIMIT = 2000
DEFAULT_SLICE_SIZE = 1900
HEADER_SEPARATOR = "\n\n"


def build_header(header_text: str, custom_emoji: str = "") -> str:
    """Header line of the first segment: optional emoji, then bold text."""
    header = f"**{header_text.strip()}**" if header_text.strip() else ""
    if custom_emoji:
        return f"{custom_emoji}  {header}".rstrip()
    return header


def chunk(
    header: str,
    body: str,
    limit: int = DISCORD_MESSAGE_LIMIT,
    slice_size: int = DEFAULT_SLICE_SIZE,
) -> list[str]:
    """Split header and body into segments of at most ``limit`` characters.

    The header appears only on the first segment. Later segments are fixed
    ``slice_size`` slices of the remaining body, kept below ``limit`` as a
    safety margin. Joining the body parts of all segments gives back ``body``.

    Raises:
        ValueError: If ``slice_size`` is not below ``limit`` or the header
            leaves no room for body text.
    """
    if slice_size <= 0 or slice_size >= limit:
        raise ValueError(f"slice_size must be in (0, {limit}), got {slice_size}")

    prefix = f"{header}{HEADER_SEPARATOR}"
    if len(prefix) + len(body) <= limit:
        return [prefix + body]

    first_room = limit - len(prefix)
    if first_room <= 0:
        raise ValueError(f"Header of {len(header)} characters leaves no room in {limit}")

    segments = [prefix + body[:first_room]]
    for start in range(first_room, len(body), slice_size):
        segments.append(body[start:start + slice_size])
    return segments

