"""Boundary-aware splitting of extracted document text into overlapping chunks."""

DEFAULT_MAX_CHARS = 2000
DEFAULT_OVERLAP_CHARS = 200
BREAK_CHARACTERS = (".", "\n", " ")


def _find_break(text: str, start: int, end: int) -> int:
    """Index of the last period, newline or space in text[start:end], -1 if none."""
    return max(text.rfind(char, start, end) for char in BREAK_CHARACTERS)


def chunk_text(text: str, max_chars: int = DEFAULT_MAX_CHARS, overlap_chars: int = DEFAULT_OVERLAP_CHARS) -> list[str]:
    """Split text into overlapping, trimmed chunks of at most max_chars characters.

    A window that ends inside the text is cut after the last period, newline or
    space if that break lies in the back half of the window; otherwise it is cut
    hard at max_chars. The next window starts overlap_chars before the previous
    window's end. Chunks that are empty after trimming are dropped.

    Args:
        text (str): The extracted document text.
        max_chars (int): Maximum window length.
        overlap_chars (int): Characters shared between consecutive windows.

    Returns:
        list[str]: Chunks in document order.

    Raises:
        ValueError: If max_chars is not positive or overlap_chars is not in [0, max_chars).
    """
    if max_chars < 1:
        raise ValueError(f"max_chars must be positive, got {max_chars}.")
    if overlap_chars < 0 or overlap_chars >= max_chars:
        raise ValueError(f"overlap_chars must be in [0, {max_chars}), got {overlap_chars}.")

    chunks: list[str] = []
    text_length = len(text)
    start = 0

    while start < text_length:
        end = start + max_chars

        if end < text_length:
            split_index = _find_break(text, start, end)
            if split_index - start >= max_chars * 0.5:
                # keep the delimiter in this chunk
                end = split_index + 1

        chunk = text[start:min(end, text_length)].strip()
        if chunk:
            chunks.append(chunk)

        if end >= text_length:
            break

        next_start = end - overlap_chars
        if next_start <= end - max_chars or next_start <= start:
            # no progress possible with this overlap, continue without one
            next_start = end
        start = next_start

    return chunks
