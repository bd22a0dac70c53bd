"""Size budgeting for text sent to the model and written to spreadsheet cells."""

from __future__ import annotations

# Google Sheets rejects cells over 50,000 characters
MAX_CELL_LENGTH = 49999


def truncate(text: str | None, max_length: int = MAX_CELL_LENGTH) -> str:
    """Return at most ``max_length`` leading characters of ``text``.

    Text that already fits is returned unchanged. ``None`` becomes ``""``.
    """
    if text is None:
        return ""
    if max_length < 0:
        raise ValueError(f"max_length must be non-negative, got {max_length}")
    if len(text) > max_length:
        return text[:max_length]
    return text
