"""Input and output checks shared by embedding providers."""

from __future__ import annotations

from trove.exceptions import InvalidInputError, ProviderError


def require_text(text: str) -> None:
    """Reject empty or whitespace-only input."""
    if not isinstance(text, str) or not text.strip():
        msg = "Cannot embed empty text"
        raise InvalidInputError(msg)


def check_dimensions(vectors: list[list[float]], expected: int, model: str) -> list[list[float]]:
    """Return *vectors* unchanged, or raise if any has the wrong length."""
    for vector in vectors:
        if len(vector) != expected:
            msg = (
                f"Model {model!r} returned a vector of {len(vector)} dimensions, "
                f"expected {expected}"
            )
            raise ProviderError(msg, transient=False)
    return vectors
