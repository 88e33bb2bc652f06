from __future__ import annotations


class StudySparkError(Exception):
    """Base class for review-path failures."""


class NotFoundError(StudySparkError):
    """Raised when a card id does not resolve to a stored record."""

    def __init__(self, card_id: str):
        super().__init__(f"Flashcard not found: {card_id}")
        self.card_id = card_id


class InvalidInputError(StudySparkError):
    """Raised before any mutation when an input or stored card is unusable."""


class ConcurrentModificationError(StudySparkError):
    """Raised when a card changed between read and write; re-fetch and retry."""

    def __init__(self, card_id: str, expected_version: int):
        super().__init__(
            f"Flashcard {card_id} was modified concurrently "
            f"(expected version {expected_version})"
        )
        self.card_id = card_id
        self.expected_version = expected_version
