"""
Review session driver.

Glue between storage and the pure scheduler:
  1. resolve the card by id (NotFoundError if missing)
  2. capture `now` once
  3. run scheduler.record_outcome()
  4. persist with a version guard (ConcurrentModificationError on a lost race)

Retries are the caller's business: a retry must start again from step 1.
"""
from __future__ import annotations

import logging
from datetime import datetime

import aiosqlite

from studyspark.config import settings
from studyspark.db.sqlite import (
    get_due_flashcards,
    get_flashcard,
    update_flashcard_review,
)
from studyspark.errors import InvalidInputError, NotFoundError
from studyspark.models.flashcard import FlashcardRecord
from studyspark.services import scheduler

logger = logging.getLogger(__name__)


async def record_outcome(
    db: aiosqlite.Connection,
    card_id: str,
    is_correct: bool,
    study_time_seconds: float | None = None,
    now: datetime | None = None,
) -> FlashcardRecord:
    card = await get_flashcard(db, card_id)
    if card is None:
        raise NotFoundError(card_id)

    now = now or scheduler.utcnow()
    reviewed = scheduler.record_outcome(card, is_correct, now, study_time_seconds)
    saved = await update_flashcard_review(db, reviewed, expected_version=card.version)

    logger.info(
        "Reviewed card %s (%s): interval %.2fd, ease %.2f, mastery %d%%",
        card_id,
        "correct" if is_correct else "incorrect",
        saved.schedule.interval_days,
        saved.schedule.ease_factor,
        saved.stats.mastery_level,
    )
    return saved


async def select_due_cards(
    db: aiosqlite.Connection,
    owner_id: str,
    limit: int | None = None,
    now: datetime | None = None,
) -> list[FlashcardRecord]:
    """Return the owner's due cards, most overdue first. Read-only."""
    if limit is None:
        limit = settings.due_cards_limit
    if limit < 1:
        raise InvalidInputError(f"limit must be a positive integer, got {limit}")
    return await get_due_flashcards(db, owner_id, now or scheduler.utcnow(), limit)
