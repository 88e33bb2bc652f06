"""
Spaced-repetition scheduler.

Pure state transition for a single flashcard review:
  correct   → interval *= ease (floor 1 day), ease += 0.1
  incorrect → interval  = 1 day,             ease -= 0.2
Ease never drops below 1.3. Lapses cost twice what a correct answer earns.

Nothing here reads the clock or touches storage: callers capture `now`
once via utcnow() and persist the returned record themselves.
"""
from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from studyspark.errors import InvalidInputError
from studyspark.models.flashcard import FlashcardRecord, ReviewSchedule

MIN_EASE_FACTOR = 1.3
MIN_INTERVAL_DAYS = 1.0
DEFAULT_EASE_FACTOR = 2.5
DEFAULT_INTERVAL_DAYS = 1.0
EASE_BONUS = 0.1
EASE_PENALTY = 0.2

MASTERED_THRESHOLD = 80
LEARNING_THRESHOLD = 50

# Latest representable review date; a card scheduled here is effectively retired
MAX_REVIEW_AT = datetime.max.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_schedule(now: datetime) -> ReviewSchedule:
    """Schedule for a freshly created card: due immediately."""
    return ReviewSchedule(
        next_review_at=now,
        interval_days=DEFAULT_INTERVAL_DAYS,
        ease_factor=DEFAULT_EASE_FACTOR,
        consecutive_correct=0,
    )


def mastery_level(times_correct: int, times_studied: int) -> int:
    if times_studied <= 0:
        return 0
    # Half-up, not banker's rounding: 12.5 → 13
    return int(math.floor(100 * times_correct / times_studied + 0.5))


def mastery_band(level: float) -> str:
    if level >= MASTERED_THRESHOLD:
        return "mastered"
    if level >= LEARNING_THRESHOLD:
        return "learning"
    return "needs_review"


def next_interval_and_ease(
    is_correct: bool,
    interval_days: float,
    ease_factor: float,
) -> tuple[float, float]:
    """Return (new_interval_days, new_ease_factor) for one outcome."""
    if is_correct:
        new_interval = max(MIN_INTERVAL_DAYS, interval_days * ease_factor)
        new_ease = max(MIN_EASE_FACTOR, ease_factor + EASE_BONUS)
    else:
        new_interval = MIN_INTERVAL_DAYS
        new_ease = max(MIN_EASE_FACTOR, ease_factor - EASE_PENALTY)
    return new_interval, new_ease


def _check_card(card: FlashcardRecord) -> None:
    stats, schedule = card.stats, card.schedule
    counters = {
        "times_studied": stats.times_studied,
        "times_correct": stats.times_correct,
        "times_incorrect": stats.times_incorrect,
        "study_sessions": stats.study_sessions,
        "consecutive_correct": schedule.consecutive_correct,
    }
    for name, value in counters.items():
        if value < 0:
            raise InvalidInputError(f"Card {card.id}: {name} is negative ({value})")
    if stats.times_studied != stats.times_correct + stats.times_incorrect:
        raise InvalidInputError(
            f"Card {card.id}: times_studied ({stats.times_studied}) != "
            f"times_correct + times_incorrect "
            f"({stats.times_correct} + {stats.times_incorrect})"
        )
    reals = {
        "average_study_time_seconds": stats.average_study_time_seconds,
        "ease_factor": schedule.ease_factor,
        "interval_days": schedule.interval_days,
    }
    for name, value in reals.items():
        if not math.isfinite(value):
            raise InvalidInputError(f"Card {card.id}: {name} is not finite ({value})")
    if stats.average_study_time_seconds < 0:
        raise InvalidInputError(f"Card {card.id}: average study time is negative")
    if schedule.ease_factor < MIN_EASE_FACTOR:
        raise InvalidInputError(
            f"Card {card.id}: ease_factor {schedule.ease_factor} below {MIN_EASE_FACTOR}"
        )
    if schedule.interval_days < MIN_INTERVAL_DAYS:
        raise InvalidInputError(
            f"Card {card.id}: interval_days {schedule.interval_days} below {MIN_INTERVAL_DAYS}"
        )


def record_outcome(
    card: FlashcardRecord,
    is_correct: bool,
    now: datetime,
    study_time_seconds: float | None = None,
) -> FlashcardRecord:
    """
    Apply one review outcome to a card and return the updated copy.

    The input card is left untouched. Raises InvalidInputError (before any
    change is computed) for a negative or non-finite study time or a card
    whose stored state already breaks an invariant.

    The stored interval never exceeds the distance from `now` to
    MAX_REVIEW_AT, so a long streak of correct answers saturates instead
    of overflowing to infinity.
    """
    if study_time_seconds is not None and (
        not math.isfinite(study_time_seconds) or study_time_seconds < 0
    ):
        raise InvalidInputError(
            f"study_time_seconds must be a finite non-negative number, got {study_time_seconds}"
        )
    _check_card(card)

    stats, schedule = card.stats, card.schedule

    times_studied = stats.times_studied + 1
    study_sessions = stats.study_sessions + 1
    times_correct = stats.times_correct
    times_incorrect = stats.times_incorrect
    if is_correct:
        times_correct += 1
        consecutive_correct = schedule.consecutive_correct + 1
    else:
        times_incorrect += 1
        consecutive_correct = 0

    average = stats.average_study_time_seconds
    if study_time_seconds is not None:
        # study_sessions is already incremented, so this is the mean over all samples
        average += (study_time_seconds - average) / study_sessions

    interval_days, ease_factor = next_interval_and_ease(
        is_correct, schedule.interval_days, schedule.ease_factor
    )
    interval_days = min(interval_days, max_interval_days(now))

    new_stats = stats.model_copy(update={
        "times_studied": times_studied,
        "times_correct": times_correct,
        "times_incorrect": times_incorrect,
        "average_study_time_seconds": average,
        "last_studied_at": now,
        "mastery_level": mastery_level(times_correct, times_studied),
        "study_sessions": study_sessions,
    })
    next_schedule = ReviewSchedule(
        next_review_at=_review_at(now, interval_days),
        interval_days=interval_days,
        ease_factor=ease_factor,
        consecutive_correct=consecutive_correct,
    )
    return card.model_copy(update={"stats": new_stats, "schedule": next_schedule})


def max_interval_days(now: datetime) -> float:
    """Largest interval, in days, whose review date is still representable."""
    return (MAX_REVIEW_AT - now) / timedelta(days=1)


def _review_at(now: datetime, interval_days: float) -> datetime:
    try:
        return now + timedelta(days=interval_days)
    except OverflowError:
        # A capped interval can round a microsecond past the end
        return MAX_REVIEW_AT


def is_due(card: FlashcardRecord, now: datetime) -> bool:
    return card.is_active and card.schedule.next_review_at <= now


def select_due_cards(
    cards: Iterable[FlashcardRecord],
    owner_id: str,
    now: datetime,
    limit: int = 20,
) -> list[FlashcardRecord]:
    """Active cards of `owner_id` due at `now`, most overdue first, at most `limit`."""
    if limit < 1:
        raise InvalidInputError(f"limit must be a positive integer, got {limit}")
    due = [c for c in cards if c.owner_id == owner_id and is_due(c, now)]
    due.sort(key=lambda c: (c.schedule.next_review_at, c.id))
    return due[:limit]
