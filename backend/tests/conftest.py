"""
Shared test fixtures.

Provides:
- A fixed, timezone-aware "now"
- An in-memory FlashcardRecord factory (no database)
- A fresh SQLite database per test under tmp_path
"""

from datetime import datetime, timezone

import pytest

from studyspark.db.sqlite import get_db, init_sqlite
from studyspark.models.flashcard import FlashcardRecord, ReviewSchedule, StudyStats

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_card():
    """Build a FlashcardRecord; `stats` / `schedule` dicts override the defaults."""

    def _make(
        card_id: str = "card-1",
        owner_id: str = "student-1",
        is_active: bool = True,
        stats: dict | None = None,
        schedule: dict | None = None,
    ) -> FlashcardRecord:
        schedule_fields = {"next_review_at": NOW}
        schedule_fields.update(schedule or {})
        return FlashcardRecord(
            id=card_id,
            owner_id=owner_id,
            topic="Biology",
            question="What organelle produces ATP?",
            answer="The mitochondrion.",
            stats=StudyStats(**(stats or {})),
            schedule=ReviewSchedule(**schedule_fields),
            is_active=is_active,
            created_at=NOW,
            updated_at=NOW,
        )

    return _make


@pytest.fixture
async def db(tmp_path):
    """Open a connection to a freshly initialised database."""
    await init_sqlite(tmp_path)
    async for conn in get_db():
        yield conn
