import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from studyspark.config import settings
from studyspark.errors import ConcurrentModificationError, NotFoundError
from studyspark.models.flashcard import (
    Difficulty,
    FlashcardCreate,
    FlashcardRecord,
    FlashcardStats,
    MasteryBand,
    MasteryBreakdown,
    ReviewSchedule,
    StudyStats,
    TopicStats,
)
from studyspark.services.scheduler import (
    mastery_band,
    new_schedule,
    utcnow,
)

logger = logging.getLogger(__name__)

_db_path: Path | None = None

# Fixed width so that string order is time order in SQL comparisons.
_TS_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS flashcards (
    id                  TEXT PRIMARY KEY,
    owner_id            TEXT NOT NULL,
    topic               TEXT NOT NULL,
    question            TEXT NOT NULL,
    answer              TEXT NOT NULL,
    difficulty          TEXT NOT NULL DEFAULT 'medium',
    times_studied       INTEGER NOT NULL DEFAULT 0,
    times_correct       INTEGER NOT NULL DEFAULT 0,
    times_incorrect     INTEGER NOT NULL DEFAULT 0,
    average_study_time  REAL NOT NULL DEFAULT 0.0,
    last_studied_at     TEXT,
    mastery_level       INTEGER NOT NULL DEFAULT 0,
    study_sessions      INTEGER NOT NULL DEFAULT 0,
    next_review_at      TEXT NOT NULL,
    interval_days       REAL NOT NULL DEFAULT 1.0,
    ease_factor         REAL NOT NULL DEFAULT 2.5,
    consecutive_correct INTEGER NOT NULL DEFAULT 0,
    is_active           INTEGER NOT NULL DEFAULT 1,
    version             INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_flashcards_due
    ON flashcards(owner_id, is_active, next_review_at);
CREATE INDEX IF NOT EXISTS idx_flashcards_topic ON flashcards(topic);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
INSERT OR IGNORE INTO schema_version(version) VALUES (1);
"""

# Each card row carries its tags as a JSON array
_CARD_SELECT = """
SELECT f.*,
       (SELECT json_group_array(t.tag) FROM flashcard_tags t
        WHERE t.flashcard_id = f.id) AS tags_json
FROM flashcards f
"""


async def init_sqlite(data_dir: Path) -> None:
    global _db_path
    _db_path = data_dir / settings.sqlite_filename
    async with aiosqlite.connect(_db_path) as db:
        await db.executescript(SCHEMA_SQL)
        # Migration v1 → v2: categories, tags and the filter indexes
        cursor = await db.execute("SELECT MAX(version) FROM schema_version")
        current_version = (await cursor.fetchone())[0]
        if current_version < 2:
            await db.executescript("""
                ALTER TABLE flashcards ADD COLUMN category TEXT NOT NULL DEFAULT '';
                CREATE INDEX IF NOT EXISTS idx_flashcards_category ON flashcards(category);
                CREATE INDEX IF NOT EXISTS idx_flashcards_difficulty ON flashcards(difficulty);
                CREATE TABLE IF NOT EXISTS flashcard_tags (
                    flashcard_id TEXT NOT NULL REFERENCES flashcards(id) ON DELETE CASCADE,
                    tag          TEXT NOT NULL,
                    PRIMARY KEY (flashcard_id, tag)
                );
                CREATE INDEX IF NOT EXISTS idx_flashcard_tags_tag ON flashcard_tags(tag);
                INSERT OR IGNORE INTO schema_version(version) VALUES (2);
            """)
        await db.commit()


async def get_db() -> AsyncIterator[aiosqlite.Connection]:
    assert _db_path is not None, "SQLite not initialized"
    async with aiosqlite.connect(_db_path) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys=ON")
        yield db


def _ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _parse_ts(value: str) -> datetime:
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)


# --- Flashcards ---


def _row_to_flashcard(row: aiosqlite.Row) -> FlashcardRecord:
    d = dict(row)
    last_studied = d["last_studied_at"]
    return FlashcardRecord(
        id=d["id"],
        owner_id=d["owner_id"],
        topic=d["topic"],
        question=d["question"],
        answer=d["answer"],
        difficulty=d["difficulty"],
        category=d["category"],
        tags=sorted(json.loads(d["tags_json"] or "[]")),
        stats=StudyStats(
            times_studied=d["times_studied"],
            times_correct=d["times_correct"],
            times_incorrect=d["times_incorrect"],
            average_study_time_seconds=d["average_study_time"],
            last_studied_at=_parse_ts(last_studied) if last_studied else None,
            mastery_level=d["mastery_level"],
            study_sessions=d["study_sessions"],
        ),
        schedule=ReviewSchedule(
            next_review_at=_parse_ts(d["next_review_at"]),
            interval_days=d["interval_days"],
            ease_factor=d["ease_factor"],
            consecutive_correct=d["consecutive_correct"],
        ),
        is_active=bool(d["is_active"]),
        version=d["version"],
        created_at=_parse_ts(d["created_at"]),
        updated_at=_parse_ts(d["updated_at"]),
    )


async def create_flashcard(
    db: aiosqlite.Connection,
    card: FlashcardCreate,
    now: datetime | None = None,
) -> FlashcardRecord:
    """
    Insert a card with zeroed stats and a schedule that is due immediately.

    Text fields arrive already trimmed and length-checked by FlashcardCreate.
    """
    now = now or utcnow()
    card_id = str(uuid.uuid4())
    schedule = new_schedule(now)
    await db.execute(
        """INSERT INTO flashcards
           (id, owner_id, topic, question, answer, difficulty, category,
            next_review_at, interval_days, ease_factor, consecutive_correct,
            created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            card_id,
            card.owner_id,
            card.topic,
            card.question,
            card.answer,
            card.difficulty.value,
            card.category,
            _ts(schedule.next_review_at),
            schedule.interval_days,
            schedule.ease_factor,
            schedule.consecutive_correct,
            _ts(now),
            _ts(now),
        ),
    )
    if card.tags:
        await db.executemany(
            "INSERT OR IGNORE INTO flashcard_tags(flashcard_id, tag) VALUES (?, ?)",
            [(card_id, tag) for tag in card.tags],
        )
    await db.commit()
    return await get_flashcard(db, card_id)  # type: ignore[return-value]


async def get_flashcard(db: aiosqlite.Connection, card_id: str) -> FlashcardRecord | None:
    cursor = await db.execute(f"{_CARD_SELECT} WHERE f.id = ?", (card_id,))
    row = await cursor.fetchone()
    return _row_to_flashcard(row) if row else None


async def list_flashcards(
    db: aiosqlite.Connection,
    owner_id: str,
    offset: int = 0,
    limit: int = 50,
    include_inactive: bool = False,
    topic: str | None = None,
    category: str | None = None,
    difficulty: Difficulty | None = None,
    tag: str | None = None,
) -> tuple[list[FlashcardRecord], int]:
    """One page of an owner's cards, oldest first, plus the filtered total."""
    clauses = ["owner_id = ?"]
    params: list = [owner_id]
    if not include_inactive:
        clauses.append("is_active = 1")
    if topic is not None:
        clauses.append("topic = ?")
        params.append(topic)
    if category is not None:
        clauses.append("category = ?")
        params.append(category)
    if difficulty is not None:
        clauses.append("difficulty = ?")
        params.append(Difficulty(difficulty).value)
    if tag is not None:
        clauses.append("id IN (SELECT flashcard_id FROM flashcard_tags WHERE tag = ?)")
        params.append(tag)
    where = " AND ".join(clauses)

    cursor = await db.execute(
        f"{_CARD_SELECT} WHERE {where} "  # noqa: S608
        "ORDER BY created_at ASC, id ASC LIMIT ? OFFSET ?",
        (*params, limit, offset),
    )
    rows = await cursor.fetchall()
    count_cursor = await db.execute(
        f"SELECT COUNT(*) FROM flashcards WHERE {where}",  # noqa: S608
        params,
    )
    count_row = await count_cursor.fetchone()
    total = count_row[0] if count_row else 0
    return [_row_to_flashcard(r) for r in rows], total


async def get_due_flashcards(
    db: aiosqlite.Connection,
    owner_id: str,
    now: datetime,
    limit: int = 20,
) -> list[FlashcardRecord]:
    """Active cards of one owner due at `now`, most overdue first."""
    cursor = await db.execute(
        f"""{_CARD_SELECT}
           WHERE f.owner_id = ? AND f.is_active = 1 AND f.next_review_at <= ?
           ORDER BY f.next_review_at ASC, f.id ASC
           LIMIT ?""",
        (owner_id, _ts(now), limit),
    )
    rows = await cursor.fetchall()
    return [_row_to_flashcard(r) for r in rows]


async def update_flashcard_review(
    db: aiosqlite.Connection,
    card: FlashcardRecord,
    expected_version: int,
) -> FlashcardRecord:
    """
    Write the stats and schedule of a reviewed card.

    Only this function writes those columns. The write is conditional on the
    stored version still being `expected_version`, so two reviews racing on
    the same card cannot overwrite each other's increments.
    """
    stats, schedule = card.stats, card.schedule
    cursor = await db.execute(
        """UPDATE flashcards
           SET times_studied = ?, times_correct = ?, times_incorrect = ?,
               average_study_time = ?, last_studied_at = ?, mastery_level = ?,
               study_sessions = ?, next_review_at = ?, interval_days = ?,
               ease_factor = ?, consecutive_correct = ?,
               version = version + 1, updated_at = ?
           WHERE id = ? AND version = ?""",
        (
            stats.times_studied,
            stats.times_correct,
            stats.times_incorrect,
            stats.average_study_time_seconds,
            _ts(stats.last_studied_at) if stats.last_studied_at else None,
            stats.mastery_level,
            stats.study_sessions,
            _ts(schedule.next_review_at),
            schedule.interval_days,
            schedule.ease_factor,
            schedule.consecutive_correct,
            _ts(utcnow()),
            card.id,
            expected_version,
        ),
    )
    await db.commit()
    if (cursor.rowcount or 0) == 0:
        if await get_flashcard(db, card.id) is None:
            raise NotFoundError(card.id)
        logger.warning(
            "Stale review write rejected for card %s (expected version %d)",
            card.id, expected_version,
        )
        raise ConcurrentModificationError(card.id, expected_version)
    return await get_flashcard(db, card.id)  # type: ignore[return-value]


async def set_flashcard_active(
    db: aiosqlite.Connection, card_id: str, is_active: bool
) -> FlashcardRecord | None:
    cursor = await db.execute(
        "UPDATE flashcards SET is_active = ?, updated_at = ? WHERE id = ?",
        (int(is_active), _ts(utcnow()), card_id),
    )
    await db.commit()
    if (cursor.rowcount or 0) == 0:
        return None
    return await get_flashcard(db, card_id)


async def get_flashcard_stats(
    db: aiosqlite.Connection, owner_id: str, now: datetime
) -> FlashcardStats:
    """Roll up the scheduler-maintained counters across one owner's active cards."""
    cursor = await db.execute(
        """SELECT COUNT(*),
                  SUM(CASE WHEN next_review_at <= ? THEN 1 ELSE 0 END),
                  COALESCE(SUM(study_sessions), 0),
                  COALESCE(SUM(times_correct), 0),
                  COALESCE(SUM(times_incorrect), 0),
                  COALESCE(AVG(mastery_level), 0.0),
                  COALESCE(AVG(average_study_time), 0.0)
           FROM flashcards
           WHERE owner_id = ? AND is_active = 1""",
        (_ts(now), owner_id),
    )
    row = await cursor.fetchone()
    total_cards = row[0] if row else 0

    band_cursor = await db.execute(
        """SELECT mastery_level, COUNT(*), SUM(average_study_time) FROM flashcards
           WHERE owner_id = ? AND is_active = 1
           GROUP BY mastery_level""",
        (owner_id,),
    )
    # band -> [card count, summed per-card average study time]
    totals: dict[str, list] = {"mastered": [0, 0.0], "learning": [0, 0.0], "needs_review": [0, 0.0]}
    for level, count, time_sum in await band_cursor.fetchall():
        band = totals[mastery_band(level)]
        band[0] += count
        band[1] += time_sum or 0.0
    bands = {
        name: MasteryBand(
            count=count,
            avg_study_time_seconds=time_sum / count if count else 0.0,
        )
        for name, (count, time_sum) in totals.items()
    }

    topic_cursor = await db.execute(
        """SELECT topic,
                  COUNT(*),
                  SUM(study_sessions) AS sessions,
                  AVG(mastery_level),
                  AVG(average_study_time)
           FROM flashcards
           WHERE owner_id = ? AND is_active = 1
           GROUP BY topic
           ORDER BY sessions DESC, topic ASC
           LIMIT 10""",
        (owner_id,),
    )
    topic_rows = await topic_cursor.fetchall()
    per_topic = [
        TopicStats(
            topic=r[0],
            card_count=r[1],
            total_study_sessions=r[2] or 0,
            avg_mastery_level=r[3] or 0.0,
            avg_study_time_seconds=r[4] or 0.0,
        )
        for r in topic_rows
    ]

    return FlashcardStats(
        owner_id=owner_id,
        total_cards=total_cards,
        due_now=(row[1] or 0) if row else 0,
        total_study_sessions=row[2] if row else 0,
        total_correct=row[3] if row else 0,
        total_incorrect=row[4] if row else 0,
        avg_mastery_level=row[5] if row else 0.0,
        avg_study_time_seconds=row[6] if row else 0.0,
        mastery=MasteryBreakdown(**bands),
        per_topic=per_topic,
    )
