from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class StudyStats(BaseModel):
    times_studied: int = 0
    times_correct: int = 0
    times_incorrect: int = 0
    average_study_time_seconds: float = 0.0  # running mean over study_sessions
    last_studied_at: datetime | None = None  # None = never reviewed
    mastery_level: int = 0  # 0–100, percent of all-time correct answers
    study_sessions: int = 0


class ReviewSchedule(BaseModel):
    next_review_at: datetime
    interval_days: float = 1.0  # may be fractional after growth
    ease_factor: float = 2.5    # floor 1.3, no upper cap
    consecutive_correct: int = 0


class FlashcardRecord(BaseModel):
    id: str
    owner_id: str
    topic: str
    question: str
    answer: str
    difficulty: Difficulty = Difficulty.MEDIUM
    category: str = ""
    tags: list[str] = Field(default_factory=list)  # sorted, unique
    stats: StudyStats
    schedule: ReviewSchedule
    is_active: bool = True
    version: int = 0  # bumped by every persisted review
    created_at: datetime
    updated_at: datetime


class FlashcardCreate(BaseModel):
    owner_id: str = Field(min_length=1)
    topic: str = Field(min_length=1)
    question: str = Field(min_length=1, max_length=1000)
    answer: str = Field(min_length=1, max_length=2000)
    difficulty: Difficulty = Difficulty.MEDIUM
    category: str = ""
    tags: list[str] = Field(default_factory=list)

    @field_validator("owner_id", "topic", "question", "answer", "category", mode="before")
    @classmethod
    def _strip(cls, value):
        # Length limits apply to the trimmed text
        return value.strip() if isinstance(value, str) else value

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, tags: list[str]) -> list[str]:
        return sorted({t.strip() for t in tags if t.strip()})


class FlashcardList(BaseModel):
    items: list[FlashcardRecord]
    total: int


class ReviewRequest(BaseModel):
    is_correct: bool
    study_time_seconds: float | None = None  # None = leave the average alone


class ActiveUpdate(BaseModel):
    is_active: bool


class TopicStats(BaseModel):
    topic: str
    card_count: int
    total_study_sessions: int
    avg_mastery_level: float
    avg_study_time_seconds: float


class MasteryBand(BaseModel):
    count: int = 0
    avg_study_time_seconds: float = 0.0


class MasteryBreakdown(BaseModel):
    mastered: MasteryBand = Field(default_factory=MasteryBand)
    learning: MasteryBand = Field(default_factory=MasteryBand)
    needs_review: MasteryBand = Field(default_factory=MasteryBand)


class FlashcardStats(BaseModel):
    owner_id: str
    total_cards: int
    due_now: int
    total_study_sessions: int
    total_correct: int
    total_incorrect: int
    avg_mastery_level: float
    avg_study_time_seconds: float
    mastery: MasteryBreakdown
    per_topic: list[TopicStats]
