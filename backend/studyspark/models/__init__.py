from studyspark.models.flashcard import (
    ActiveUpdate,
    Difficulty,
    FlashcardCreate,
    FlashcardList,
    FlashcardRecord,
    FlashcardStats,
    MasteryBand,
    MasteryBreakdown,
    ReviewRequest,
    ReviewSchedule,
    StudyStats,
    TopicStats,
)

__all__ = [
    "ActiveUpdate",
    "Difficulty",
    "FlashcardCreate",
    "FlashcardList",
    "FlashcardRecord",
    "FlashcardStats",
    "MasteryBand",
    "MasteryBreakdown",
    "ReviewRequest",
    "ReviewSchedule",
    "StudyStats",
    "TopicStats",
]
