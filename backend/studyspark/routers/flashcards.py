"""
Flashcard review router.

Endpoints:
  POST  /flashcards/                  — create a card (due immediately)
  GET   /flashcards/                  — list an owner's cards (topic/category/difficulty/tag filters)
  GET   /flashcards/due               — owner's due cards, most overdue first
  GET   /flashcards/stats             — owner's mastery / study-time summary
  GET   /flashcards/{id}              — single card
  POST  /flashcards/{id}/review       — record a correct/incorrect outcome
  PATCH /flashcards/{id}/active       — activate / deactivate a card
"""
from __future__ import annotations

import aiosqlite
from fastapi import APIRouter, Depends, HTTPException, Query

from studyspark.config import settings
from studyspark.db.sqlite import (
    create_flashcard,
    get_db,
    get_flashcard,
    get_flashcard_stats,
    list_flashcards,
    set_flashcard_active,
)
from studyspark.errors import (
    ConcurrentModificationError,
    InvalidInputError,
    NotFoundError,
)
from studyspark.models.flashcard import (
    ActiveUpdate,
    Difficulty,
    FlashcardCreate,
    FlashcardList,
    FlashcardRecord,
    FlashcardStats,
    ReviewRequest,
)
from studyspark.services import review_session
from studyspark.services.scheduler import utcnow

router = APIRouter()


@router.post("/", response_model=FlashcardRecord, status_code=201)
async def create_card(
    body: FlashcardCreate,
    db: aiosqlite.Connection = Depends(get_db),
) -> FlashcardRecord:
    return await create_flashcard(db, body)


@router.get("/", response_model=FlashcardList)
async def list_cards(
    owner_id: str,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    include_inactive: bool = False,
    topic: str | None = None,
    category: str | None = None,
    difficulty: Difficulty | None = None,
    tag: str | None = None,
    db: aiosqlite.Connection = Depends(get_db),
) -> FlashcardList:
    """List an owner's cards, optionally narrowed by topic, category, difficulty or tag."""
    items, total = await list_flashcards(
        db,
        owner_id,
        offset=offset,
        limit=limit,
        include_inactive=include_inactive,
        topic=topic,
        category=category,
        difficulty=difficulty,
        tag=tag,
    )
    return FlashcardList(items=items, total=total)


@router.get("/due", response_model=FlashcardList)
async def get_due(
    owner_id: str,
    limit: int | None = Query(default=None, ge=1),
    db: aiosqlite.Connection = Depends(get_db),
) -> FlashcardList:
    """Return the owner's cards due now, most overdue first."""
    if limit is not None and limit > settings.due_cards_max_limit:
        raise HTTPException(
            status_code=422,
            detail=f"limit must not exceed {settings.due_cards_max_limit}",
        )
    items = await review_session.select_due_cards(db, owner_id, limit=limit)
    return FlashcardList(items=items, total=len(items))


@router.get("/stats", response_model=FlashcardStats)
async def card_stats(
    owner_id: str,
    db: aiosqlite.Connection = Depends(get_db),
) -> FlashcardStats:
    return await get_flashcard_stats(db, owner_id, utcnow())


@router.get("/{card_id}", response_model=FlashcardRecord)
async def get_card(
    card_id: str,
    db: aiosqlite.Connection = Depends(get_db),
) -> FlashcardRecord:
    card = await get_flashcard(db, card_id)
    if not card:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return card


@router.post("/{card_id}/review", response_model=FlashcardRecord)
async def review_card(
    card_id: str,
    body: ReviewRequest,
    db: aiosqlite.Connection = Depends(get_db),
) -> FlashcardRecord:
    """Record one review outcome and return the rescheduled card."""
    try:
        return await review_session.record_outcome(
            db, card_id, body.is_correct, body.study_time_seconds
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    except InvalidInputError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ConcurrentModificationError:
        raise HTTPException(
            status_code=409,
            detail="Flashcard was modified concurrently; fetch it again and retry",
        )


@router.patch("/{card_id}/active", response_model=FlashcardRecord)
async def update_active(
    card_id: str,
    body: ActiveUpdate,
    db: aiosqlite.Connection = Depends(get_db),
) -> FlashcardRecord:
    updated = await set_flashcard_active(db, card_id, body.is_active)
    if not updated:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return updated
