"""API routes for per-user flashcard sets and generation."""

import logging
import random
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from backend.api.deps import get_current_user, get_store
from backend.api.schemas import (
    FlashcardSchema,
    FlashcardSetSchema,
    GenerateRequest,
    GenerateResponse,
    UserResponse,
)
from backend.api.server_store import ServerStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["flashcards"])

Generator = Callable[[GenerateRequest], Awaitable[FlashcardSetSchema]]


@router.get("/flashcards/sets", response_model=list[FlashcardSetSchema])
async def list_sets(
    user: UserResponse = Depends(get_current_user),
    store: ServerStore = Depends(get_store),
) -> list[FlashcardSetSchema]:
    return list(store.user_sets(user.user_id).values())


@router.post("/flashcards/sets", response_model=FlashcardSetSchema, status_code=201)
async def save_set(
    flashcard_set: FlashcardSetSchema,
    user: UserResponse = Depends(get_current_user),
    store: ServerStore = Depends(get_store),
) -> FlashcardSetSchema:
    """Create or replace a set; the id is the client's."""
    if any(card.set_id != flashcard_set.id for card in flashcard_set.flashcards):
        raise HTTPException(status_code=400, detail="Flashcards must belong to the set")
    store.user_sets(user.user_id)[flashcard_set.id] = flashcard_set
    return flashcard_set


@router.get("/flashcards/sets/{set_id}", response_model=FlashcardSetSchema)
async def get_set(
    set_id: str,
    user: UserResponse = Depends(get_current_user),
    store: ServerStore = Depends(get_store),
) -> FlashcardSetSchema:
    flashcard_set = store.user_sets(user.user_id).get(set_id)
    if flashcard_set is None:
        raise HTTPException(status_code=404, detail="Flashcard set not found")
    return flashcard_set


@router.delete("/flashcards/sets/{set_id}", status_code=204)
async def delete_set(
    set_id: str,
    user: UserResponse = Depends(get_current_user),
    store: ServerStore = Depends(get_store),
) -> Response:
    if store.user_sets(user.user_id).pop(set_id, None) is None:
        raise HTTPException(status_code=404, detail="Flashcard set not found")
    return Response(status_code=204)


@router.get("/flashcards/sets/{set_id}/randomized", response_model=list[FlashcardSchema])
async def randomized(
    set_id: str,
    user: UserResponse = Depends(get_current_user),
    store: ServerStore = Depends(get_store),
) -> list[FlashcardSchema]:
    flashcard_set = store.user_sets(user.user_id).get(set_id)
    if flashcard_set is None:
        raise HTTPException(status_code=404, detail="Flashcard set not found")
    return random.sample(flashcard_set.flashcards, k=len(flashcard_set.flashcards))


@router.post("/generate", response_model=GenerateResponse)
async def generate(
    body: GenerateRequest,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> GenerateResponse | JSONResponse:
    """Delegate to the configured generator; generation itself is external."""
    generator: Generator | None = getattr(request.app.state, "generator", None)
    if generator is None:
        error = GenerateResponse(error="Flashcard generation is not configured")
        return JSONResponse(status_code=503, content=error.model_dump(by_alias=True))
    flashcard_set = await generator(body)
    logger.info("Generated %d cards on %r for user %s", len(flashcard_set.flashcards), body.topic, user.user_id)
    return GenerateResponse(flashcard_set=flashcard_set)
