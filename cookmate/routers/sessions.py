"""Cooking session API router.

Endpoints:
- POST /sessions/start - Start a session for a recipe
- GET /sessions/user/active - Active + paused sessions
- GET /sessions/user/history - Paginated history
- GET /sessions/{id} - Session (cache first, then database)
- PUT /sessions/{id}/update - Write-through update
- DELETE /sessions/{id}/end - Complete + update progress
- GET /sessions/{id}/events - SSE stream of session events
- POST/GET/DELETE /sessions/{id}/timers - Countdown timers
"""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user
from ..models import User
from ..realtime.session_bus import subscribe_session, unsubscribe_session
from ..schemas import (
    ProgressOut,
    SessionEndRequest,
    SessionStartRequest,
    SessionUpdateRequest,
    TimerCreateRequest,
    ok,
)
from ..services.session_orchestrator import DEFAULT_PAGE_SIZE, SessionOrchestrator

logger = logging.getLogger("cookmate.sessions")

router = APIRouter(prefix="/sessions")

PING_INTERVAL_SEC = 15


def _dump(model) -> dict:
    return model.model_dump(mode="json", exclude_none=True)


@router.post("/start", status_code=201)
async def start_session(
    body: SessionStartRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    session = await SessionOrchestrator(db).start_session(
        user,
        recipe_id=str(body.recipe_id),
        recipe_name=body.recipe_name,
        total_steps=body.total_steps,
        initial_context=body.context,
    )
    return ok({"session": _dump(session)})


# /user/* must be declared before /{session_id}
@router.get("/user/active")
def active_sessions(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    sessions = SessionOrchestrator(db).list_active_sessions(user.id)
    return ok({"sessions": [_dump(s) for s in sessions]}, results=len(sessions))


@router.get("/user/history")
def session_history(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    history = SessionOrchestrator(db).list_session_history(user.id, page=page, page_size=limit)
    return ok(
        {"sessions": [_dump(s) for s in history["sessions"]]},
        results=history["results"],
        total_pages=history["total_pages"],
        current_page=history["current_page"],
    )


@router.get("/{session_id}")
async def get_session(session_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    session = await SessionOrchestrator(db).get_session(session_id, user.id)
    return ok({"session": _dump(session)})


@router.put("/{session_id}/update")
async def update_session(
    session_id: str,
    body: SessionUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    updates = body.model_dump(exclude_unset=True, exclude_none=True)
    session = await SessionOrchestrator(db).update_session(session_id, user.id, updates)
    return ok({"session": _dump(session)})


@router.delete("/{session_id}/end")
async def end_session(
    session_id: str,
    body: Optional[SessionEndRequest] = Body(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    feedback = body.feedback.model_dump() if body and body.feedback else None
    session, progress = await SessionOrchestrator(db).end_session(session_id, user.id, feedback)
    return ok({
        "session": _dump(session),
        "progress": ProgressOut.model_validate(progress).model_dump(mode="json"),
    })


@router.get("/{session_id}/events")
async def session_events(
    request: Request,
    session_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Server-Sent Events for a session via Redis Pub/Sub."""
    await SessionOrchestrator(db).get_session(session_id, user.id)

    async def event_generator():
        pubsub = await subscribe_session(session_id)
        last_ping = asyncio.get_running_loop().time()

        try:
            while True:
                if await request.is_disconnected():
                    break

                try:
                    msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    if msg:
                        event = json.loads(msg["data"])
                        yield f"event: {event.get('type', 'message')}\ndata: {json.dumps(event)}\n\n"
                except Exception as e:
                    logger.error(f"Redis PubSub error on session {session_id}: {e}")
                    await asyncio.sleep(1)

                now = asyncio.get_running_loop().time()
                if now - last_ping > PING_INTERVAL_SEC:
                    yield "event: ping\ndata: {}\n\n"
                    last_ping = now
        finally:
            await unsubscribe_session(pubsub, session_id)

    return StreamingResponse(event_generator(), media_type="text/event-stream")


# --- Timers ---

@router.post("/{session_id}/timers", status_code=201)
async def create_timer(
    session_id: str,
    body: TimerCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    timer = await SessionOrchestrator(db).start_timer(session_id, user.id, body.duration_sec, body.description)
    return ok({"timer": timer})


@router.get("/{session_id}/timers/{timer_id}")
async def get_timer(
    session_id: str,
    timer_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    timer = await SessionOrchestrator(db).get_timer(session_id, user.id, timer_id)
    return ok({"timer": timer})


@router.delete("/{session_id}/timers/{timer_id}")
async def cancel_timer(
    session_id: str,
    timer_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await SessionOrchestrator(db).cancel_timer(session_id, user.id, timer_id)
    return ok()
