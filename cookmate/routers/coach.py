"""AI coaching endpoints. Every call is one recorded interaction."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..ai.providers import AIGateway
from ..db import get_db
from ..deps import get_current_user, get_gateway
from ..infra.rate_limit import limiter
from ..models import User
from ..schemas import (
    AskRequest,
    FeedbackRequest,
    StepGuidanceRequest,
    SubstituteRequest,
    TroubleshootRequest,
    ok,
)
from ..services.coach_engine import CoachEngine

router = APIRouter(prefix="/coach")

COACH_RATE_LIMIT = "30/minute"


@router.post("/ask")
@limiter.limit(COACH_RATE_LIMIT)
async def ask(
    request: Request,  # Required for rate limiter
    body: AskRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: AIGateway = Depends(get_gateway),
):
    reply = await CoachEngine(db, gateway).interact(
        "question_answer", str(body.session_id), user,
        payload={"question": body.question},
        caller_context=body.context,
    )
    return ok(reply.model_dump())


@router.post("/step-guidance")
@limiter.limit(COACH_RATE_LIMIT)
async def step_guidance(
    request: Request,
    body: StepGuidanceRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: AIGateway = Depends(get_gateway),
):
    reply = await CoachEngine(db, gateway).interact(
        "step_guidance", str(body.session_id), user,
        payload={
            "step_number": body.step_number,
            "step_data": body.step_data.model_dump() if body.step_data else None,
        },
    )
    return ok(reply.model_dump())


@router.get("/tips/{session_id}")
@limiter.limit(COACH_RATE_LIMIT)
async def tips(
    request: Request,
    session_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: AIGateway = Depends(get_gateway),
):
    reply = await CoachEngine(db, gateway).interact("tip_suggestion", session_id, user)
    return ok(reply.model_dump())


@router.post("/troubleshoot")
@limiter.limit(COACH_RATE_LIMIT)
async def troubleshoot(
    request: Request,
    body: TroubleshootRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: AIGateway = Depends(get_gateway),
):
    reply = await CoachEngine(db, gateway).interact(
        "troubleshooting", str(body.session_id), user,
        payload={"issue": body.issue},
        caller_context=body.context,
    )
    return ok(reply.model_dump())


@router.post("/substitute")
@limiter.limit(COACH_RATE_LIMIT)
async def substitute(
    request: Request,
    body: SubstituteRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: AIGateway = Depends(get_gateway),
):
    reply = await CoachEngine(db, gateway).interact(
        "substitution_help", str(body.session_id), user,
        payload={"ingredient": body.ingredient},
        caller_context=body.context,
    )
    return ok(reply.model_dump())


@router.post("/feedback")
@limiter.limit(COACH_RATE_LIMIT)
async def feedback(
    request: Request,
    body: FeedbackRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: AIGateway = Depends(get_gateway),
):
    interaction = await CoachEngine(db, gateway).record_feedback(
        str(body.session_id), str(body.interaction_id), user, body.rating, body.feedback
    )
    return ok({
        "interaction_id": interaction.id,
        "user_satisfaction": interaction.user_satisfaction,
    }, message="Feedback recorded")


@router.get("/analytics/{session_id}")
@limiter.limit(COACH_RATE_LIMIT)
async def analytics(
    request: Request,
    session_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: AIGateway = Depends(get_gateway),
):
    return ok(await CoachEngine(db, gateway).get_analytics(session_id, user))
