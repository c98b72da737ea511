"""Coaching interactions: one AI exchange per request, recorded on the session.

Each interaction type is a row in ``POLICIES``. A request for any type runs
the same pipeline:

1. resolve the session (ownership enforced)
2. assemble the AI context (skill level, step, recent history)
3. call the AI gateway and time it
4. persist the interaction, apply the type's side effect to the session
5. publish the type's event on the session channel

A gateway failure stops the pipeline after step 3; nothing is written
and nothing is published.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..ai.prompts import (
    AIContext,
    PromptBuilder,
    encouragement_prompt,
    question_prompt,
    step_guidance_prompt,
    substitution_prompt,
    tip_prompt,
    troubleshooting_prompt,
)
from ..ai.providers import AIGateway
from ..core import clock
from ..errors import NotFound, ValidationError
from ..infra.session_cache import SessionCache, session_cache
from ..models import CoachingInteraction, User, round_half_up
from ..realtime.session_bus import publish_event
from ..schemas import CoachReply, SessionAnalytics, SessionOut
from .session_orchestrator import SessionOrchestrator

logger = logging.getLogger("cookmate.coach")

HISTORY_FETCH = 5
# caller-supplied context keys copied onto the stored interaction
CALLER_CONTEXT_KEYS = ("recipe_section", "user_emotion", "confidence")

SideEffect = Callable[[SessionOut, dict, str], dict]


def _append_question(view: SessionOut, payload: dict, response: str) -> dict:
    ctx = view.context
    return {"context": {
        **ctx,
        "questions_asked": [*ctx.get("questions_asked", []), payload["question"]],
        "last_interaction": clock.iso(clock.utcnow()),
    }}


def _advance_step(view: SessionOut, payload: dict, response: str) -> dict:
    return {
        "current_step": payload["step_number"],
        "context": {**view.context, "last_interaction": clock.iso(clock.utcnow())},
    }


def _append_tip(view: SessionOut, payload: dict, response: str) -> dict:
    ctx = view.context
    return {"context": {**ctx, "tips_provided": [*ctx.get("tips_provided", []), response]}}


@dataclass(frozen=True)
class InteractionPolicy:
    interaction_type: str
    build_prompt: PromptBuilder
    user_input: Callable[[dict], str]
    event: str
    adaptation_made: bool = False
    side_effect: Optional[SideEffect] = None
    uses_history: bool = False
    # payload keys echoed into the stored context and the event
    payload_keys: tuple = ()


POLICIES: dict[str, InteractionPolicy] = {
    p.interaction_type: p
    for p in (
        InteractionPolicy(
            interaction_type="question_answer",
            build_prompt=question_prompt,
            user_input=lambda p: p["question"],
            event="coach_response",
            side_effect=_append_question,
            uses_history=True,
            payload_keys=("question",),
        ),
        InteractionPolicy(
            interaction_type="step_guidance",
            build_prompt=step_guidance_prompt,
            user_input=lambda p: f"Step {p['step_number']} guidance requested",
            event="step_guidance",
            side_effect=_advance_step,
            payload_keys=("step_number", "step_data"),
        ),
        InteractionPolicy(
            interaction_type="tip_suggestion",
            build_prompt=tip_prompt,
            user_input=lambda p: "Tip requested",
            event="tip_suggestion",
            side_effect=_append_tip,
        ),
        InteractionPolicy(
            interaction_type="troubleshooting",
            build_prompt=troubleshooting_prompt,
            user_input=lambda p: f"Troubleshooting: {p['issue']}",
            event="troubleshooting",
            adaptation_made=True,
            payload_keys=("issue",),
        ),
        InteractionPolicy(
            interaction_type="substitution_help",
            build_prompt=substitution_prompt,
            user_input=lambda p: f"Substitution for: {p['ingredient']}",
            event="substitution_help",
            adaptation_made=True,
            payload_keys=("ingredient",),
        ),
        InteractionPolicy(
            interaction_type="encouragement",
            build_prompt=encouragement_prompt,
            user_input=lambda p: "Encouragement requested",
            event="encouragement",
        ),
    )
}


class CoachEngine:
    def __init__(self, db: Session, gateway: AIGateway, cache: Optional[SessionCache] = None):
        self.db = db
        self.gateway = gateway
        self.cache = cache or session_cache
        self.sessions = SessionOrchestrator(db, self.cache)

    def _recent_history(self, session_id: str) -> list[dict]:
        rows = self.db.scalars(
            select(CoachingInteraction)
            .where(CoachingInteraction.session_id == session_id)
            .order_by(CoachingInteraction.timestamp.desc())
            .limit(HISTORY_FETCH)
        ).all()
        # oldest first so the prompt reads as a conversation
        return [
            {"user_input": r.user_input, "coach_response": r.coach_response}
            for r in reversed(rows)
        ]

    async def _skill_level(self, view: SessionOut, user: User) -> str:
        if view.context.get("skill_level"):
            return view.context["skill_level"]
        cached = await self.cache.get_user_context(user.id)
        if cached and cached.get("skill_level"):
            return cached["skill_level"]
        return user.skill_level or "beginner"

    async def interact(
        self,
        interaction_type: str,
        session_id: str,
        user: User,
        payload: Optional[dict] = None,
        caller_context: Optional[dict] = None,
    ) -> CoachReply:
        policy = POLICIES.get(interaction_type)
        if policy is None:
            raise ValidationError.for_field("interaction_type", f"Unsupported interaction type: {interaction_type}")

        payload = payload or {}
        caller_context = caller_context or {}
        view = await self.sessions.get_session(session_id, user.id)

        current_step = view.current_step
        if "step_number" in payload:
            step = payload["step_number"]
            if not 1 <= step <= view.total_steps:
                raise ValidationError.for_field(
                    "step_number", f"Step number must be between 1 and {view.total_steps}"
                )
            current_step = step

        ctx = AIContext(
            session_id=session_id,
            user_id=user.id,
            recipe_id=view.recipe_id,
            recipe_name=view.recipe_name,
            current_step=current_step,
            total_steps=view.total_steps,
            skill_level=await self._skill_level(view, user),
            interaction_type=interaction_type,
            user_history=self._recent_history(session_id) if policy.uses_history else [],
            extra={k: v for k, v in caller_context.items() if v is not None},
        )

        started = time.monotonic()
        try:
            ai = await self.gateway.generate(policy.build_prompt(payload, ctx), ctx)
        except Exception:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.error(
                f"Coaching {interaction_type} failed for session {session_id} "
                f"user {user.id} after {elapsed_ms}ms"
            )
            raise
        response_time = int((time.monotonic() - started) * 1000)

        stored_context = {
            "current_step": current_step,
            "adaptation_made": policy.adaptation_made,
            **{k: caller_context[k] for k in CALLER_CONTEXT_KEYS if k in caller_context},
            **{k: payload[k] for k in policy.payload_keys if payload.get(k) is not None},
        }
        interaction = CoachingInteraction(
            session_id=session_id,
            user_input=policy.user_input(payload),
            coach_response=ai.text,
            interaction_type=interaction_type,
            context=stored_context,
            response_time=response_time,
            provider=ai.provider,
        )
        self.db.add(interaction)
        self.db.commit()
        self.db.refresh(interaction)

        if policy.side_effect is not None:
            await self.sessions.apply_updates(session_id, policy.side_effect(view, payload, ai.text))

        await publish_event(session_id, policy.event, {
            "interaction_id": interaction.id,
            "response": ai.text,
            **{k: payload[k] for k in policy.payload_keys if payload.get(k) is not None},
        })

        logger.info(
            f"Coaching interaction session={session_id} user={user.id} type={interaction_type} "
            f"response_time={response_time}ms provider={ai.provider} adaptation={policy.adaptation_made}"
        )
        return CoachReply(
            interaction_id=interaction.id,
            interaction_type=interaction_type,
            response=ai.text,
            response_time=response_time,
            provider=ai.provider,
            usage=ai.usage.model_dump(),
        )

    # --- Feedback / analytics ---

    async def record_feedback(
        self, session_id: str, interaction_id: str, user: User, rating: int, feedback: Optional[str] = None
    ) -> CoachingInteraction:
        if not 1 <= rating <= 5:
            raise ValidationError.for_field("rating", "Rating must be between 1 and 5")

        await self.sessions.get_session(session_id, user.id)
        interaction = self.db.scalar(
            select(CoachingInteraction).where(
                CoachingInteraction.id == interaction_id,
                CoachingInteraction.session_id == session_id,
            )
        )
        if interaction is None:
            raise NotFound("Interaction not found")

        interaction.user_satisfaction = rating
        # reassign so the JSON column is flagged dirty
        interaction.context = {**(interaction.context or {}), "user_feedback": feedback}
        self.db.commit()
        self.db.refresh(interaction)
        logger.info(f"Feedback {rating}/5 recorded for interaction {interaction_id}")
        return interaction

    async def get_analytics(self, session_id: str, user: User) -> dict:
        await self.sessions.get_session(session_id, user.id)
        rows = self.db.scalars(
            select(CoachingInteraction)
            .where(CoachingInteraction.session_id == session_id)
            .order_by(CoachingInteraction.timestamp.asc())
        ).all()

        types: dict[str, int] = {}
        for r in rows:
            types[r.interaction_type] = types.get(r.interaction_type, 0) + 1

        timed = [r.response_time for r in rows if r.response_time is not None]
        rated = [r.user_satisfaction for r in rows if r.user_satisfaction is not None]

        analytics = SessionAnalytics(
            total_interactions=len(rows),
            interaction_types=types,
            average_response_time=round_half_up(sum(timed) / len(timed)) if timed else 0,
            average_satisfaction=f"{sum(rated) / len(rated):.1f}" if rated else 0,
            adaptations_made=sum(1 for r in rows if (r.context or {}).get("adaptation_made")),
        )
        return {
            "analytics": analytics.model_dump(),
            "interactions": [
                {
                    "id": r.id,
                    "type": r.interaction_type,
                    "timestamp": clock.iso(r.timestamp),
                    "response_time": r.response_time,
                    "satisfaction": r.user_satisfaction,
                }
                for r in rows
            ],
        }
