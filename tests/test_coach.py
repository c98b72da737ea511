import asyncio
import json
import uuid

import pytest

from cookmate.ai.providers import AIGateway
from cookmate.errors import UpstreamProviderError, ValidationError
from cookmate.infra.rate_limit import limiter
from cookmate.infra.session_cache import session_cache
from cookmate.models import CoachingInteraction, CookingSession
from cookmate.realtime.session_bus import subscribe_session
from cookmate.services.coach_engine import POLICIES, CoachEngine


def _interactions(db_session, session_id):
    db_session.expire_all()
    return (
        db_session.query(CoachingInteraction)
        .filter_by(session_id=session_id)
        .order_by(CoachingInteraction.timestamp)
        .all()
    )


def test_policy_table_covers_every_coaching_type():
    assert set(POLICIES) == {
        "question_answer", "step_guidance", "tip_suggestion",
        "troubleshooting", "substitution_help", "encouragement",
    }
    adaptive = {t for t, p in POLICIES.items() if p.adaptation_made}
    assert adaptive == {"troubleshooting", "substitution_help"}


def test_ask_records_interaction_and_question(client, auth_headers, start_session, db_session, mock_redis, provider):
    session = start_session()
    provider.replies = ["Medium-high heat works best."]

    resp = client.post(
        "/api/coach/ask",
        json={"session_id": session["id"], "question": "How hot should the pan be?"},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["response"] == "Medium-high heat works best."
    assert data["provider"] == "fake"
    assert data["interaction_type"] == "question_answer"
    assert data["usage"]["total_tokens"] == 10

    [interaction] = _interactions(db_session, session["id"])
    assert interaction.id == data["interaction_id"]
    assert interaction.user_input == "How hot should the pan be?"
    assert interaction.context["adaptation_made"] is False
    assert interaction.response_time >= 0

    row = db_session.get(CookingSession, session["id"])
    cached = json.loads(mock_redis.get(f"session:{session['id']}"))
    assert row.context["questions_asked"] == ["How hot should the pan be?"]
    assert cached["context"]["questions_asked"] == ["How hot should the pan be?"]
    assert "last_interaction" in row.context


def test_ask_sends_only_recent_history(client, auth_headers, start_session, provider):
    session = start_session()
    for i in range(1, 7):
        resp = client.post(
            "/api/coach/ask",
            json={"session_id": session["id"], "question": f"question {i}?"},
            headers=auth_headers,
        )
        assert resp.status_code == 200

    first_prompt = provider.calls[0]["prompt"]
    assert "Recent Conversation" not in first_prompt

    last_prompt = provider.calls[-1]["prompt"]
    assert "Recent Conversation" in last_prompt
    for i in (3, 4, 5):
        assert f"User: question {i}?" in last_prompt
    for i in (1, 2):
        assert f"User: question {i}?" not in last_prompt


def test_step_guidance_moves_current_step(client, auth_headers, start_session, db_session, mock_redis):
    session = start_session(total_steps=5)

    resp = client.post(
        "/api/coach/step-guidance",
        json={
            "session_id": session["id"],
            "step_number": 2,
            "step_data": {"instruction": "Whisk the eggs", "ingredients": ["eggs", "milk"]},
        },
        headers=auth_headers,
    )
    assert resp.status_code == 200

    [interaction] = _interactions(db_session, session["id"])
    assert interaction.user_input == "Step 2 guidance requested"
    assert interaction.context["current_step"] == 2
    assert interaction.context["step_data"]["instruction"] == "Whisk the eggs"

    assert db_session.get(CookingSession, session["id"]).current_step == 2
    assert json.loads(mock_redis.get(f"session:{session['id']}"))["current_step"] == 2


@pytest.mark.parametrize("step", [0, 6])
def test_step_guidance_out_of_range_never_calls_ai(client, auth_headers, start_session, db_session, provider, step):
    session = start_session(total_steps=5)

    resp = client.post(
        "/api/coach/step-guidance",
        json={"session_id": session["id"], "step_number": step},
        headers=auth_headers,
    )
    assert resp.status_code == 400
    assert provider.calls == []
    assert _interactions(db_session, session["id"]) == []


def test_tip_is_remembered_on_session(client, auth_headers, start_session, db_session, provider):
    session = start_session()
    provider.replies = ["Let the batter rest for 5 minutes."]

    resp = client.get(f"/api/coach/tips/{session['id']}", headers=auth_headers)
    assert resp.status_code == 200

    [interaction] = _interactions(db_session, session["id"])
    assert interaction.user_input == "Tip requested"
    assert interaction.interaction_type == "tip_suggestion"
    assert db_session.get(CookingSession, session["id"]).context["tips_provided"] == [
        "Let the batter rest for 5 minutes."
    ]


def test_troubleshoot_and_substitute_are_adaptations(client, auth_headers, start_session, db_session):
    session = start_session()

    resp = client.post(
        "/api/coach/troubleshoot",
        json={"session_id": session["id"], "issue": "Sauce is too thin", "context": {"user_emotion": "stressed"}},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    resp = client.post(
        "/api/coach/substitute",
        json={"session_id": session["id"], "ingredient": "buttermilk"},
        headers=auth_headers,
    )
    assert resp.status_code == 200

    trouble, sub = _interactions(db_session, session["id"])
    assert trouble.user_input == "Troubleshooting: Sauce is too thin"
    assert trouble.context["adaptation_made"] is True
    assert trouble.context["user_emotion"] == "stressed"
    assert sub.user_input == "Substitution for: buttermilk"
    assert sub.context["adaptation_made"] is True


def test_provider_failure_persists_nothing(client, auth_headers, start_session, db_session, mock_redis, provider):
    session = start_session()
    provider.error = RuntimeError("quota exceeded")

    resp = client.post(
        "/api/coach/ask",
        json={"session_id": session["id"], "question": "Is it done?"},
        headers=auth_headers,
    )
    assert resp.status_code == 502
    body = resp.json()
    assert body["status"] == "error"
    assert body["message"].startswith("[fake]")

    assert _interactions(db_session, session["id"]) == []
    assert db_session.get(CookingSession, session["id"]).context["questions_asked"] == []
    assert json.loads(mock_redis.get(f"session:{session['id']}"))["context"]["questions_asked"] == []


def test_other_user_cannot_ask_about_session(client, start_session, other_headers, provider):
    session = start_session()
    resp = client.post(
        "/api/coach/ask",
        json={"session_id": session["id"], "question": "Mine now?"},
        headers=other_headers,
    )
    assert resp.status_code == 403
    assert provider.calls == []


def _coach_request(name, session_id, interaction_id):
    return {
        "step-guidance": ("POST", "/api/coach/step-guidance", {"session_id": session_id, "step_number": 1}),
        "tips": ("GET", f"/api/coach/tips/{session_id}", None),
        "troubleshoot": ("POST", "/api/coach/troubleshoot", {"session_id": session_id, "issue": "Burnt"}),
        "substitute": ("POST", "/api/coach/substitute", {"session_id": session_id, "ingredient": "eggs"}),
        "feedback": ("POST", "/api/coach/feedback", {
            "session_id": session_id, "interaction_id": interaction_id, "rating": 1,
        }),
        "analytics": ("GET", f"/api/coach/analytics/{session_id}", None),
    }[name]


@pytest.mark.parametrize(
    "endpoint", ["step-guidance", "tips", "troubleshoot", "substitute", "feedback", "analytics"]
)
def test_other_user_is_forbidden_on_every_coach_endpoint(
    client, auth_headers, other_headers, start_session, db_session, provider, endpoint
):
    session = start_session(total_steps=3)
    reply = client.post(
        "/api/coach/ask",
        json={"session_id": session["id"], "question": "Salt now?"},
        headers=auth_headers,
    ).json()["data"]
    client.post(
        "/api/coach/feedback",
        json={"session_id": session["id"], "interaction_id": reply["interaction_id"], "rating": 4},
        headers=auth_headers,
    )
    provider.calls.clear()

    method, url, body = _coach_request(endpoint, session["id"], reply["interaction_id"])
    resp = client.request(method, url, json=body, headers=other_headers)

    assert resp.status_code == 403
    assert "data" not in resp.json()
    assert provider.calls == []
    [interaction] = _interactions(db_session, session["id"])
    assert interaction.user_satisfaction == 4
    assert db_session.get(CookingSession, session["id"]).current_step == 0


def test_feedback_overwrites_previous_rating(client, auth_headers, start_session, db_session):
    session = start_session()
    reply = client.post(
        "/api/coach/ask",
        json={"session_id": session["id"], "question": "Flip now?"},
        headers=auth_headers,
    ).json()["data"]

    for rating, text in ((3, "ok"), (5, "great")):
        resp = client.post(
            "/api/coach/feedback",
            json={
                "session_id": session["id"],
                "interaction_id": reply["interaction_id"],
                "rating": rating,
                "feedback": text,
            },
            headers=auth_headers,
        )
        assert resp.status_code == 200

    [interaction] = _interactions(db_session, session["id"])
    assert interaction.user_satisfaction == 5
    assert interaction.context["user_feedback"] == "great"


def test_feedback_rejects_bad_rating_and_unknown_interaction(client, auth_headers, start_session):
    session = start_session()
    resp = client.post(
        "/api/coach/feedback",
        json={"session_id": session["id"], "interaction_id": str(uuid.uuid4()), "rating": 6},
        headers=auth_headers,
    )
    assert resp.status_code == 400

    resp = client.post(
        "/api/coach/feedback",
        json={"session_id": session["id"], "interaction_id": str(uuid.uuid4()), "rating": 4},
        headers=auth_headers,
    )
    assert resp.status_code == 404


def test_analytics_summarises_interactions(client, auth_headers, start_session, db_session):
    session = start_session()
    rows = [
        ("question_answer", 100, 5, False),
        ("question_answer", 200, 3, False),
        ("troubleshooting", 300, None, True),
        ("substitution_help", 400, 4, True),
    ]
    for kind, ms, rating, adapted in rows:
        db_session.add(CoachingInteraction(
            session_id=session["id"],
            user_input="x",
            coach_response="y",
            interaction_type=kind,
            context={"adaptation_made": adapted},
            response_time=ms,
            user_satisfaction=rating,
        ))
    db_session.commit()

    resp = client.get(f"/api/coach/analytics/{session['id']}", headers=auth_headers)
    assert resp.status_code == 200
    analytics = resp.json()["data"]["analytics"]
    assert analytics["total_interactions"] == 4
    assert analytics["interaction_types"] == {"question_answer": 2, "troubleshooting": 1, "substitution_help": 1}
    assert analytics["average_response_time"] == 250
    assert analytics["average_satisfaction"] == "4.0"
    assert analytics["adaptations_made"] == 2
    assert len(resp.json()["data"]["interactions"]) == 4


def test_analytics_without_ratings(client, auth_headers, start_session):
    session = start_session()
    analytics = client.get(f"/api/coach/analytics/{session['id']}", headers=auth_headers).json()["data"]["analytics"]
    assert analytics["total_interactions"] == 0
    assert analytics["average_response_time"] == 0
    assert analytics["average_satisfaction"] == 0


# --- Engine level ---

def _stored_session(db_session, user, total_steps=4):
    row = CookingSession(user_id=user.id, recipe_id=str(uuid.uuid4()), recipe_name="Risotto", total_steps=total_steps)
    db_session.add(row)
    db_session.commit()
    db_session.refresh(row)
    return row


@pytest.mark.asyncio
async def test_skill_level_falls_back_to_user_context_cache(db_session, user, make_provider):
    row = _stored_session(db_session, user)
    await session_cache.set_user_context(user.id, {"skill_level": "expert", "preferences": {}})
    provider = make_provider()

    reply = await CoachEngine(db_session, AIGateway([provider])).interact("encouragement", row.id, user)

    assert reply.interaction_type == "encouragement"
    assert "(expert)" in provider.calls[0]["system"]
    assert "User Input: Generate encouraging words" in provider.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_interaction_is_broadcast_on_session_channel(db_session, user, make_provider):
    row = _stored_session(db_session, user)
    pubsub = await subscribe_session(row.id)
    engine = CoachEngine(db_session, AIGateway([make_provider(replies=["You've got this!"])]))

    reply = await engine.interact("encouragement", row.id, user)

    msg = None
    for _ in range(5):
        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
        if msg:
            break
        await asyncio.sleep(0.1)

    assert msg is not None
    payload = json.loads(msg["data"])
    assert payload["type"] == "encouragement"
    assert payload["interaction_id"] == reply.interaction_id
    assert payload["response"] == "You've got this!"

    await pubsub.unsubscribe()


@pytest.mark.asyncio
async def test_unknown_type_is_rejected(db_session, user, make_provider):
    row = _stored_session(db_session, user)
    with pytest.raises(ValidationError):
        await CoachEngine(db_session, AIGateway([make_provider()])).interact("timer_management", row.id, user)


@pytest.mark.asyncio
async def test_engine_propagates_gateway_failure(db_session, user, make_provider):
    row = _stored_session(db_session, user)
    engine = CoachEngine(db_session, AIGateway([make_provider(error=ValueError("boom"))]))

    with pytest.raises(UpstreamProviderError):
        await engine.interact("tip_suggestion", row.id, user)

    db_session.expire_all()
    assert db_session.query(CoachingInteraction).count() == 0
    assert db_session.get(CookingSession, row.id).context["tips_provided"] == []


@pytest.mark.parametrize("endpoint", ["feedback", "analytics"])
def test_feedback_and_analytics_share_coach_rate_limit(client, auth_headers, start_session, monkeypatch, endpoint):
    session = start_session()
    method, url, body = _coach_request(endpoint, session["id"], str(uuid.uuid4()))
    monkeypatch.setattr(limiter, "enabled", True)
    limiter.reset()
    try:
        statuses = [client.request(method, url, json=body, headers=auth_headers).status_code for _ in range(31)]
    finally:
        limiter.reset()

    assert 429 not in statuses[:30]
    assert statuses[30] == 429
