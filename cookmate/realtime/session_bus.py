import json
import logging

from ..infra.redis_client import get_redis

logger = logging.getLogger("cookmate.realtime")


def channel_for_session(session_id: str) -> str:
    return f"cookmate:session:{session_id}"


async def publish_event(session_id: str, event_type: str, payload: dict | None = None) -> bool:
    """Broadcast an event to everyone subscribed to the session.

    Delivery is best-effort: a Redis failure is logged and reported as
    False, never raised into the request that triggered it.
    """
    message = {"type": event_type, "session_id": session_id, **(payload or {})}
    try:
        r = await get_redis()
        await r.publish(channel_for_session(session_id), json.dumps(message, default=str))
        return True
    except Exception as e:
        logger.error(f"Failed to publish {event_type} for session {session_id}: {e}")
        return False


async def subscribe_session(session_id: str):
    r = await get_redis()
    pubsub = r.pubsub()
    await pubsub.subscribe(channel_for_session(session_id))
    return pubsub


async def unsubscribe_session(pubsub, session_id: str) -> None:
    await pubsub.unsubscribe(channel_for_session(session_id))
    await pubsub.aclose()
