from fastapi import APIRouter, Depends

from ..ai.providers import AIGateway
from ..deps import get_gateway
from ..infra.redis_client import get_redis

router = APIRouter()


@router.get("/ready")
async def ready(gateway: AIGateway = Depends(get_gateway)):
    redis_ok = False
    try:
        r = await get_redis()
        redis_ok = bool(await r.ping())
    except Exception:
        pass
    return {"ok": True, "redis_ok": redis_ok, "ai_providers": gateway.provider_names}
