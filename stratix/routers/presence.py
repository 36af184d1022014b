import logging

from fastapi import APIRouter, Depends, Request
from redis.exceptions import RedisError

from stratix.services.identity import Identity
from stratix.utils.dependencies import get_current_user


router = APIRouter(prefix="/presence", tags=["chat"])
logger = logging.getLogger(__name__)


@router.get("/{user_id}")
async def presence(user_id: str, request: Request, current_user: Identity = Depends(get_current_user)):
    """
    Online status of a user. Local connections are checked first; with Redis
    configured, the shared presence key covers users held by other processes.
    """
    broadcaster = getattr(request.app.state, "broadcaster", None)
    online = False
    if broadcaster is not None:
        online = broadcaster.registry.is_online(user_id)
        if not online and broadcaster.bus.enabled:
            try:
                online = await broadcaster.bus.is_present(user_id)
            except RedisError:
                logger.warning("Presence lookup for %s failed", user_id)
    return {"userId": user_id, "online": bool(online)}
