import redis
import json
from datetime import datetime
from functools import lru_cache
from typing import Optional
from constants import REDIS_HOST, REDIS_PORT, REDIS_URL, PRESENCE_TTL_SECONDS
from redis_keys import REDIS_USERS_KEY, REDIS_CONN_KEY
from logging_config import get_logger

logger = get_logger(__name__)


class RedisBackend:
    """Mirrors which connections sit in which room into Redis.

    The relay never reads this back to make decisions; it exists so other
    instances and operators can see room occupancy. Every write is best effort:
    a Redis outage is logged and relaying carries on.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, ttl: int = PRESENCE_TTL_SECONDS):
        self.ttl = ttl
        if redis_client is None:
            logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
            redis_client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
        self.redis_client = redis_client

    def ping(self) -> bool:
        try:
            self.redis_client.ping()
            logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
            return False

    def add_connection(self, room_id: str, connection_id: str, metadata: dict = None):
        """Record a connection as present in a room."""
        logger.debug(f"Adding connection {connection_id} to room {room_id}")
        users_key = REDIS_USERS_KEY.format(slug=room_id)
        conn_key = REDIS_CONN_KEY.format(connection_id=connection_id)
        mapping = {"room_id": room_id, "connected_at": datetime.now().isoformat()}
        for k, v in (metadata or {}).items():
            if v is None:
                continue
            mapping[k] = json.dumps(v) if isinstance(v, (dict, list)) else str(v)
        try:
            pipe = self.redis_client.pipeline()
            pipe.sadd(users_key, connection_id)
            pipe.hset(conn_key, mapping=mapping)
            if self.ttl:
                pipe.expire(users_key, self.ttl)
                pipe.expire(conn_key, self.ttl)
            pipe.execute()
        except redis.RedisError as e:
            logger.warning(f"Could not record connection {connection_id} in room {room_id}: {e}")
            return False
        return True

    def remove_connection(self, room_id: str, connection_id: str):
        logger.debug(f"Removing connection {connection_id} from room {room_id}")
        users_key = REDIS_USERS_KEY.format(slug=room_id)
        conn_key = REDIS_CONN_KEY.format(connection_id=connection_id)
        try:
            pipe = self.redis_client.pipeline()
            pipe.srem(users_key, connection_id)
            pipe.delete(conn_key)
            pipe.execute()
        except redis.RedisError as e:
            logger.warning(f"Could not remove connection {connection_id} from room {room_id}: {e}")
            return False
        return True

    def get_connections(self, room_id: str):
        """Connection ids recorded for a room, or None if Redis is unreachable."""
        users_key = REDIS_USERS_KEY.format(slug=room_id)
        try:
            users = self.redis_client.smembers(users_key)
        except redis.RedisError as e:
            logger.warning(f"Could not read connections of room {room_id}: {e}")
            return None
        logger.debug(f"Room {room_id} has {len(users)} recorded connections")
        return users

    def clear_room(self, room_id: str):
        logger.debug(f"Clearing presence for room {room_id}")
        try:
            self.redis_client.delete(REDIS_USERS_KEY.format(slug=room_id))
        except redis.RedisError as e:
            logger.warning(f"Could not clear presence for room {room_id}: {e}")
            return False
        return True


@lru_cache()
def get_redis_backend() -> RedisBackend:
    return RedisBackend()
