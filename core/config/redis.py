"""
Redis connections for the follow-up store and the rq queue

``REDIS_URL`` wins when set; otherwise the connection is built from the
individual ``REDIS_*`` variables.
"""
import os
import logging
import redis

logger = logging.getLogger("followup-config")


def get_redis_config(decode_responses: bool = True) -> dict:
    """Connection keyword arguments from the environment (None values dropped)"""
    config = {
        'host': os.getenv('REDIS_HOST', 'localhost'),
        'port': int(os.getenv('REDIS_PORT', '6379')),
        'db': int(os.getenv('REDIS_DB', '0')),
        'password': os.getenv('REDIS_PASSWORD'),
        'socket_timeout': int(os.getenv('REDIS_SOCKET_TIMEOUT', '5')),
        'socket_connect_timeout': int(os.getenv('REDIS_CONNECT_TIMEOUT', '5')),
        'decode_responses': decode_responses,
    }
    return {k: v for k, v in config.items() if v is not None}


def create_redis_connection(decode_responses: bool = True) -> redis.Redis:
    """
    Create a Redis connection

    The store needs ``decode_responses=True``; rq pickles job data and needs a
    raw connection, so queue code passes ``decode_responses=False``.
    """
    url = os.getenv('REDIS_URL')
    if url:
        return redis.Redis.from_url(url, decode_responses=decode_responses)
    return redis.Redis(**get_redis_config(decode_responses))


def check_redis_connection(connection: redis.Redis = None) -> bool:
    """Ping Redis; False (with the error logged) when it cannot be reached"""
    try:
        (connection or create_redis_connection()).ping()
        return True
    except redis.RedisError as e:
        logger.error(f"Redis connection failed: {e}")
        return False
