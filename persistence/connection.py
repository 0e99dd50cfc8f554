"""
Continuum Redis Connection

Shared Redis client for the enrollment template store.
"""

import logging
import os
from functools import lru_cache

import redis
from redis.exceptions import AuthenticationError, RedisError


logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis:
    """
    Create the process-wide Redis client backed by a connection pool.

    Reads configuration from environment variables:
    - REDIS_URL: full connection URL (takes precedence when set)
    - REDIS_HOST: hostname (default: localhost)
    - REDIS_PORT: port (default: 6379)
    - REDIS_DB: database index (default: 0)
    - REDIS_PASSWORD: password (required unless REDIS_URL is set)
    """
    url = os.getenv("REDIS_URL")
    host = os.getenv("REDIS_HOST", "localhost")
    port = int(os.getenv("REDIS_PORT", 6379))
    db = int(os.getenv("REDIS_DB", 0))
    password = os.getenv("REDIS_PASSWORD")

    try:
        if url:
            client = redis.Redis.from_url(url, decode_responses=True, socket_timeout=5.0)
            target = url.rsplit("@", 1)[-1]
        else:
            if not password:
                logger.critical("REDIS_PASSWORD environment variable is not set.")
                raise ValueError("REDIS_PASSWORD is required for the redis enrollment backend.")
            pool = redis.ConnectionPool(
                host=host,
                port=port,
                db=db,
                password=password,
                decode_responses=True,
                max_connections=20,
                socket_timeout=5.0,
            )
            client = redis.Redis(connection_pool=pool)
            target = f"{host}:{port}/{db}"

        client.ping()
        logger.info(f"Connected to Redis at {target}")
        return client

    except AuthenticationError:
        logger.critical("Redis authentication failed. Check REDIS_PASSWORD.")
        raise
    except RedisError as e:
        logger.critical(f"Could not connect to Redis: {e}")
        raise
