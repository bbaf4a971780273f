"""
Connection Configuration
========================

Connection configuration for all workers.
Pools and clients are created here once per process and passed explicitly
to the components that need them.
"""
from dataclasses import dataclass
from typing import Optional

import asyncpg
import redis.asyncio as redis

from .settings import Settings, get_settings


@dataclass
class PostgresConfig:
    """PostgreSQL connection configuration."""
    host: str
    port: int
    user: str
    password: str
    database: str
    min_size: int = 2
    max_size: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> 'PostgresConfig':
        """Create config from pipeline settings."""
        if not settings.postgres_host:
            raise ValueError("POSTGRES_HOST is required")

        return cls(
            host=settings.postgres_host,
            port=settings.postgres_port,
            user=settings.postgres_user,
            password=settings.postgres_password,
            database=settings.postgres_db,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )

    def to_asyncpg_kwargs(self) -> dict:
        """Convert to asyncpg.create_pool kwargs."""
        return {
            'host': self.host,
            'port': self.port,
            'user': self.user,
            'password': self.password,
            'database': self.database,
            'min_size': self.min_size,
            'max_size': self.max_size,
        }


@dataclass
class RedisConfig:
    """Redis connection configuration."""
    url: str

    @classmethod
    def from_settings(cls, settings: Settings) -> 'RedisConfig':
        """Create config from pipeline settings."""
        if not settings.redis_url:
            raise ValueError("REDIS_URL is required")

        return cls(url=settings.redis_url)


async def create_postgres_pool(settings: Optional[Settings] = None) -> asyncpg.Pool:
    """Create PostgreSQL connection pool."""
    config = PostgresConfig.from_settings(settings or get_settings())
    return await asyncpg.create_pool(**config.to_asyncpg_kwargs())


def create_redis_client(settings: Optional[Settings] = None) -> redis.Redis:
    """Create a Redis client (connections are opened lazily)."""
    config = RedisConfig.from_settings(settings or get_settings())
    return redis.from_url(config.url, decode_responses=True)


def create_message_queue(name: str, redis_client: redis.Redis, settings: Optional[Settings] = None):
    """Create a visibility-timeout queue bound to the shared Redis client."""
    from relation_pipeline.services.message_queue import MessageQueue
    settings = settings or get_settings()
    return MessageQueue(name, redis_client, visibility_timeout=settings.visibility_timeout_seconds)
