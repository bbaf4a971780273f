"""
Configuration module for settings and service connections.
"""
from .settings import Settings, get_settings, parse_scoring_services
from .database import (
    PostgresConfig,
    RedisConfig,
    create_postgres_pool,
    create_redis_client,
    create_message_queue,
)

__all__ = [
    'Settings',
    'get_settings',
    'parse_scoring_services',
    'PostgresConfig',
    'RedisConfig',
    'create_postgres_pool',
    'create_redis_client',
    'create_message_queue',
]
