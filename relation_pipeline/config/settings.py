from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
from typing import Dict


class Settings(BaseSettings):
    """
    Pipeline settings loaded from environment variables.

    Environment variables can come from:
    - docker-compose.yml environment section
    - .env file (for credentials)
    - System environment

    Variable names match docker-compose conventions:
    - POSTGRES_HOST, POSTGRES_PORT, etc. (for database)
    - REDIS_URL (for queues)
    - QUEUE_SCORING, SUPPORTED_ENTITIES, ... (pipeline behaviour)
    """

    # Environment
    environment: str = "development"
    log_level: str = "INFO"

    # PostgreSQL (from docker-compose)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "pipeline_user"
    postgres_password: str = "pipeline_pass"
    postgres_db: str = "pipeline"
    db_pool_min_size: int = 2
    db_pool_max_size: int = 5
    db_batch_size: int = 1000

    # Redis queues
    redis_url: str = "redis://localhost:6379"
    queue_trigger_query: str = "queue:pipeline:trigger-query"
    queue_new_ids: str = "queue:pipeline:new-ids"
    queue_scoring: str = "queue:pipeline:scoring"
    visibility_timeout_seconds: int = 300
    poll_interval_seconds: float = 5.0

    # Query role
    lookback_days: int = 3
    query_send_concurrency: int = 50

    # Parser role: "type[:required];type[:required]..." (empty = no filter)
    supported_entities: str = ""

    # Analysis services
    doc_service_url: str = "http://localhost:8080"
    scoring_services: str = ""  # "SK::http://scorer:5000;TLC::http://tlc:5001"
    http_timeout_seconds: float = 60.0

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra env vars

    @field_validator('db_batch_size', 'query_send_concurrency', 'visibility_timeout_seconds')
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator('poll_interval_seconds', 'http_timeout_seconds')
    @classmethod
    def must_be_positive_float(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator('scoring_services')
    @classmethod
    def validate_scoring_services(cls, v):
        """Each entry must look like ID::url"""
        parse_scoring_services(v)
        return v

    @property
    def scoring_service_urls(self) -> Dict[str, str]:
        return parse_scoring_services(self.scoring_services)


def parse_scoring_services(value: str) -> Dict[str, str]:
    """
    Parse "ID::url;ID2::url2" into {ID: url}.

    Raises:
        ValueError: an entry is missing its id or url
    """
    services = {}
    for entry in (value or '').split(';'):
        entry = entry.strip()
        if not entry:
            continue
        service_id, sep, url = entry.partition('::')
        if not sep or not service_id.strip() or not url.strip():
            raise ValueError(f"Invalid scoring service entry '{entry}', expected ID::url")
        services[service_id.strip()] = url.strip()
    return services


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
