from __future__ import annotations

import os
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_PATCH_ATTEMPTS,
    DEFAULT_POLL_BACKOFF,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_POLL_MAX_INTERVAL,
    DEFAULT_STALL_AFTER,
    DEFAULT_TIMEOUTS,
)


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class DirectorConfig(BaseModel):
    """Connection settings for the BOSH director."""

    url: str = "https://192.168.50.6:25555"
    username: Optional[str] = None
    password: Optional[str] = None
    verify_ssl: bool = True
    request_timeout: float = 30.0


class PollingConfig(BaseModel):
    """Task polling policy shared by all phase handlers."""

    interval: float = DEFAULT_POLL_INTERVAL
    max_interval: float = DEFAULT_POLL_MAX_INTERVAL
    backoff: float = DEFAULT_POLL_BACKOFF
    timeouts: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_TIMEOUTS))

    def timeout_for(self, operation: str) -> float:
        return self.timeouts.get(operation, DEFAULT_TIMEOUTS.get(operation, 1800.0))


class PlanConfig(BaseModel):
    """Service plan settings that shape a restore."""

    id: str
    name: Optional[str] = None
    jobs: List[str] = Field(default_factory=list)
    pre_warming_errand: Optional[str] = None
    pitr_errand: Optional[str] = None


class RestoreOperatorConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    database_url: Optional[str] = None
    backend: Literal["inmemory", "director"] = "inmemory"
    director: DirectorConfig = DirectorConfig()
    polling: PollingConfig = PollingConfig()
    patch_attempts: int = DEFAULT_PATCH_ATTEMPTS
    stall_after: float = DEFAULT_STALL_AFTER
    log_level: str = "INFO"
    plans: List[PlanConfig] = Field(default_factory=list)

    def get_plan(self, plan_id: str) -> Optional[PlanConfig]:
        return next((plan for plan in self.plans if plan.id == plan_id), None)


def load_config(path: Optional[str] = None) -> RestoreOperatorConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to BOSH_RESTORE_CONFIG
            env variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("BOSH_RESTORE_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = RestoreOperatorConfig(**data)
    else:
        config = RestoreOperatorConfig()

    env_db_url = os.getenv("BOSH_RESTORE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
