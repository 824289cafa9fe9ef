from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    CONFIG_ENV_VAR,
    DATABASE_URL_ENV_VARS,
    DEFAULT_MAX_PARALLEL_NODES,
    DEFAULT_STEP_TIMEOUT_SECONDS,
)


class SchedulerConfig(BaseModel):
    """Tuning knobs for the play scheduler."""

    max_parallel_nodes: int = Field(default=DEFAULT_MAX_PARALLEL_NODES, ge=1)
    step_timeout_seconds: Optional[float] = DEFAULT_STEP_TIMEOUT_SECONDS


class PlayEngineConfig(BaseModel):
    """Top-level configuration model."""

    scheduler: SchedulerConfig = SchedulerConfig()
    database_url: Optional[str] = None
    plays_path: Optional[str] = None


def load_config(path: Optional[str] = None) -> PlayEngineConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to the PLAYENGINE_CONFIG
            env variable or 'playengine.yaml' in the current directory.
    """

    config_path = path or os.getenv(CONFIG_ENV_VAR, "playengine.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = PlayEngineConfig(**data)
    else:
        config = PlayEngineConfig()

    for var in DATABASE_URL_ENV_VARS:
        env_db_url = os.getenv(var)
        if env_db_url:
            config.database_url = env_db_url
            break
    return config
