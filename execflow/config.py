from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class ExecflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    workflows_path: Optional[str] = None
    lock_timeout: Optional[float] = Field(default=5.0, gt=0)
    log_level: str = "WARNING"


def load_config(path: Optional[str] = None) -> ExecflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to EXECFLOW_CONFIG env
            variable or 'execflow.yaml' in the current directory.

    A relative ``workflows_path`` is resolved against the directory of the
    config file, so the CLI finds the workflow definitions from any working
    directory. ``EXECFLOW_DATABASE_URL`` (or ``DATABASE_URL``) replaces the
    configured ``database_url``. A missing file yields the defaults: an
    in-memory store, no workflows and a 5 second lock timeout.
    """

    config_path = path or os.getenv("EXECFLOW_CONFIG", "execflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ExecflowConfig(**data)
        if config.workflows_path and not os.path.isabs(config.workflows_path):
            base = os.path.dirname(os.path.abspath(config_path))
            config.workflows_path = os.path.join(base, config.workflows_path)
    else:
        config = ExecflowConfig()

    env_db_url = os.getenv("EXECFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
