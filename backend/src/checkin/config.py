from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator


class Settings(BaseModel):
    store_backend: Literal["inmemory", "sql", "dynamodb"] = "inmemory"
    database_url: str = "sqlite:///./checkin.db"
    ddb_table_name: str = ""
    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"
    seed_sample_data: bool = False

    @field_validator("store_backend", mode="before")
    @classmethod
    def _normalize_backend(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, v: object) -> object:
        if isinstance(v, str):
            origins = [s.strip() for s in v.split(",") if s.strip()]
            return origins or ["*"]
        return v

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        keys = {
            "store_backend": "STORE_BACKEND",
            "database_url": "DATABASE_URL",
            "ddb_table_name": "DDB_TABLE_NAME",
            "cors_origins": "CORS_ORIGINS",
            "log_level": "LOG_LEVEL",
            "seed_sample_data": "SEED_SAMPLE_DATA",
        }
        values = {field: env[name] for field, name in keys.items() if env.get(name, "").strip()}
        return cls(**values)


def load_dotenv_file(repo_root: Path) -> None:
    env_path = repo_root / "config" / ".env"
    if not env_path.exists():
        return
    load_dotenv(dotenv_path=env_path, override=False)
