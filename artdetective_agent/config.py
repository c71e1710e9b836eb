from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    fetch_timeout_s: float = Field(15.0, gt=0, alias="ARTDETECTIVE_FETCH_TIMEOUT_S")
    fallback_proxy: str = Field("https://r.jina.ai/", alias="ARTDETECTIVE_FALLBACK_PROXY")
    auth_secret: str = Field("dev-next-secret", min_length=1, alias="AUTH_SECRET")
    access_ttl_s: int = Field(3600, gt=0, alias="ARTDETECTIVE_ACCESS_TTL_S")
    undo_ttl_s: float = Field(10.0, gt=0, alias="ARTDETECTIVE_UNDO_TTL_S")
    cors_origins: str = Field("http://localhost:3000", alias="ARTDETECTIVE_CORS_ORIGINS")

    def cors_origin_list(self) -> list[str]:
        origins = [o.strip() for o in self.cors_origins.split(",") if o.strip()]
        return origins or ["http://localhost:3000"]


def _load_dotenv():
    # Repo root .env first, then whatever python-dotenv finds from the cwd.
    root_env = Path(__file__).resolve().parents[1] / ".env"
    if root_env.exists():
        load_dotenv(root_env, override=False)
    else:
        load_dotenv(override=False)


@lru_cache()
def get_settings() -> Settings:
    _load_dotenv()
    try:
        return Settings(**os.environ)
    except ValidationError as exc:
        bad = [str(e["loc"][0]) for e in exc.errors()]
        raise RuntimeError(f"Invalid environment configuration: {', '.join(bad)}") from exc
