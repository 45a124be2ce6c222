"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
MERCHANTS_DIR = DATA_DIR / "merchants"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "concierge.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_list(name: str) -> list[str]:
    value = os.getenv(name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    """Runtime settings read from the environment."""

    db_path: PathLike = DEFAULT_DB_PATH
    merchants_dir: Path = MERCHANTS_DIR
    redis_url: str | None = None
    llm_provider: str = "anthropic"  # "anthropic" or "openai_compatible"
    llm_model: str | None = None
    llm_base_url: str = "https://api.siliconflow.cn/v1"
    llm_api_key: str | None = None
    dashscope_api_key: str | None = None
    zhipu_api_key: str | None = None
    poll_interval: float = 0.1
    knowledge_timeout: float = 3.0
    generation_timeout: float = 20.0
    session_ttl_seconds: int = 24 * 60 * 60
    preload_merchants: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        return cls(
            db_path=resolve_db_path(os.getenv("DATABASE_URL")),
            merchants_dir=Path(os.getenv("MERCHANTS_DIR") or MERCHANTS_DIR),
            redis_url=os.getenv("REDIS_URL") or None,
            llm_provider=os.getenv("LLM_PROVIDER", "anthropic"),
            llm_model=os.getenv("LLM_MODEL") or None,
            llm_base_url=os.getenv("LLM_BASE_URL", "https://api.siliconflow.cn/v1"),
            llm_api_key=os.getenv("LLM_API_KEY") or os.getenv("SILICONFLOW_API_KEY"),
            dashscope_api_key=os.getenv("DASHSCOPE_API_KEY") or None,
            zhipu_api_key=os.getenv("ZHIPU_API_KEY") or None,
            poll_interval=_env_float("POLL_INTERVAL", 0.1),
            knowledge_timeout=_env_float("KNOWLEDGE_TIMEOUT", 3.0),
            generation_timeout=_env_float("GENERATION_TIMEOUT", 20.0),
            session_ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", str(24 * 60 * 60))),
            preload_merchants=_env_list("MERCHANTS"),
        )
