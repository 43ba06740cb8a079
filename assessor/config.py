from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

PACKAGE_RUBRICS_DIR = Path(__file__).parent / "rubrics"


class AnswerPolicy(StrEnum):
    """How unanswered founder questions affect a submission."""
    OPTIONAL = "optional"
    WARN = "warn"
    REQUIRED = "required"


def _resolve_project_root() -> Path:
    override = os.getenv("ASSESSOR_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd().resolve()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_answer_policy() -> AnswerPolicy:
    raw = os.getenv("ASSESSOR_ANSWER_POLICY", "").strip().lower()
    try:
        return AnswerPolicy(raw)
    except ValueError:
        return AnswerPolicy.WARN


class Settings(BaseModel):
    project_root: Path = Field(default_factory=_resolve_project_root)
    data_dir: Path = Field(default_factory=lambda: _resolve_project_root() / "data")
    rubrics_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("ASSESSOR_RUBRICS_DIR", "") or PACKAGE_RUBRICS_DIR)
    )

    weight_tolerance: float = Field(default_factory=lambda: _env_float("ASSESSOR_WEIGHT_TOLERANCE", 0.01))
    answer_policy: AnswerPolicy = Field(default_factory=_env_answer_policy)

    llm_provider: str = Field(default_factory=lambda: os.getenv("LLM_PROVIDER", "openai"))
    llm_model: str = Field(default_factory=lambda: os.getenv("LLM_MODEL", ""))
    llm_timeout_seconds: float = Field(default_factory=lambda: _env_float("ASSESSOR_LLM_TIMEOUT", 120.0))

    csv_row_limit: int = 100
    industry_detection_chars: int = 10_000

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)


def load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        return {}
    return data


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_directories()
    return settings
