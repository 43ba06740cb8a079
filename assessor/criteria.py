"""Rubric configuration store: layered loading, weight validation, overrides.

Resolution order for ``ConfigStore.load(industry)``
---------------------------------------------------
1. **override**: a reviewer-authored rubric saved for the industry.
2. **modular**: ``common.yaml`` (rubric + decision mapping) merged with
   ``industries/<industry>.yaml`` (categories).
3. **legacy**: single-file ``criteria_<industry>.yaml``, or
   ``criteria.yaml`` for industries without their own file.
4. **builtin**: :func:`default_rubric_config`.

Each tier yields a :class:`Resolution` (hit or miss with the reason) so tiers
can be exercised on their own. ``load`` never raises: a miss falls through to
the next tier and the builtin tier always hits.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Protocol

import yaml
from pydantic import ValidationError

from assessor.config import load_yaml
from assessor.models import (
    CommonConfig,
    DecisionMapping,
    DecisionThreshold,
    ErrorKind,
    IndustryCategories,
    Outcome,
    RubricConfig,
    Rubrics,
    ScoreLevel,
)
from assessor.utils import slugify

log = logging.getLogger(__name__)

DEFAULT_WEIGHT_TOLERANCE = 0.01

COMMON_FILE = "common.yaml"
INDUSTRIES_DIR = "industries"
LEGACY_DEFAULT_FILE = "criteria.yaml"


def default_rubric_config() -> RubricConfig:
    """Minimal rubric used when no configuration source resolves."""
    return RubricConfig(
        categories=[],
        rubrics=Rubrics(score_levels=[
            ScoreLevel(level=5, label="Excellent", description="Exceeds expectations"),
            ScoreLevel(level=4, label="Good", description="Meets expectations"),
            ScoreLevel(level=3, label="Average", description="Meets basic requirements"),
            ScoreLevel(level=2, label="Below Average", description="Does not fully meet requirements"),
            ScoreLevel(level=1, label="Poor", description="Fails to meet requirements"),
        ]),
        decision_mapping=DecisionMapping(
            fund=DecisionThreshold(min_score=4.0, description="Recommend funding"),
            partial=DecisionThreshold(min_score=3.0, max_score=3.9, description="Recommend partial funding"),
            decline=DecisionThreshold(max_score=2.9, description="Recommend decline"),
        ),
    )


def validate_weights(config: RubricConfig, tolerance: float = DEFAULT_WEIGHT_TOLERANCE) -> list[str]:
    """Return human-readable problems with a rubric; empty when it is acceptable."""
    problems: list[str] = []
    total = sum(c.weight for c in config.categories)
    if abs(total - 1.0) > tolerance:
        problems.append(
            f"Category weights must sum to 1.0 (currently: {total:.4g}, off by {total - 1.0:+.4g})"
        )
    seen_categories: set[str] = set()
    for category in config.categories:
        if category.name in seen_categories:
            problems.append(f"Duplicate category name '{category.name}'")
        seen_categories.add(category.name)

        sub_total = sum(c.weight for c in category.criteria)
        if abs(sub_total - 1.0) > tolerance:
            problems.append(
                f"Criteria weights in category '{category.name}' must sum to 1.0 "
                f"(currently: {sub_total:.4g}, off by {sub_total - 1.0:+.4g})"
            )
        seen_criteria: set[str] = set()
        for criterion in category.criteria:
            if criterion.name in seen_criteria:
                problems.append(f"Duplicate criterion '{criterion.name}' in category '{category.name}'")
            seen_criteria.add(criterion.name)
    return problems


# ---------------------------------------------------------------------------
# Override layer
# ---------------------------------------------------------------------------


class OverrideSource(Protocol):
    def load_rubric_override(self, industry: str) -> RubricConfig | None: ...

    def save_rubric_override(
        self, industry: str, config: RubricConfig, tolerance: float = DEFAULT_WEIGHT_TOLERANCE,
    ) -> Outcome[RubricConfig]: ...


class InMemoryOverrides:
    """Process-local override layer used when no durable store is attached."""

    def __init__(self) -> None:
        self._configs: dict[str, RubricConfig] = {}

    def load_rubric_override(self, industry: str) -> RubricConfig | None:
        return self._configs.get(slugify(industry))

    def save_rubric_override(
        self, industry: str, config: RubricConfig, tolerance: float = DEFAULT_WEIGHT_TOLERANCE,
    ) -> Outcome[RubricConfig]:
        problems = validate_weights(config, tolerance)
        if problems:
            return Outcome.failure(ErrorKind.INVALID_CONFIG, "; ".join(problems))
        self._configs[slugify(industry)] = config
        return Outcome.success(f"Criteria configuration saved for {industry}", config)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class Tier(StrEnum):
    OVERRIDE = "override"
    MODULAR = "modular"
    LEGACY = "legacy"
    BUILTIN = "builtin"


@dataclass(frozen=True)
class Resolution:
    """One attempted configuration source and what came of it."""
    tier: Tier
    source: str
    config: RubricConfig | None = None
    reason: str = ""

    @property
    def hit(self) -> bool:
        return self.config is not None


def _read_document(path: Path) -> dict:
    """Read a YAML rubric document, raising on anything unusable."""
    if not path.exists():
        raise FileNotFoundError(f"{path} does not exist")
    data = load_yaml(path)
    if not data:
        raise ValueError(f"{path} is empty or not a mapping")
    return data


class ConfigStore:
    """Resolves the rubric for an industry from the layered sources."""

    def __init__(
        self,
        rubrics_dir: Path | str,
        overrides: OverrideSource | None = None,
        weight_tolerance: float = DEFAULT_WEIGHT_TOLERANCE,
    ):
        self.rubrics_dir = Path(rubrics_dir)
        self.overrides: OverrideSource = overrides if overrides is not None else InMemoryOverrides()
        self.weight_tolerance = weight_tolerance

    # -- individual tiers --------------------------------------------------

    def resolve_override(self, industry: str, source: OverrideSource | None = None) -> Resolution:
        src = source if source is not None else self.overrides
        try:
            config = src.load_rubric_override(industry)
        except Exception as exc:
            return Resolution(Tier.OVERRIDE, type(src).__name__, reason=str(exc))
        if config is None:
            return Resolution(Tier.OVERRIDE, type(src).__name__, reason="no override saved")
        return Resolution(Tier.OVERRIDE, type(src).__name__, config=config)

    def resolve_modular(self, industry: str) -> Resolution:
        common_path = self.rubrics_dir / COMMON_FILE
        industry_path = self.rubrics_dir / INDUSTRIES_DIR / f"{slugify(industry)}.yaml"
        source = f"{common_path} + {industry_path}"
        try:
            common = CommonConfig.model_validate(_read_document(common_path))
            cats = IndustryCategories.model_validate(_read_document(industry_path))
        except (OSError, ValueError, yaml.YAMLError, ValidationError) as exc:
            return Resolution(Tier.MODULAR, source, reason=str(exc))
        config = RubricConfig(
            categories=cats.categories,
            rubrics=common.rubrics,
            decision_mapping=common.decision_mapping,
        )
        return Resolution(Tier.MODULAR, source, config=config)

    def legacy_path(self, industry: str) -> Path:
        specific = self.rubrics_dir / f"criteria_{slugify(industry)}.yaml"
        if industry.strip() and specific.exists():
            return specific
        return self.rubrics_dir / LEGACY_DEFAULT_FILE

    def resolve_legacy(self, industry: str) -> Resolution:
        path = self.legacy_path(industry)
        try:
            config = RubricConfig.model_validate(_read_document(path))
        except (OSError, ValueError, yaml.YAMLError, ValidationError) as exc:
            return Resolution(Tier.LEGACY, str(path), reason=str(exc))
        return Resolution(Tier.LEGACY, str(path), config=config)

    # -- composed ----------------------------------------------------------

    def resolutions(self, industry: str, override_source: OverrideSource | None = None) -> Iterator[Resolution]:
        """Yield attempts in priority order, stopping after the first hit."""
        for attempt in (
            lambda: self.resolve_override(industry, override_source),
            lambda: self.resolve_modular(industry),
            lambda: self.resolve_legacy(industry),
        ):
            res = attempt()
            yield res
            if res.hit:
                return
        yield Resolution(Tier.BUILTIN, "default_rubric_config", config=default_rubric_config())

    def load(self, industry: str, override_source: OverrideSource | None = None) -> RubricConfig:
        """Return the rubric for *industry*; always produces something evaluable."""
        for res in self.resolutions(industry, override_source):
            if res.hit:
                log.debug("Rubric for %r resolved from %s (%s)", industry, res.tier, res.source)
                return res.config  # type: ignore[return-value]
            log.debug("Rubric tier %s missed for %r: %s", res.tier, industry, res.reason)
        return default_rubric_config()

    def save(self, industry: str, config: RubricConfig) -> Outcome[RubricConfig]:
        """Validate and persist a reviewer override; it then wins resolution."""
        problems = validate_weights(config, self.weight_tolerance)
        if problems:
            log.info("Rejected rubric override for %s: %s", industry, problems)
            return Outcome.failure(ErrorKind.INVALID_CONFIG, "; ".join(problems))
        return self.overrides.save_rubric_override(industry, config, self.weight_tolerance)

    def known_industries(self) -> list[str]:
        """Industries with a bundled modular or legacy rubric document."""
        names: set[str] = set()
        industries_dir = self.rubrics_dir / INDUSTRIES_DIR
        if industries_dir.is_dir():
            names.update(p.stem for p in industries_dir.glob("*.yaml"))
        names.update(p.stem.removeprefix("criteria_") for p in self.rubrics_dir.glob("criteria_*.yaml"))
        return sorted(n.replace("_", " ").title() for n in names)
