"""Pydantic models for validated engine input and monitor configuration."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from design_analytics.settings import Settings

logger = logging.getLogger(__name__)

_SCALAR_TYPES = (str, int, float, bool, type(None))


class EventIn(BaseModel):
    """A single engagement event as handed to ``MetricStore.record``."""

    design_id: str = Field(min_length=1)
    campaign_id: str | None = None
    business_id: str | None = None
    channel: str
    event_name: str
    value: float | None = Field(default=None, ge=0, strict=True, allow_inf_nan=False)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _flatten_metadata(cls, value: Any) -> dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("metadata must be a mapping")
        return {
            str(k): v if isinstance(v, _SCALAR_TYPES) else str(v)
            for k, v in value.items()
        }

    @property
    def increment(self) -> float:
        return 1.0 if self.value is None else float(self.value)


class Signal(BaseModel):
    """Textual evidence (e.g. a customer review) supplied for ranking."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    rating: float = Field(ge=1, le=5)
    text: str = ""
    timestamp: datetime = Field(validation_alias=AliasChoices("timestamp", "time"))

    @field_validator("text", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class MonitorThresholds(BaseModel):
    """Alert thresholds and auto-optimization flags for the monitor.

    Accepts snake_case, camelCase and the legacy collaborator names
    (``budgetAlert``, ``autoPause`` ...).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    budget_utilization: float = Field(
        default=0.8,
        ge=0,
        validation_alias=AliasChoices("budget_utilization", "budgetUtilization", "budgetAlert"),
    )
    performance_drop: float = Field(
        default=0.2,
        ge=0,
        validation_alias=AliasChoices("performance_drop", "performanceDrop", "performanceAlert"),
    )
    cost_increase: float = Field(
        default=0.3,
        ge=0,
        validation_alias=AliasChoices("cost_increase", "costIncrease", "costAlert"),
    )
    conversion_drop: float = Field(
        default=0.25,
        ge=0,
        validation_alias=AliasChoices("conversion_drop", "conversionDrop", "conversionAlert"),
    )
    budget_reallocation: bool = Field(
        default=False,
        validation_alias=AliasChoices("budget_reallocation", "budgetReallocation", "autoReallocate"),
    )
    pause_underperforming: bool = Field(
        default=False,
        validation_alias=AliasChoices("pause_underperforming", "pauseUnderperforming", "autoPause"),
    )
    increase_top_performing: bool = Field(
        default=False,
        validation_alias=AliasChoices("increase_top_performing", "increaseTopPerforming", "autoIncrease"),
    )
    budget: float | None = Field(default=None, gt=0)

    @classmethod
    def from_settings(cls, cfg: Settings) -> "MonitorThresholds":
        return cls(
            budget_utilization=cfg.MONITOR_BUDGET_UTILIZATION,
            performance_drop=cfg.MONITOR_PERFORMANCE_DROP,
            cost_increase=cfg.MONITOR_COST_INCREASE,
            conversion_drop=cfg.MONITOR_CONVERSION_DROP,
            budget_reallocation=cfg.MONITOR_AUTO_BUDGET_REALLOCATION,
            pause_underperforming=cfg.MONITOR_AUTO_PAUSE_UNDERPERFORMING,
            increase_top_performing=cfg.MONITOR_AUTO_INCREASE_TOP_PERFORMING,
        )

    @classmethod
    def from_mapping(
        cls,
        overrides: dict[str, Any] | None,
        base: "MonitorThresholds | None" = None,
    ) -> "MonitorThresholds":
        """Layer *overrides* on top of *base*; bad values fall back, never raise."""
        base = base or cls()
        data = {k: v for k, v in (overrides or {}).items() if v is not None}
        if not data:
            return base

        merged = {**base.model_dump(), **data}
        try:
            return cls.model_validate(_resolve_aliases(merged))
        except ValidationError as exc:
            bad = {str(err["loc"][0]) for err in exc.errors() if err.get("loc")}
            logger.warning("Ignoring invalid monitor thresholds %s; using defaults", sorted(bad))
            cleaned = {k: v for k, v in data.items() if k not in bad and _field_for(k) not in bad}
            return cls.model_validate(_resolve_aliases({**base.model_dump(), **cleaned}))


def _field_for(key: str) -> str | None:
    for name, info in MonitorThresholds.model_fields.items():
        alias = info.validation_alias
        if key == name or (isinstance(alias, AliasChoices) and key in alias.choices):
            return name
    return None


def _resolve_aliases(data: dict[str, Any]) -> dict[str, Any]:
    """Map every alias to its field name so later keys override earlier ones."""
    resolved: dict[str, Any] = {}
    for key, value in data.items():
        name = _field_for(key)
        if name is not None:
            resolved[name] = value
    return resolved
