"""Pydantic models for the tokentop user config file (``config.json``).

Keys are camelCase on disk (``warningPercent``) and snake_case in Python
(``warning_percent``); both spellings are accepted when loading.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class PluginsConfig(_ConfigModel):
    """Which plugins to load besides the builtin ones.

    Attributes:
        local: Plugin files or directories (``~`` allowed).
        remote: Package names (optionally with a version specifier) to
            install and load.
        disabled: Plugin ids removed from every type after loading.
    """

    local: list[str] = Field(default_factory=list)
    remote: list[str] = Field(default_factory=list)
    disabled: list[str] = Field(default_factory=list)

    @field_validator("local", "remote", "disabled")
    @classmethod
    def _no_blank_entries(cls, v: list[str]) -> list[str]:
        return [item for item in (s.strip() for s in v) if item]


class AlertsConfig(_ConfigModel):
    """Budget alert thresholds, in percent of the budget."""

    warning_percent: float = Field(default=80, ge=0, le=1000)
    critical_percent: float = Field(default=95, ge=0, le=1000)

    @model_validator(mode="after")
    def _ordered(self) -> "AlertsConfig":
        if self.critical_percent < self.warning_percent:
            raise ValueError(
                f"criticalPercent ({self.critical_percent}) must be >= "
                f"warningPercent ({self.warning_percent})"
            )
        return self


class BudgetsConfig(_ConfigModel):
    """Spending limits per period; ``None`` means no budget."""

    daily: float | None = Field(default=None, ge=0)
    weekly: float | None = Field(default=None, ge=0)
    monthly: float | None = Field(default=None, ge=0)
    currency: str = "USD"

    def limit_for(self, budget_type: str) -> float | None:
        if budget_type not in ("daily", "weekly", "monthly"):
            raise ValueError(f"Unknown budget type: {budget_type!r}")
        return getattr(self, budget_type)


class AppConfig(_ConfigModel):
    """Root of ``config.json``."""

    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    budgets: BudgetsConfig = Field(default_factory=BudgetsConfig)
    notifications: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Per notification plugin settings, keyed by plugin id",
    )
