"""
Configuration classes for the stock alert engine.
Defines defaults for velocity tracking, evaluation, replenishment and notification
policy in a type-safe, extensible way.
"""

import logging
from dataclasses import dataclass, field, fields
from typing import Any

from models.enums import Severity, StaffRole
from models.exceptions import PersistenceCorruptionError
from models.inventory import StockThresholds

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = StockThresholds(
    min_absolute=5,
    reorder_point=20,
    safety_stock=10,
    lead_time_days=1,
    pack_size=6,
)


@dataclass
class VelocityConfig:
    alpha: float = 0.3  # EWMA smoothing factor
    retention_days: int = 7
    default_peak_hour: int = 22
    default_peak_day_of_week: int = 4  # datetime.weekday(): Friday


@dataclass
class EvaluatorConfig:
    velocity_enabled: bool = True
    alternative_min_stock: int = 1
    default_location_id: str = "default"


@dataclass
class ReplenishmentConfig:
    buffer_days: int = 3


def _coerce(default: Any, value: Any) -> Any:
    """Convert ``value`` to the type of ``default``; booleans must already be booleans."""
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise TypeError(f"expected a boolean, got {value!r}")
        return value
    return type(default)(value)


@dataclass
class QuietHoursConfig:
    enabled: bool = True
    start_hour: int = 4
    end_hour: int = 10
    ignore_for_critical: bool = True

    def contains(self, hour: int) -> bool:
        """Whether ``hour`` falls in the quiet range. start > end wraps past midnight."""
        if not self.enabled or self.start_hour == self.end_hour:
            return False
        if self.start_hour > self.end_hour:
            return hour >= self.start_hour or hour < self.end_hour
        return self.start_hour <= hour < self.end_hour


@dataclass
class OrchestratorConfig:
    enabled: bool = True
    cooldown_minutes: dict[Severity, int] = field(
        default_factory=lambda: {
            Severity.INFO: 120,
            Severity.WARNING: 60,
            Severity.CRITICAL: 15,
        }
    )
    quiet_hours: QuietHoursConfig = field(default_factory=QuietHoursConfig)
    digest_enabled: bool = True
    digest_interval_minutes: int = 60
    escalation_enabled: bool = True
    escalation_after_minutes: int = 10
    escalation_role: StaffRole = StaffRole.MANAGER
    aggregation_enabled: bool = True
    aggregation_window_seconds: int = 30
    composer_timeout_seconds: float = 5.0
    routes: dict[StaffRole, list[Severity]] = field(
        default_factory=lambda: {
            StaffRole.ADMIN: [Severity.CRITICAL, Severity.WARNING],
            StaffRole.MANAGER: [Severity.CRITICAL, Severity.WARNING],
            StaffRole.SUPERVISOR: [Severity.CRITICAL],
            StaffRole.STOCKROOM: [Severity.CRITICAL, Severity.WARNING, Severity.INFO],
        }
    )

    def cooldown_for(self, severity: Severity) -> int:
        return self.cooldown_minutes.get(severity, 60)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "OrchestratorConfig":
        """
        Merge a partial mapping over the defaults. Unknown keys are ignored; a value
        that cannot be converted keeps that field's default and is logged.
        """
        config = cls()
        if not isinstance(data, dict):
            return config
        known = {f.name for f in fields(cls)}
        for key, value in data.items():
            if key not in known or value is None:
                continue
            try:
                setattr(config, key, config._convert(key, value))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(
                    f"Keeping default for {key}: {PersistenceCorruptionError('orchestrator_config', str(e))}"
                )
        return config

    def _convert(self, key: str, value: Any) -> Any:
        if key == "cooldown_minutes":
            merged = dict(self.cooldown_minutes)
            merged.update({Severity(k): int(v) for k, v in value.items()})
            return merged
        if key == "quiet_hours":
            current = self.quiet_hours.__dict__
            unknown = set(value) - set(current)
            if unknown:
                raise TypeError(f"unknown quiet hours fields: {sorted(unknown)}")
            return QuietHoursConfig(
                **{name: _coerce(default, value.get(name, default)) for name, default in current.items()}
            )
        if key == "routes":
            return {
                StaffRole(role): [Severity(s) for s in severities]
                for role, severities in value.items()
            }
        if key == "escalation_role":
            return StaffRole(value)
        return _coerce(getattr(self, key), value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "cooldown_minutes": {k.value: v for k, v in self.cooldown_minutes.items()},
            "quiet_hours": dict(self.quiet_hours.__dict__),
            "digest_enabled": self.digest_enabled,
            "digest_interval_minutes": self.digest_interval_minutes,
            "escalation_enabled": self.escalation_enabled,
            "escalation_after_minutes": self.escalation_after_minutes,
            "escalation_role": self.escalation_role.value,
            "aggregation_enabled": self.aggregation_enabled,
            "aggregation_window_seconds": self.aggregation_window_seconds,
            "composer_timeout_seconds": self.composer_timeout_seconds,
            "routes": {
                role.value: [s.value for s in severities]
                for role, severities in self.routes.items()
            },
        }


@dataclass
class MonitorConfig:
    check_interval_minutes: int = 15
    digest_interval_minutes: int = 60
    escalation_check_minutes: int = 5
    aggregation_poll_seconds: int = 1
    monitored_categories: list[str] = field(default_factory=list)  # Empty = all


@dataclass
class ComposerConfig:
    enabled: bool = True
    model: str = "gpt-4o-mini"
    temperature: float = 0.5
    max_tokens: int = 150
    language: str = "en"
    retry_attempts: int = 3
    retry_backoff: float = 1.5
