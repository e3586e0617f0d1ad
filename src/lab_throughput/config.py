"""Analytics configuration.

Every threshold the engine uses lives on one ``AnalyticsConfig`` object that
is passed explicitly through the call chain. Callers override values for
testing with ``config.with_overrides(...)``; deployments override scalar
values with ``THROUGHPUT_<FIELD>`` environment variables.

Environment Variables:
    THROUGHPUT_TARGET_PERCENTILE: Percentile used as the raw benchmark (default 75)
    THROUGHPUT_SMOOTHING_ALPHA: EMA weight of the newest raw target (default 0.2)
    THROUGHPUT_WORKING_TIMEZONE: Local calendar for working time (default America/Denver)
    ... any other scalar field, upper-cased and prefixed with THROUGHPUT_
"""

import logging
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from lab_throughput.exceptions import ConfigurationError
from lab_throughput.models.case import CaseCategory, Stage

logger = logging.getLogger(__name__)

ENV_PREFIX = "THROUGHPUT_"

HOUR_SECONDS = 3600.0
DAY_SECONDS = 86400.0


class LoadFactorBand(BaseModel):
    """Maps a band of current active-case counts to a throughput multiplier."""

    min_active: int = Field(ge=0)
    max_active: Optional[int] = Field(default=None, description="Inclusive; None = unbounded")
    factor: float = Field(gt=0)

    def matches(self, active: int) -> bool:
        return active >= self.min_active and (self.max_active is None or active <= self.max_active)


DEFAULT_LOAD_FACTOR_TABLE = [
    LoadFactorBand(min_active=0, max_active=0, factor=0.9),
    LoadFactorBand(min_active=1, max_active=5, factor=1.0),
    LoadFactorBand(min_active=6, max_active=10, factor=1.05),
    LoadFactorBand(min_active=11, max_active=15, factor=1.15),
    LoadFactorBand(min_active=16, max_active=20, factor=1.3),
    LoadFactorBand(min_active=21, max_active=30, factor=1.5),
    LoadFactorBand(min_active=31, max_active=None, factor=2.0),
]


class AnalyticsConfig(BaseModel):
    """All tunable thresholds of the throughput analytics engine."""

    # -- Stage tracking --
    stage_tracking_start: datetime = Field(
        default=datetime(2025, 7, 14, tzinfo=timezone.utc),
        description="Cases created before this instant predate stage tracking",
    )
    tracked_departments: List[str] = Field(
        default_factory=lambda: ["General"],
        description="Departments whose cases take part in stage analytics",
    )

    # -- Working time --
    working_timezone: str = Field(
        default="America/Denver",
        description="IANA zone whose local calendar defines working hours and due days",
    )
    workday_start_hour: int = Field(default=8, ge=0, le=23)
    workday_end_hour: int = Field(default=17, ge=1, le=24)
    step_seconds: int = Field(default=60, gt=0, description="Working-time counting step")

    # -- Data quality --
    min_stage_seconds: Dict[Stage, float] = Field(
        default_factory=lambda: {
            Stage.DESIGN: 10 * 60.0,
            Stage.PRODUCTION: 45 * 60.0,
            Stage.FINISHING: 10 * 60.0,
            Stage.QC: 0.0,
        },
        description="Minimum plausible adjusted working time per stage",
    )
    max_stage_seconds: float = Field(
        default=30 * DAY_SECONDS,
        description="Maximum plausible adjusted calendar time in any stage",
    )
    max_visits: int = Field(default=3, ge=1, description="More visits than this is excessive rework")

    # -- Outliers --
    outlier_fence_multiplier: float = Field(default=1.5, gt=0)
    min_outlier_sample: int = Field(default=4, ge=2)

    # -- Velocity engine --
    target_percentile: float = Field(default=75.0, gt=0, le=100)
    smoothing_alpha: float = Field(default=0.2, gt=0, le=1)
    active_weight: float = Field(default=0.15, ge=0, le=1)
    small_sample_size: int = Field(default=5, description="Active weight is halved at or below this sample size")
    velocity_floor_sample_size: int = Field(default=3)
    velocity_floor: float = Field(default=50.0)
    single_completion_base_score: float = Field(default=90.0)
    concurrency_scale_min: float = Field(default=0.5)
    concurrency_scale_max: float = Field(default=1.5)
    idle_concurrency_scale: float = Field(default=0.9)
    load_factor_table: List[LoadFactorBand] = Field(
        default_factory=lambda: [band.model_copy() for band in DEFAULT_LOAD_FACTOR_TABLE]
    )
    age_weight_period_days: float = Field(default=7.0, gt=0)
    age_weight_cap: float = Field(default=2.0, ge=1)

    # -- Buffers --
    buffer_lead_days: Dict[Stage, float] = Field(
        default_factory=lambda: {
            Stage.DESIGN: 2.0,
            Stage.PRODUCTION: 1.0,
            Stage.FINISHING: 0.0,
        },
        description="Days a stage must be left before the deadline",
    )
    min_rush_lead_days: Dict[Stage, float] = Field(
        default_factory=lambda: {
            Stage.DESIGN: 0.5,
            Stage.PRODUCTION: 0.25,
        },
        description="Floor applied to expedited lead requirements",
    )
    rush_reduction_default: float = Field(default=0.6)
    rush_reduction_min: float = Field(default=0.3)
    rush_reduction_max: float = Field(default=1.0)
    rush_min_standard_sample: int = Field(default=5)
    rush_min_expedited_sample: int = Field(default=3)

    # -- Delivery scoring --
    buffer_miss_penalty: Dict[Stage, float] = Field(
        default_factory=lambda: {Stage.DESIGN: 15.0, Stage.PRODUCTION: 10.0}
    )
    lateness_penalty_per_hour: float = Field(default=2.0)
    max_lateness_penalty: float = Field(default=50.0)
    velocity_penalty_step: float = Field(default=5.0, gt=0)
    max_velocity_penalty: float = Field(default=20.0)
    effective_delivery_score: float = Field(default=70.0)

    # -- Efficiency aggregation --
    on_time_weight: float = Field(default=0.6)
    throughput_weight: float = Field(default=0.4)
    buffer_penalty_weights: Dict[Stage, float] = Field(
        default_factory=lambda: {Stage.DESIGN: 0.4, Stage.PRODUCTION: 0.3}
    )
    default_buffer_penalty_weight: float = Field(default=0.2)
    lateness_dampening_hours: float = Field(default=48.0)
    lateness_dampening_factor: float = Field(default=0.95)
    expedited_bonus_rate: float = Field(default=90.0)
    expedited_bonus_factor: float = Field(default=1.02)
    critical_violation_share: float = Field(default=0.1)
    critical_violation_factor: float = Field(default=0.9)
    category_weights: Dict[CaseCategory, float] = Field(
        default_factory=lambda: {
            CaseCategory.GENERAL: 0.5,
            CaseCategory.BBS: 0.3,
            CaseCategory.FLEX: 0.2,
        }
    )
    min_scoring_sample: int = Field(default=10, description="Completions needed to count toward overall throughput")
    min_segment_sample: int = Field(default=3, description="Cases needed for priority/rush/category breakdowns")

    # -- Risk prediction --
    critical_days: float = Field(default=1.0)
    high_risk_days: float = Field(default=2.0)
    min_slack_days: float = Field(default=0.5)
    confidence_high_score: float = Field(default=80.0)
    confidence_low_score: float = Field(default=60.0)
    default_confidence_score: float = Field(default=50.0)
    contention_ratio: float = Field(default=1.5)
    contention_confidence_factor: float = Field(default=0.8)
    fallback_benchmark_seconds: float = Field(default=DAY_SECONDS)

    # -- Recommendations / insights --
    buffer_compliance_target: float = Field(default=80.0)
    late_share_threshold: float = Field(default=0.3)
    finishing_late_share_threshold: float = Field(default=0.2)
    short_lead_days: float = Field(default=3.0)
    short_lead_share_threshold: float = Field(default=0.2)
    slow_velocity_score: float = Field(default=50.0)
    excellent_velocity_score: float = Field(default=90.0)
    healthy_velocity_score: float = Field(default=70.0)

    # -- Processing --
    max_chunk_ms: float = Field(default=5.0, gt=0, description="Work budget per chunk before yielding")
    yield_interval: float = Field(default=0.02, ge=0, description="Seconds to sleep between chunks")

    @field_validator('stage_tracking_start')
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        return v if v.tzinfo is not None else v.replace(tzinfo=timezone.utc)

    @model_validator(mode='after')
    def validate_workday(self) -> 'AnalyticsConfig':
        if self.workday_start_hour >= self.workday_end_hour:
            raise ValueError(
                f"workday_start_hour ({self.workday_start_hour}) must be before "
                f"workday_end_hour ({self.workday_end_hour})"
            )
        if self.rush_reduction_min > self.rush_reduction_max:
            raise ValueError("rush_reduction_min must not exceed rush_reduction_max")
        return self

    def load_factor(self, active: int) -> float:
        """Multiplier for the current active-case count (1.0 if no band matches)."""
        for band in self.load_factor_table:
            if band.matches(active):
                return band.factor
        return 1.0

    def with_overrides(self, **overrides) -> 'AnalyticsConfig':
        """Return a validated copy with ``overrides`` applied.

        Raises:
            ConfigurationError: If an override is unknown or fails validation
        """
        unknown = set(overrides) - set(type(self).model_fields)
        if unknown:
            raise ConfigurationError(f"Unknown configuration fields: {sorted(unknown)}")
        data = self.model_dump()
        data.update(overrides)
        try:
            return AnalyticsConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration override: {e}") from e

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> 'AnalyticsConfig':
        """Build a config from defaults plus ``THROUGHPUT_*`` environment overrides.

        Args:
            env_file: Optional .env file loaded (without overriding the
                process environment) before reading variables

        Invalid values are logged and ignored, keeping the default.
        """
        if env_file:
            load_dotenv(env_file, override=False)

        config = cls()
        for name, field in cls.model_fields.items():
            env_key = f"{ENV_PREFIX}{name.upper()}"
            raw = os.getenv(env_key)
            if raw is None:
                continue
            if field.annotation not in (int, float, str):
                logger.warning(f"{env_key} is not overridable from the environment; ignoring")
                continue
            try:
                config = config.with_overrides(**{name: raw})
            except ConfigurationError:
                logger.warning(f"Invalid value in {env_key}: {raw!r}; keeping {getattr(config, name)!r}")

        logger.info(
            f"AnalyticsConfig loaded: percentile={config.target_percentile}, "
            f"alpha={config.smoothing_alpha}, timezone={config.working_timezone}"
        )
        return config


# Singleton instance for global access
_config_instance: Optional[AnalyticsConfig] = None


def get_config() -> AnalyticsConfig:
    """Get or create the global AnalyticsConfig (environment-driven).

    Example:
        ```python
        from lab_throughput.config import get_config

        config = get_config()
        report = await ThroughputAnalytics(config).analyze_stage(cases, Stage.DESIGN)
        ```
    """
    global _config_instance

    if _config_instance is None:
        _config_instance = AnalyticsConfig.from_env()

    return _config_instance


def reset_config():
    """Reset the global AnalyticsConfig instance.

    Used for testing or reconfiguration.
    """
    global _config_instance
    _config_instance = None
    logger.warning("AnalyticsConfig instance reset")
