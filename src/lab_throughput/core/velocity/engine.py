"""Velocity engine - load-adjusted benchmarks and velocity scores.

Per (stage, category) the engine turns recent completions into a benchmark:

    raw        = P75 of completion durations
    smoothed   = alpha * raw + (1 - alpha) * previous_smoothed   (seeded with raw)
    adjusted   = smoothed * concurrency_scale * load_factor * sqrt(time_weighted_load)

and scores how the completions fared against the adjusted target, blended
with the impact of the work currently in flight.
"""

import logging
import math
from datetime import datetime
from typing import List, Optional, Sequence

import numpy as np

from lab_throughput.config import DAY_SECONDS, AnalyticsConfig
from lab_throughput.core.statistics.population import mean, percentile
from lab_throughput.models.analytics import (
    Benchmark,
    CompletionClassification,
    VelocityResult,
    VelocityStatus,
)
from lab_throughput.models.case import CaseCategory, Stage
from lab_throughput.models.timeline import ActiveCase, CompletionRecord

logger = logging.getLogger(__name__)


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with halves away from zero for positive values (2.5 -> 3)"""
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def classify_completions(
    completions: Sequence[CompletionRecord],
    adjusted_target: float,
) -> List[CompletionClassification]:
    """Classify every completion as exceeded / met / missed against a target.

    ``ratio = target / actual``: below 1 is missed, above 1 exceeded, exactly
    1 met. Reproducible on its own from the completions and the target.
    """
    classified = []
    for completion in completions:
        actual = completion.duration_seconds
        if actual <= 0:
            status = VelocityStatus.EXCEEDED
            percent = -100.0
        else:
            ratio = adjusted_target / actual
            if ratio < 1:
                status = VelocityStatus.MISSED
            elif ratio > 1:
                status = VelocityStatus.EXCEEDED
            else:
                status = VelocityStatus.MET
            percent = round((actual / adjusted_target - 1) * 100, 1) if adjusted_target > 0 else 0.0

        classified.append(CompletionClassification(
            case_id=completion.case_id,
            case_number=completion.case_number,
            status=status,
            actual_seconds=actual,
            target_seconds=adjusted_target,
            percent_difference=percent,
            time_difference_seconds=abs(actual - adjusted_target),
        ))
    return classified


class VelocityEngine:
    """Computes benchmarks and velocity scores for one stage.

    Usage:
        engine = VelocityEngine(config)
        result = engine.score(Stage.DESIGN, CaseCategory.GENERAL, completions, active, now)
        if not result.no_data:
            persist(result.benchmark)
    """

    def __init__(self, config: Optional[AnalyticsConfig] = None):
        self.config = config or AnalyticsConfig()

    def smoothed_target(self, raw: float, previous: Optional[float]) -> float:
        """Exponential moving average of the raw target (seeded with raw)"""
        if previous is None:
            return raw
        alpha = self.config.smoothing_alpha
        return alpha * raw + (1 - alpha) * previous

    def concurrency_scale(self, current_active: int, avg_historical_active: float) -> float:
        """Stretch factor for more (or less) concurrent work than the historical norm"""
        if avg_historical_active == 0:
            return 1.0
        if current_active == 0:
            return self.config.idle_concurrency_scale

        ratio = current_active / avg_historical_active
        scale = 0.5 + 0.5 * float(np.tanh(0.5 * (ratio - 1))) + 0.5
        return min(self.config.concurrency_scale_max, max(self.config.concurrency_scale_min, scale))

    def time_weighted_load(self, active: Sequence[ActiveCase], now: datetime) -> float:
        """Mean age weight of the active cases (0 when nothing is active).

        Each case weighs ``1 + days_in_stage / period``, capped at ``age_weight_cap``.
        """
        if not active:
            return 0.0

        weights = [
            min(
                self.config.age_weight_cap,
                1 + max(0.0, (now - case.stage_entered_at).total_seconds())
                / DAY_SECONDS / self.config.age_weight_period_days,
            )
            for case in active
        ]
        return mean(weights)

    def active_load_impact(self, active: Sequence[ActiveCase], now: datetime) -> float:
        """0-100 score of the work in flight (100 when nothing is active)"""
        if not active:
            return 100.0
        load = self.time_weighted_load(active, now)
        impact = 100.0 / (self.config.load_factor(len(active)) * load)
        return max(0.0, min(100.0, impact))

    def score(
        self,
        stage: Stage,
        category: CaseCategory,
        completions: Sequence[CompletionRecord],
        active: Sequence[ActiveCase],
        now: datetime,
        previous_smoothed: Optional[float] = None,
    ) -> VelocityResult:
        """Benchmark and velocity score of one (stage, category).

        Args:
            stage: Stage analysed
            category: Category analysed
            completions: Closed, non-outlier stays of the category
            active: Cases of the category whose stage visit is open
            now: Reference time of the run
            previous_smoothed: Smoothed target persisted from the previous run

        Returns:
            VelocityResult (``no_data=True`` when there are no completions)
        """
        current_active = len(active)
        if not completions:
            logger.debug(f"No completions for {stage.value}/{category.value}; velocity has no data")
            return VelocityResult.empty(stage, category, current_active=current_active)

        if len(completions) == 1:
            return self._single_completion(stage, category, completions[0], active, now, previous_smoothed)

        config = self.config
        durations = [c.duration_seconds for c in completions]

        raw = percentile(durations, config.target_percentile)
        smoothed = self.smoothed_target(raw, previous_smoothed)

        avg_historical = mean([c.active_count_at_start for c in completions])
        scale = self.concurrency_scale(current_active, avg_historical)
        load_factor = config.load_factor(current_active)
        weighted_load = self.time_weighted_load(active, now)
        load_adjustment = math.sqrt(weighted_load) if weighted_load > 0 else 1.0

        adjusted = smoothed * scale * load_factor * load_adjustment

        ratios = [min(1.0, adjusted / d) if d > 0 else 1.0 for d in durations]
        completed_velocity = round_half_up(mean(ratios) * 100)
        if len(completions) <= config.velocity_floor_sample_size:
            completed_velocity = max(config.velocity_floor, completed_velocity)

        impact = self.active_load_impact(active, now)
        weight = config.active_weight
        if len(completions) <= config.small_sample_size:
            weight *= 0.5

        velocity_score = round_half_up(completed_velocity * (1 - weight) + impact * weight)

        logger.debug(
            f"Velocity {stage.value}/{category.value}: n={len(completions)}, raw={raw:.0f}s, "
            f"smoothed={smoothed:.0f}s, adjusted={adjusted:.0f}s, score={velocity_score}"
        )

        return VelocityResult(
            stage=stage,
            category=category,
            score=velocity_score,
            sample_size=len(completions),
            current_active=current_active,
            completed_velocity=completed_velocity,
            active_impact=impact,
            active_weight=weight,
            concurrency_scale=scale,
            load_factor=load_factor,
            time_weighted_load=weighted_load,
            load_adjustment=load_adjustment,
            adjusted_target_seconds=adjusted,
            benchmark=Benchmark(
                stage=stage,
                category=category,
                raw_target_seconds=raw,
                smoothed_target_seconds=smoothed,
                sample_size=len(completions),
                avg_historical_active=avg_historical,
            ),
            next_smoothed_target=smoothed,
            classifications=classify_completions(completions, adjusted),
        )

    def _single_completion(
        self,
        stage: Stage,
        category: CaseCategory,
        completion: CompletionRecord,
        active: Sequence[ActiveCase],
        now: datetime,
        previous_smoothed: Optional[float],
    ) -> VelocityResult:
        """A lone completion has no percentile; score it by fixed rule.

        100 with nothing in flight, otherwise ``base + impact / 10``.
        """
        duration = completion.duration_seconds
        smoothed = self.smoothed_target(duration, previous_smoothed)

        if active:
            impact = self.active_load_impact(active, now)
            velocity_score = round_half_up(self.config.single_completion_base_score + impact / 10)
        else:
            impact = 100.0
            velocity_score = 100.0

        return VelocityResult(
            stage=stage,
            category=category,
            score=velocity_score,
            sample_size=1,
            current_active=len(active),
            completed_velocity=100.0,
            active_impact=impact,
            time_weighted_load=self.time_weighted_load(active, now),
            adjusted_target_seconds=duration,
            benchmark=Benchmark(
                stage=stage,
                category=category,
                raw_target_seconds=duration,
                smoothed_target_seconds=smoothed,
                sample_size=1,
                avg_historical_active=float(completion.active_count_at_start),
            ),
            next_smoothed_target=smoothed,
            is_single_completion=True,
            classifications=[
                CompletionClassification(
                    case_id=completion.case_id,
                    case_number=completion.case_number,
                    status=VelocityStatus.MET,
                    actual_seconds=duration,
                    target_seconds=duration,
                    percent_difference=0.0,
                    time_difference_seconds=0.0,
                )
            ],
        )
