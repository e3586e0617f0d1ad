"""Efficiency aggregator - one combined score per stage.

    score = on_time_rate * 0.6 + overall_throughput * 0.4
          * buffer factor      (1 - compliance gap * stage weight, buffered stages)
          * 0.95               (average lateness above 48h)
          * 1.02, capped       (expedited on-time rate above 90%)
          * 0.9                (critical violations above 10% of the population)

clamped to [0, 100] and rounded to one decimal. Insights, the detailed
explanation and recommendations read the same configured thresholds.
"""

import logging
from typing import Dict, List, Optional, Tuple

from lab_throughput.config import AnalyticsConfig
from lab_throughput.core.velocity.engine import round_half_up
from lab_throughput.models.analytics import (
    EfficiencyResult,
    Explanation,
    Insight,
    OnTimeSummary,
    PopulationSummary,
    Recommendation,
    VelocityResult,
)
from lab_throughput.models.case import CaseCategory, Stage
from lab_throughput.utils.formatting import format_duration

logger = logging.getLogger(__name__)

# (upper bound exclusive, label); the last label applies above every bound
CONFIDENCE_BANDS: List[Tuple[int, str]] = [
    (10, "Low"),
    (30, "Medium"),
    (100, "High"),
]

BUFFER_ADVICE = {
    Stage.DESIGN: (
        "Consider faster design processes.",
        "Missing buffers increases risk of delays in downstream stages.",
    ),
    Stage.PRODUCTION: (
        "Consider optimizing production workflow.",
        "Missing buffers leaves no time for finishing quality checks.",
    ),
}


def confidence_label(sample_size: int) -> str:
    """Confidence in a score given the number of cases behind it"""
    for bound, label in CONFIDENCE_BANDS:
        if sample_size < bound:
            return label
    return "Very High"


def _grade(value: float, good: float, fair: float) -> str:
    if value >= good:
        return "success"
    if value >= fair:
        return "warning"
    return "error"


class EfficiencyAggregator:
    """Combines throughput and on-time delivery into a stage efficiency score.

    Usage:
        aggregator = EfficiencyAggregator(config)
        velocity = aggregator.mark_scoring_eligibility(velocity)
        result = aggregator.aggregate(Stage.DESIGN, velocity, summaries, on_time, sample_size)
    """

    def __init__(self, config: Optional[AnalyticsConfig] = None):
        self.config = config or AnalyticsConfig()

    def mark_scoring_eligibility(
        self, velocity: Dict[CaseCategory, VelocityResult]
    ) -> Dict[CaseCategory, VelocityResult]:
        """Flag categories with too few completions as ``excluded_from_scoring``"""
        return {
            category: result.model_copy(update={
                "excluded_from_scoring": result.sample_size < self.config.min_scoring_sample,
            })
            for category, result in velocity.items()
        }

    def overall_throughput(self, velocity: Dict[CaseCategory, VelocityResult]) -> float:
        """Category-weighted mean velocity score over eligible categories (0 if none)"""
        weighted, total_weight = 0.0, 0.0
        for category, result in velocity.items():
            if result.no_data or result.sample_size < self.config.min_scoring_sample:
                continue
            weight = self.config.category_weights.get(category, 0.0)
            weighted += result.score * weight
            total_weight += weight
        return weighted / total_weight if total_weight > 0 else 0.0

    def buffer_factor(self, stage: Stage, on_time: OnTimeSummary) -> float:
        """Penalty multiplier for missed buffers of a buffered, non-final stage"""
        if self.config.buffer_lead_days.get(stage, 0.0) <= 0:
            return 1.0
        compliance = on_time.current_buffer_compliance
        if compliance >= 100:
            return 1.0
        weight = self.config.buffer_penalty_weights.get(stage, self.config.default_buffer_penalty_weight)
        return 1 - (100 - compliance) / 100 * weight

    def combined_score(
        self, stage: Stage, throughput: float, on_time: OnTimeSummary
    ) -> Tuple[float, Dict[str, object]]:
        """Combined score and the factors that shaped it."""
        config = self.config
        factors: Dict[str, object] = {
            "buffer_factor": 1.0,
            "lateness_dampened": False,
            "expedited_bonus": False,
            "critical_penalty": False,
        }

        if on_time.count == 0:
            return round_half_up(max(0.0, min(100.0, throughput)), 1), factors

        score = on_time.actual_rate * config.on_time_weight + throughput * config.throughput_weight

        factor = self.buffer_factor(stage, on_time)
        score *= factor
        factors["buffer_factor"] = factor

        if on_time.average_hours_late > config.lateness_dampening_hours:
            score *= config.lateness_dampening_factor
            factors["lateness_dampened"] = True

        expedited = on_time.expedited
        if not expedited.insufficient_sample and expedited.actual_rate > config.expedited_bonus_rate:
            score = min(100.0, score * config.expedited_bonus_factor)
            factors["expedited_bonus"] = True

        if on_time.critical_violations > on_time.count * config.critical_violation_share:
            score *= config.critical_violation_factor
            factors["critical_penalty"] = True

        return round_half_up(max(0.0, min(100.0, score)), 1), factors

    def throughput_insights(
        self,
        velocity: Dict[CaseCategory, VelocityResult],
        summaries: Dict[CaseCategory, PopulationSummary],
    ) -> List[Insight]:
        insights = []
        for category, result in velocity.items():
            if result.no_data:
                continue
            name = category.display_name
            if result.score < self.config.slow_velocity_score:
                summary = summaries.get(category)
                median_text = format_duration(summary.median if summary else None)
                insights.append(Insight(
                    level="warning",
                    message=f"{name} cases are taking longer than expected. Median time: {median_text}",
                ))
            elif result.score > self.config.excellent_velocity_score:
                insights.append(Insight(
                    level="success",
                    message=f"{name} cases are performing excellently with {result.score:.0f}% velocity score.",
                ))
        return insights

    def recommendations(self, stage: Stage, on_time: OnTimeSummary) -> List[Recommendation]:
        """Recommendations keyed off the configured delivery thresholds"""
        config = self.config
        recommendations: List[Recommendation] = []
        if on_time.count == 0:
            return recommendations

        if stage in BUFFER_ADVICE:
            compliance = on_time.current_buffer_compliance
            if compliance < config.buffer_compliance_target:
                advice, impact = BUFFER_ADVICE[stage]
                rush_note = ""
                if stage is Stage.DESIGN and on_time.expedited_count > 0:
                    rush_note = f" Rush/priority cases use {on_time.rush_factor.factor * 100:.0f}% buffer time."
                recommendations.append(Recommendation(
                    priority="high",
                    kind="process",
                    message=f"Only {compliance:.0f}% of cases meet buffer requirements.{rush_note} {advice}",
                    impact=impact,
                ))
        elif stage is Stage.FINISHING:
            if on_time.stage_late_count > on_time.count * config.finishing_late_share_threshold:
                share = on_time.stage_late_count / on_time.count * 100
                recommendations.append(Recommendation(
                    priority="high",
                    kind="workflow",
                    message=f"{on_time.stage_late_count} cases ({share:.0f}%) went late during finishing stage.",
                    impact="Late deliveries in finishing impact customer satisfaction directly.",
                ))

        if on_time.short_lead_count > on_time.count * config.short_lead_share_threshold:
            share = on_time.short_lead_count / on_time.count * 100
            recommendations.append(Recommendation(
                priority="medium",
                kind="planning",
                message=(
                    f"{share:.0f}% of cases have less than {config.short_lead_days:g} days total time. "
                    f"Consider better advance planning."
                ),
                impact="High proportion of rush cases reduces efficiency across all stages.",
            ))

        completed = on_time.completed_count
        if completed > 0 and on_time.late_completed_count > completed * config.late_share_threshold:
            share = on_time.late_completed_count / completed * 100
            recommendations.append(Recommendation(
                priority="high",
                kind="performance",
                message=(
                    f"{share:.0f}% of completed cases are delivered late, "
                    f"averaging {on_time.average_days_late:.1f} days past due."
                ),
                impact="Consistent late deliveries impact customer satisfaction and team morale.",
            ))

        return recommendations

    def explain(
        self,
        stage: Stage,
        score: float,
        sample_size: int,
        velocity: Dict[CaseCategory, VelocityResult],
        summaries: Dict[CaseCategory, PopulationSummary],
        on_time: OnTimeSummary,
        buffer_factor: float,
    ) -> Explanation:
        config = self.config
        explanation = Explanation()

        explanation.overall.append(Insight(
            level="info",
            message=f"The {score}% efficiency score is calculated from {sample_size} cases in the {stage.value} stage.",
        ))
        explanation.overall.append(Insight(
            level="info",
            message=(
                f"This combines on-time delivery ({config.on_time_weight * 100:.0f}% weight) "
                f"and throughput velocity ({config.throughput_weight * 100:.0f}% weight)."
            ),
        ))

        if on_time.count > 0:
            explanation.on_time.append(Insight(
                level=_grade(on_time.actual_rate, 80, 60),
                message=(
                    f"{on_time.actual_on_time} out of {on_time.count} cases "
                    f"({on_time.actual_rate:.1f}%) were delivered on time."
                ),
            ))
        if on_time.average_hours_late > 0:
            explanation.on_time.append(Insight(
                level="warning",
                message=f"Late cases averaged {on_time.average_days_late:.1f} days past due.",
            ))
        if config.buffer_lead_days.get(stage, 0.0) > 0 and on_time.count > 0:
            compliance = on_time.current_buffer_compliance
            explanation.on_time.append(Insight(
                level=_grade(compliance, 80, 60),
                message=(
                    f"{compliance:.0f}% of cases met buffer requirements. Rush/priority cases use "
                    f"{on_time.rush_factor.factor * 100:.0f}% of standard buffer time."
                ),
            ))

        for category, result in velocity.items():
            if result.no_data:
                continue
            summary = summaries.get(category)
            explanation.throughput.append(Insight(
                level=_grade(result.score, config.healthy_velocity_score, config.slow_velocity_score),
                message=(
                    f"{category.display_name} cases: {result.sample_size} completed with "
                    f"{format_duration(summary.median if summary else None)} median time "
                    f"({result.score:.0f}% velocity score)."
                ),
            ))

        if score < 50:
            cause = "poor on-time delivery" if on_time.actual_rate < 50 else "slow throughput velocity"
            explanation.factors.append(Insight(
                level="error",
                message=f"Low efficiency is primarily due to {cause}.",
            ))
        elif score > 80:
            explanation.factors.append(Insight(
                level="success",
                message="High efficiency indicates good balance between speed and reliability.",
            ))

        if buffer_factor < 1:
            explanation.factors.append(Insight(
                level="warning",
                message=(
                    f"Buffer compliance ({on_time.current_buffer_compliance:.1f}%) is reducing "
                    f"the efficiency score by {(1 - buffer_factor) * 100:.1f}%."
                ),
            ))

        return explanation

    def aggregate(
        self,
        stage: Stage,
        velocity: Dict[CaseCategory, VelocityResult],
        summaries: Dict[CaseCategory, PopulationSummary],
        on_time: OnTimeSummary,
        sample_size: int,
    ) -> EfficiencyResult:
        """Efficiency result of a stage.

        Args:
            stage: Stage analysed
            velocity: Velocity result per category
            summaries: Population summary per category
            on_time: On-time summary of the stage population
            sample_size: Number of valid (non-excluded, non-outlier) cases
        """
        throughput = self.overall_throughput(velocity)
        score, factors = self.combined_score(stage, throughput, on_time)

        logger.info(
            f"Efficiency {stage.value}: score={score}, throughput={throughput:.1f}, "
            f"on-time={on_time.actual_rate:.1f}%, n={sample_size}"
        )

        return EfficiencyResult(
            stage=stage,
            score=score,
            overall_throughput=throughput,
            on_time_rate=on_time.actual_rate,
            buffer_factor=factors["buffer_factor"],
            lateness_dampened=factors["lateness_dampened"],
            expedited_bonus=factors["expedited_bonus"],
            critical_penalty=factors["critical_penalty"],
            sample_size=sample_size,
            confidence=confidence_label(sample_size),
            insights=self.throughput_insights(velocity, summaries),
            explanation=self.explain(
                stage, score, sample_size, velocity, summaries, on_time, factors["buffer_factor"]
            ),
            recommendations=self.recommendations(stage, on_time),
        )
