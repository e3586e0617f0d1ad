"""Analytics run - from a case snapshot to a ``StageReport``.

One run captures a single reference time and threads it through every
"now"-relative calculation:

    screen & replay -> outliers per category -> completions / active
    -> velocity per category -> delivery scoring -> risk -> efficiency

Every phase that touches cases one by one runs through ``ChunkedProcessor``,
so a long run yields to the event loop between small chunks of work.

Nothing is cached between runs. The only state carried across runs is the
smoothed benchmark target, which the caller persists from
``StageReport.benchmarks`` and passes back as ``previous_benchmarks``.
"""

import logging
from datetime import datetime, timezone
from typing import (
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    Set,
    Tuple,
    Union,
    runtime_checkable,
)

from lab_throughput.config import AnalyticsConfig, get_config
from lab_throughput.core.compliance import BufferComplianceAnalyzer, DeliveryInput, DeliveryScorer
from lab_throughput.core.efficiency import EfficiencyAggregator, confidence_label
from lab_throughput.core.processing import ChunkedProcessor, ProgressCallback, ProgressTracker
from lab_throughput.core.risk import RiskPredictor, category_loads
from lab_throughput.core.statistics import PopulationStatistics, active_counts_at_start
from lab_throughput.core.timeline import TimelineReplayer, WorkingTimeClock
from lab_throughput.core.velocity import VelocityEngine
from lab_throughput.exceptions import PopulationFetchError
from lab_throughput.models.analytics import (
    Benchmark,
    CaseDetail,
    CompletionClassification,
    EfficiencyResult,
    ExcludedCase,
    PopulationSummary,
    VelocityResult,
)
from lab_throughput.models.case import Case, CaseCategory, Stage, ensure_utc
from lab_throughput.models.report import CategoryReport, StageReport
from lab_throughput.models.timeline import ActiveCase, CompletionRecord, StageTime

logger = logging.getLogger(__name__)

BenchmarkKey = Tuple[Stage, CaseCategory]

# Progress range of each phase of a run
SCREENING_PROGRESS = (0.0, 60.0)
OUTLIER_PROGRESS = (60.0, 65.0)
RECORD_PROGRESS = (65.0, 70.0)
VELOCITY_PROGRESS = (70.0, 75.0)
DELIVERY_PROGRESS = (75.0, 90.0)
RISK_PROGRESS = (90.0, 98.0)

OUTLIER_BATCH_SIZE = 50


@runtime_checkable
class CaseSource(Protocol):
    """Anything that can supply the case population of a run."""

    async def fetch_cases(self) -> List[Case]:
        ...


def benchmark_targets(benchmarks: Iterable[Benchmark]) -> Dict[BenchmarkKey, float]:
    """Smoothed targets keyed for ``previous_benchmarks``"""
    return {(b.stage, b.category): b.smoothed_target_seconds for b in benchmarks}


class ThroughputAnalytics:
    """Runs the analytics engine over a case population.

    Usage:
        analytics = ThroughputAnalytics(config)
        report = await analytics.analyze_stage(cases, Stage.DESIGN)
        saved = benchmark_targets(report.benchmarks)
        report = await analytics.analyze_stage(cases, Stage.DESIGN, previous_benchmarks=saved)
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        clock: Optional[WorkingTimeClock] = None,
        replayer: Optional[TimelineReplayer] = None,
    ):
        self.config = config or get_config()
        self.clock = clock or WorkingTimeClock.from_config(self.config)
        self.replayer = replayer or TimelineReplayer(self.config, self.clock)
        self.statistics = PopulationStatistics(self.config)
        self.velocity = VelocityEngine(self.config)
        self.buffers = BufferComplianceAnalyzer(self.config, self.clock)
        self.delivery = DeliveryScorer(self.config, self.buffers)
        self.risk = RiskPredictor(self.config, self.clock)
        self.efficiency = EfficiencyAggregator(self.config)

    async def run(
        self,
        source: CaseSource,
        stage: Stage,
        *,
        reference_time: Optional[datetime] = None,
        previous_benchmarks: Optional[Dict[BenchmarkKey, float]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> StageReport:
        """Fetch the population from ``source`` and analyse ``stage``.

        Raises:
            PopulationFetchError: If the population cannot be fetched; no
                partial report is produced
        """
        try:
            cases = await source.fetch_cases()
        except PopulationFetchError:
            raise
        except Exception as e:
            logger.error(f"Failed to fetch case population: {e}")
            raise PopulationFetchError(f"Failed to fetch case population: {e}", cause=e) from e

        return await self.analyze_stage(
            cases,
            stage,
            reference_time=reference_time,
            previous_benchmarks=previous_benchmarks,
            on_progress=on_progress,
        )

    async def analyze_all(
        self,
        cases: Sequence[Case],
        stages: Optional[Sequence[Stage]] = None,
        *,
        reference_time: Optional[datetime] = None,
        previous_benchmarks: Optional[Dict[BenchmarkKey, float]] = None,
    ) -> Dict[Stage, StageReport]:
        """Reports for several stages sharing one reference time"""
        now = ensure_utc(reference_time) if reference_time else datetime.now(timezone.utc)
        reports = {}
        for stage in stages or list(Stage):
            reports[stage] = await self.analyze_stage(
                cases, stage, reference_time=now, previous_benchmarks=previous_benchmarks
            )
        return reports

    async def analyze_stage(
        self,
        cases: Sequence[Case],
        stage: Stage,
        *,
        reference_time: Optional[datetime] = None,
        previous_benchmarks: Optional[Dict[BenchmarkKey, float]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> StageReport:
        """Analyse one stage of a case snapshot.

        Args:
            cases: Case population (never mutated)
            stage: Stage to analyse
            reference_time: The run's "now" (current UTC time when omitted)
            previous_benchmarks: Smoothed targets from the previous run
            on_progress: Called with monotonic 0-100 progress

        Returns:
            StageReport with ``no_data=True`` when no case qualifies
        """
        config = self.config
        now = ensure_utc(reference_time) if reference_time else datetime.now(timezone.utc)
        previous_benchmarks = previous_benchmarks or {}

        tracker = ProgressTracker(on_progress)
        tracker.reset()
        processor = ChunkedProcessor(config.max_chunk_ms, config.yield_interval, tracker)

        logger.info(f"Analysing {stage.value}: {len(cases)} cases, reference time {now.isoformat()}")

        screened = await processor.process(
            list(cases), lambda case: self._screen(case, stage, now), SCREENING_PROGRESS
        )

        excluded: List[ExcludedCase] = []
        valid: List[Tuple[Case, StageTime]] = []
        for rejected, accepted in screened:
            if rejected is not None:
                excluded.append(rejected)
            elif accepted is not None:
                valid.append(accepted)
        details, fences = await self._flag_outliers(
            processor, [_detail(case, stage_time) for case, stage_time in valid]
        )
        outlier_ids = {d.case_id for d in details if d.is_outlier}

        completions, active = await self._completions_and_active(processor, stage, valid, outlier_ids)

        # Per-category statistics and velocity, one category per work item
        present = [c for c in CaseCategory if any(d.category == c for d in details)]

        def score_category(category: CaseCategory) -> Tuple[PopulationSummary, VelocityResult]:
            members = [d for d in details if d.category == category]
            excluded_count = sum(1 for e in excluded if e.category == category)
            summary = self.statistics.summarize(
                members, excluded_count=excluded_count, fences=fences.get(category)
            )
            result = self.velocity.score(
                stage,
                category,
                completions.get(category, []),
                active.get(category, []),
                now,
                previous_smoothed=previous_benchmarks.get((stage, category)),
            )
            return summary, result

        scored = await processor.process(present, score_category, VELOCITY_PROGRESS)
        summaries: Dict[CaseCategory, PopulationSummary] = {
            category: summary for category, (summary, _) in zip(present, scored)
        }
        velocity: Dict[CaseCategory, VelocityResult] = self.efficiency.mark_scoring_eligibility(
            {category: result for category, (_, result) in zip(present, scored)}
        )

        categories: Dict[CaseCategory, CategoryReport] = {}
        for category, summary in summaries.items():
            priority, rush = self.statistics.compare_segments(
                d for d in details if d.category == category
            )
            categories[category] = CategoryReport(
                category=category,
                summary=summary,
                velocity=velocity[category],
                priority=priority,
                rush=rush,
                active_count=len(active.get(category, [])),
            )

        overall = self.statistics.summarize(details, excluded_count=len(excluded))

        # Delivery scoring over the non-outlier population
        classifications: Dict[str, CompletionClassification] = {
            c.case_id: c for result in velocity.values() for c in result.classifications
        }
        population: List[DeliveryInput] = [
            (case, stage_time.timeline, classifications.get(case.id))
            for case, stage_time in valid
            if case.id not in outlier_ids
        ]
        rush_factor = self.buffers.rush_factor([case for case, _, _ in population])
        deliveries = await processor.process(
            population,
            lambda item: self.delivery.evaluate(item[0], item[1], stage, rush_factor.factor, item[2]),
            DELIVERY_PROGRESS,
        )
        on_time = self.delivery.summarize(stage, deliveries, rush_factor)

        all_active = [a for group in active.values() for a in group]
        load = category_loads(all_active)
        predictions = await processor.process(
            all_active,
            lambda case: self.risk.predict_case(case, velocity, summaries, overall, load, now),
            RISK_PROGRESS,
        )
        predictions, risk_summary = self.risk.summarize(stage, predictions)

        sample_size = sum(1 for d in details if not d.is_outlier)
        if sample_size == 0:
            efficiency = EfficiencyResult(stage=stage, no_data=True, confidence=confidence_label(0))
        else:
            efficiency = self.efficiency.aggregate(stage, velocity, summaries, on_time, sample_size)

        report = StageReport(
            stage=stage,
            reference_time=now,
            no_data=sample_size == 0,
            summary=overall,
            categories=categories,
            overall_throughput=efficiency.overall_throughput,
            on_time=on_time,
            predictions=predictions,
            risk_summary=risk_summary,
            efficiency=efficiency,
            excluded_cases=excluded,
            case_details=details,
        )
        tracker.complete()

        logger.info(
            f"Analysed {stage.value}: {sample_size} valid, {len(outlier_ids)} outliers, "
            f"{len(excluded)} excluded, {len(all_active)} active, efficiency {efficiency.score}"
        )
        return report

    def _screen(
        self, case: Case, stage: Stage, now: datetime
    ) -> Tuple[Optional[ExcludedCase], Optional[Tuple[Case, StageTime]]]:
        """Exclusion record or (case, stage time) for one case; (None, None) if it never visited"""
        if not self.replayer.participates(case):
            return None, None

        rejected = self.statistics.screen_case(case, stage)
        if rejected is not None:
            return rejected, None

        timeline = self.replayer.replay(case, now)
        stage_time = self.replayer.stage_time(case, stage, now, timeline)
        if stage_time.visit_count == 0:
            return None, None

        rejected = self.statistics.screen_case(case, stage, stage_time)
        if rejected is not None:
            return rejected, None
        return None, (case, stage_time)

    async def _flag_outliers(
        self, processor: ChunkedProcessor, details: List[CaseDetail]
    ) -> Tuple[List[CaseDetail], Dict[CaseCategory, Tuple[float, float]]]:
        """Outlier pass per category, keeping the input order"""
        outlier_ids: Set[str] = set()
        fences: Dict[CaseCategory, Tuple[float, float]] = {}
        for category in CaseCategory:
            members = [d for d in details if d.category == category]
            if not members:
                continue
            category_ids, category_fences = self.statistics.outlier_ids(members)
            outlier_ids.update(category_ids)
            if category_fences is not None:
                fences[category] = category_fences

        flagged = await processor.process_in_batches(
            details,
            OUTLIER_BATCH_SIZE,
            lambda batch: self.statistics.mark_outliers(batch, outlier_ids),
            OUTLIER_PROGRESS,
        )
        return flagged, fences

    async def _completions_and_active(
        self,
        processor: ChunkedProcessor,
        stage: Stage,
        valid: Sequence[Tuple[Case, StageTime]],
        outlier_ids: Set[str],
    ) -> Tuple[Dict[CaseCategory, List[CompletionRecord]], Dict[CaseCategory, List[ActiveCase]]]:
        counts: Dict[str, int] = {}
        for category in CaseCategory:
            members = [(c, st) for c, st in valid if c.category == category]
            if not members:
                continue

            intervals = {
                case.id: [(v.entered_at, v.exited_at) for v in stage_time.visits]
                for case, stage_time in members
            }
            starts = {
                case.id: stage_time.first_entered_at
                for case, stage_time in members
                if not stage_time.is_active and case.id not in outlier_ids
            }
            counts.update(active_counts_at_start(intervals, starts))

        records = await processor.process(
            valid,
            lambda item: _record(stage, item[0], item[1], outlier_ids, counts),
            RECORD_PROGRESS,
        )

        completions: Dict[CaseCategory, List[CompletionRecord]] = {}
        active: Dict[CaseCategory, List[ActiveCase]] = {}
        for record in records:
            if isinstance(record, ActiveCase):
                active.setdefault(record.category, []).append(record)
            elif record is not None:
                completions.setdefault(record.category, []).append(record)
        return completions, active


def _record(
    stage: Stage,
    case: Case,
    stage_time: StageTime,
    outlier_ids: Set[str],
    counts: Dict[str, int],
) -> Union[ActiveCase, CompletionRecord, None]:
    """Active-case or completion record of one stay (None for an outlier)"""
    if stage_time.is_active:
        return ActiveCase(
            case_id=case.id,
            case_number=case.case_number,
            stage=stage,
            category=case.category,
            stage_entered_at=stage_time.visits[-1].entered_at,
            elapsed_working_seconds=stage_time.adjusted_working_seconds,
            due=case.due,
            priority=case.priority,
            rush=case.is_rush,
        )
    if case.id in outlier_ids:
        return None
    return CompletionRecord(
        case_id=case.id,
        case_number=case.case_number,
        stage=stage,
        category=case.category,
        duration_seconds=stage_time.adjusted_working_seconds,
        raw_working_seconds=stage_time.working_seconds,
        hold_seconds=stage_time.working_hold_seconds,
        visit_count=stage_time.visit_count,
        entered_at=stage_time.first_entered_at,
        exited_at=stage_time.visits[-1].end_or(stage_time.first_entered_at),
        active_count_at_start=counts.get(case.id, 0),
        priority=case.priority,
        rush=case.is_rush,
    )


def _detail(case: Case, stage_time: StageTime) -> CaseDetail:
    return CaseDetail(
        case_id=case.id,
        case_number=case.case_number,
        category=case.category,
        duration_seconds=stage_time.adjusted_working_seconds,
        raw_working_seconds=stage_time.working_seconds,
        hold_seconds=stage_time.working_hold_seconds,
        visit_count=stage_time.visit_count,
        is_active=stage_time.is_active,
        priority=case.priority,
        rush=case.is_rush,
        stage_entered_at=stage_time.first_entered_at,
        stage_exited_at=stage_time.last_exited_at,
    )
