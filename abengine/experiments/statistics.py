"""Per-variant statistics and recommendations for experiments.

Conversion rates use the normal approximation: a Wald confidence interval
around each variant's rate and a two-sided z-test of that rate against
zero. Significance additionally requires a sample above 30 subjects and a
margin of error under five percentage points.
"""

import math
from collections.abc import Sequence
from datetime import datetime

from abengine.experiments.models import (
    AnalysisMetadata,
    Assignment,
    ConfidenceInterval,
    DataQuality,
    Experiment,
    ExperimentAnalysis,
    ExperimentEvent,
    ExperimentStatus,
    Recommendation,
    Variant,
    VariantResult,
    _utcnow,
)
from abengine.experiments.recorder import CONVERSION_PREFIX, REVENUE_METRIC

# Two-sided z critical values by confidence level
_Z_SCORES: dict[float, float] = {
    0.80: 1.28,
    0.85: 1.44,
    0.90: 1.64,
    0.95: 1.96,
    0.99: 2.58,
}
_DEFAULT_Z_SCORE = 1.96

MIN_SAMPLE_FOR_SIGNIFICANCE = 30
MAX_SIGNIFICANT_MARGIN = 0.05
INCONCLUSIVE_CONFIDENCE = 0.3

ANALYSIS_ASSUMPTIONS = [
    "Normal distribution of metrics",
    "Independent observations",
    "Consistent user behavior during test period",
]

_SECONDS_PER_DAY = 60 * 60 * 24


def get_z_score(confidence_level: float) -> float:
    """Look up the z critical value for a confidence level (default 1.96)."""
    return _Z_SCORES.get(round(confidence_level, 2), _DEFAULT_Z_SCORE)


def standard_error(rate: float, sample_size: int) -> float:
    """Standard error of a proportion; 0 for an empty sample.

    Several conversion events per subject can push ``rate`` above 1, which
    would make the binomial variance negative; it is floored at 0.
    """
    if sample_size <= 0:
        return 0.0
    return math.sqrt(max(0.0, rate * (1 - rate)) / sample_size)


def calculate_p_value(rate: float, std_error: float) -> float:
    """Two-sided p-value of a z-test of ``rate`` against zero.

    Args:
        rate: Observed proportion.
        std_error: Standard error of the proportion.

    Returns:
        p-value in [0, 1].
    """
    if std_error <= 0:
        return 1.0 if rate == 0 else 0.0
    z = abs(rate / std_error)
    return min(1.0, math.erfc(z / math.sqrt(2)))


def calculate_lift(rate: float, control_rate: float) -> float:
    """Percentage change of ``rate`` over ``control_rate`` (0 if control is 0)."""
    if control_rate <= 0:
        return 0.0
    return (rate - control_rate) / control_rate * 100


def assess_data_quality(
    participants: int, events: int
) -> tuple[DataQuality, str | None]:
    """Grade analysis input by participant count and event ratio.

    Returns:
        Tuple of (quality, note explaining a Low grade).
    """
    if participants < 100:
        return DataQuality.LOW, "Need more participants"
    if events < participants * 0.1:
        return DataQuality.LOW, "Low engagement rate"
    if participants > 1000 and events > participants * 0.2:
        return DataQuality.HIGH, None
    return DataQuality.MEDIUM, None


def _duration_days(experiment: Experiment, now: datetime) -> int:
    if experiment.start_date is None:
        return 0
    end = experiment.end_date or now
    elapsed = (end - experiment.start_date).total_seconds()
    return max(0, math.ceil(elapsed / _SECONDS_PER_DAY))


class StatisticalAnalyzer:
    """Aggregates assignments and events into an experiment analysis."""

    def compute_variant_result(
        self,
        variant: Variant,
        assignments: Sequence[Assignment],
        events: Sequence[ExperimentEvent],
        confidence_level: float,
    ) -> VariantResult:
        """Compute statistics for one variant.

        Args:
            variant: The variant.
            assignments: Assignments to this variant.
            events: Events recorded for this variant.
            confidence_level: Experiment confidence level.

        Returns:
            Variant result with lift left at 0.
        """
        sample_size = len(assignments)
        conversions = sum(1 for e in events if e.metric.startswith(CONVERSION_PREFIX))
        conversion_rate = conversions / sample_size if sample_size > 0 else 0.0
        revenue = sum(e.value for e in events if e.metric == REVENUE_METRIC)

        std_error = standard_error(conversion_rate, sample_size)
        margin = get_z_score(confidence_level) * std_error

        if sample_size > MIN_SAMPLE_FOR_SIGNIFICANCE:
            p_value = calculate_p_value(conversion_rate, std_error)
        else:
            p_value = 1.0

        return VariantResult(
            variant_id=variant.id,
            variant_name=variant.name,
            is_control=variant.is_control,
            sample_size=sample_size,
            conversions=conversions,
            conversion_rate=conversion_rate,
            revenue=revenue,
            confidence=confidence_level,
            p_value=p_value,
            standard_error=std_error,
            margin_of_error=margin,
            confidence_interval=ConfidenceInterval(
                lower=min(1.0, max(0.0, conversion_rate - margin)),
                upper=min(1.0, conversion_rate + margin),
            ),
            is_statistically_significant=(
                sample_size > MIN_SAMPLE_FOR_SIGNIFICANCE
                and margin < MAX_SIGNIFICANT_MARGIN
            ),
        )

    def apply_lift(self, results: list[VariantResult]) -> list[VariantResult]:
        """Fill in lift relative to the control result (control lift is 0)."""
        control = next((r for r in results if r.is_control), None)
        if control is None:
            return results
        return [
            r.model_copy(
                update={
                    "lift": 0.0
                    if r.is_control
                    else calculate_lift(r.conversion_rate, control.conversion_rate)
                }
            )
            for r in results
        ]

    def generate_recommendation(
        self,
        experiment: Experiment,
        results: Sequence[VariantResult],
    ) -> Recommendation:
        """Recommend a winner, or more data collection.

        The candidate is the non-control variant with the highest raw
        conversion rate (declared order breaks ties). It wins only if it is
        flagged statistically significant.
        """
        control = next((r for r in results if r.is_control), None)
        if control is None:
            return Recommendation(
                confidence=0.0,
                reasoning="No control variant data available",
                next_steps=["Ensure control variant is receiving traffic"],
            )

        challengers = [r for r in results if not r.is_control]
        best = max(challengers, key=lambda r: r.conversion_rate, default=None)

        if best is None or not best.is_statistically_significant:
            return Recommendation(
                confidence=INCONCLUSIVE_CONFIDENCE,
                reasoning=(
                    "No statistically significant winner found. "
                    "May need more data or longer test duration."
                ),
                next_steps=[
                    "Continue test to collect more data",
                    "Check if sample size is adequate",
                    "Review test setup and metrics",
                ],
            )

        confidence = experiment.config.confidence_level
        return Recommendation(
            winning_variant=best.variant_id,
            confidence=confidence,
            reasoning=(
                f"Variant {best.variant_name} shows {best.lift:.2f}% improvement "
                f"over control with {confidence * 100:.1f}% confidence."
            ),
            next_steps=[
                "Implement winning variant",
                "Monitor performance post-implementation",
                "Document learnings for future tests",
            ],
        )

    def analyze(
        self,
        experiment: Experiment,
        assignments: Sequence[Assignment],
        events: Sequence[ExperimentEvent],
        now: datetime | None = None,
    ) -> ExperimentAnalysis:
        """Build a full analysis from the complete assignment and event sets.

        Args:
            experiment: The experiment.
            assignments: All assignments of the experiment.
            events: All events of the experiment.
            now: Reference time for duration (defaults to current UTC time).

        Returns:
            Experiment analysis.
        """
        now = now or _utcnow()
        confidence_level = experiment.config.confidence_level

        results = [
            self.compute_variant_result(
                variant,
                [a for a in assignments if a.variant_id == variant.id],
                [e for e in events if e.variant_id == variant.id],
                confidence_level,
            )
            for variant in experiment.config.variants
        ]
        results = self.apply_lift(results)

        quality, note = assess_data_quality(len(assignments), len(events))

        return ExperimentAnalysis(
            experiment_id=experiment.id,
            status=ExperimentStatus(experiment.status),
            start_date=experiment.start_date,
            end_date=experiment.end_date,
            duration_days=_duration_days(experiment, now),
            total_participants=len(assignments),
            total_events=len(events),
            results=results,
            recommendation=self.generate_recommendation(experiment, results),
            metadata=AnalysisMetadata(
                last_updated=now,
                data_quality=quality,
                data_quality_note=note,
                assumptions=list(ANALYSIS_ASSUMPTIONS),
            ),
        )
