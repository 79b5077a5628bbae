"""Data models for experiments, assignments, events and analysis output."""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def _short_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


# ==================== Enums ====================


class ExperimentStatus(str, Enum):
    """Lifecycle status of an experiment."""

    DRAFT = "draft"  # Being configured, variants may still change
    ACTIVE = "active"  # Assigning subjects and collecting events
    PAUSED = "paused"  # Temporarily not assigning
    COMPLETED = "completed"  # Terminal


class MetricType(str, Enum):
    """Kind of metric tracked by an experiment."""

    CONVERSION = "conversion"
    REVENUE = "revenue"
    ENGAGEMENT = "engagement"
    RETENTION = "retention"
    CUSTOM = "custom"


class MetricGoal(str, Enum):
    """Desired direction of a metric."""

    INCREASE = "increase"
    DECREASE = "decrease"


class DataQuality(str, Enum):
    """Coarse indicator of how trustworthy an analysis is."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


# ==================== Definition Models ====================


class Variant(BaseModel):
    """One arm of an experiment."""

    id: str = Field(
        default_factory=lambda: _short_id("var"), description="Variant identifier"
    )
    name: str = Field(..., description="Variant name")
    description: str = Field(default="", description="Variant description")
    traffic_split: float = Field(
        ..., description="Share of participating subjects (0-100)"
    )
    configuration: dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque payload returned to callers, never interpreted",
    )
    is_control: bool = Field(default=False, description="Baseline variant flag")


class TargetCriteria(BaseModel):
    """Eligibility filters; every populated filter must be satisfied."""

    user_roles: list[str] | None = Field(None, description="Allowed roles")
    device_types: list[str] | None = Field(None, description="Allowed device types")
    geographic_regions: list[str] | None = Field(None, description="Allowed regions")
    user_segments: list[str] | None = Field(
        None, description="Subject must belong to at least one of these segments"
    )
    company_types: list[str] | None = Field(None, description="Allowed company types")
    custom_criteria: dict[str, Any] | None = Field(
        None,
        description="Attribute predicates: key -> value or list of accepted values",
    )

    @property
    def is_empty(self) -> bool:
        """True when no filter is populated."""
        return not any(
            (
                self.user_roles,
                self.device_types,
                self.geographic_regions,
                self.user_segments,
                self.company_types,
                self.custom_criteria,
            )
        )


class Metric(BaseModel):
    """A metric declared on an experiment."""

    id: str = Field(default_factory=lambda: _short_id("met"), description="Metric ID")
    name: str = Field(..., description="Metric name")
    type: MetricType = Field(default=MetricType.CONVERSION, description="Metric kind")
    goal: MetricGoal = Field(default=MetricGoal.INCREASE, description="Direction")
    primary_metric: bool = Field(default=False, description="Primary metric flag")
    custom_event_name: str | None = Field(None, description="Custom event name")


class ExperimentConfig(BaseModel):
    """Proposed experiment definition.

    Range and structure checks are done by the configuration validator so
    that they surface as ``ConfigurationError``.
    """

    name: str = Field(..., description="Experiment name")
    description: str = Field(default="", description="Description")
    variants: list[Variant] = Field(default_factory=list, description="Variants")
    target_criteria: TargetCriteria = Field(
        default_factory=TargetCriteria, description="Eligibility filters"
    )
    metrics: list[Metric] = Field(default_factory=list, description="Metrics")
    end_date: datetime | None = Field(None, description="Planned end date")
    sample_size: int | None = Field(None, description="Target sample size")
    confidence_level: float = Field(default=0.95, description="Confidence level")
    traffic_allocation: float = Field(
        default=100.0, description="Percentage of eligible subjects that participate"
    )
    created_by: str = Field(default="", description="Owner identifier")
    company_id: str | None = Field(None, description="Tenant identifier")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Free-form")


class Experiment(BaseModel):
    """A validated experiment."""

    id: str = Field(..., description="Experiment ID")
    config: ExperimentConfig = Field(..., description="Experiment definition")
    status: ExperimentStatus = Field(
        default=ExperimentStatus.DRAFT, description="Current status"
    )
    created_at: datetime = Field(default_factory=_utcnow, description="Creation time")
    updated_at: datetime = Field(default_factory=_utcnow, description="Last change")
    start_date: datetime | None = Field(None, description="When it became active")
    end_date: datetime | None = Field(None, description="When it completed")

    @property
    def is_active(self) -> bool:
        """Check if the experiment is currently assigning subjects."""
        return self.status == ExperimentStatus.ACTIVE

    @property
    def control_variant(self) -> Variant | None:
        """Get the control variant."""
        for variant in self.config.variants:
            if variant.is_control:
                return variant
        return None

    def get_variant(self, variant_id: str) -> Variant | None:
        """Get a variant by ID."""
        for variant in self.config.variants:
            if variant.id == variant_id:
                return variant
        return None


# ==================== Runtime Records ====================


class Assignment(BaseModel):
    """Binding of a subject to a variant."""

    experiment_id: str = Field(..., description="Experiment ID")
    subject_id: str = Field(..., description="Subject (user) ID")
    variant_id: str = Field(..., description="Assigned variant ID")
    assigned_at: datetime = Field(default_factory=_utcnow, description="Assign time")
    context: dict[str, Any] | None = Field(None, description="Request context")


class ExperimentEvent(BaseModel):
    """Outcome event recorded against an assignment. Append-only."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Event ID")
    experiment_id: str = Field(..., description="Experiment ID")
    variant_id: str = Field(..., description="Variant of the subject's assignment")
    metric: str = Field(..., description="Metric name")
    value: float = Field(default=1.0, description="Metric value")
    timestamp: datetime = Field(default_factory=_utcnow, description="Event time")
    subject_id: str = Field(..., description="Subject ID")
    session_id: str | None = Field(None, description="Session ID")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Metadata")


# ==================== Analysis Output ====================


class ConfidenceInterval(BaseModel):
    """Bounds of a conversion-rate confidence interval."""

    lower: float = Field(default=0.0, description="Lower bound")
    upper: float = Field(default=0.0, description="Upper bound")


class VariantResult(BaseModel):
    """Statistical result for one variant."""

    variant_id: str = Field(..., description="Variant ID")
    variant_name: str = Field(..., description="Variant name")
    is_control: bool = Field(default=False, description="Control flag")
    sample_size: int = Field(default=0, description="Assigned subjects")
    conversions: int = Field(default=0, description="Conversion events")
    conversion_rate: float = Field(default=0.0, description="Conversions per subject")
    revenue: float = Field(default=0.0, description="Sum of revenue events")
    confidence: float = Field(default=0.95, description="Configured confidence level")
    p_value: float = Field(default=1.0, description="Two-sided p-value")
    standard_error: float = Field(default=0.0, description="Standard error")
    margin_of_error: float = Field(default=0.0, description="z * standard error")
    confidence_interval: ConfidenceInterval = Field(
        default_factory=ConfidenceInterval, description="Conversion-rate interval"
    )
    is_statistically_significant: bool = Field(
        default=False, description="Enough samples and a tight enough interval"
    )
    lift: float = Field(default=0.0, description="Percentage change vs control")


class Recommendation(BaseModel):
    """Decision guidance derived from variant results."""

    winning_variant: str | None = Field(None, description="Winning variant ID")
    confidence: float = Field(default=0.0, description="Confidence in the advice")
    reasoning: str = Field(default="", description="Human-readable rationale")
    next_steps: list[str] = Field(default_factory=list, description="Next steps")


class AnalysisMetadata(BaseModel):
    """Bookkeeping attached to an analysis."""

    last_updated: datetime = Field(default_factory=_utcnow, description="Computed at")
    data_quality: DataQuality = Field(default=DataQuality.LOW, description="Quality")
    data_quality_note: str | None = Field(None, description="Why quality is low")
    assumptions: list[str] = Field(default_factory=list, description="Assumptions")


class ExperimentAnalysis(BaseModel):
    """Per-variant results plus an overall recommendation."""

    experiment_id: str = Field(..., description="Experiment ID")
    status: ExperimentStatus = Field(..., description="Status at analysis time")
    start_date: datetime | None = Field(None, description="Start date")
    end_date: datetime | None = Field(None, description="End date")
    duration_days: int = Field(default=0, description="Days running")
    total_participants: int = Field(default=0, description="Assigned subjects")
    total_events: int = Field(default=0, description="Recorded events")
    results: list[VariantResult] = Field(default_factory=list, description="Results")
    recommendation: Recommendation = Field(
        default_factory=Recommendation, description="Recommendation"
    )
    metadata: AnalysisMetadata = Field(
        default_factory=AnalysisMetadata, description="Metadata"
    )


class VariantSummary(BaseModel):
    """Variant line of the statistics summary."""

    id: str
    name: str
    traffic_split: float
    is_control: bool
    sample_size: int = 0


class ExperimentStatistics(BaseModel):
    """Lightweight statistics summary of an experiment."""

    experiment_id: str = Field(..., description="Experiment ID")
    name: str = Field(..., description="Experiment name")
    status: ExperimentStatus = Field(..., description="Current status")
    start_date: datetime | None = Field(None, description="Start date")
    end_date: datetime | None = Field(None, description="End date")
    total_participants: int = Field(default=0, description="Assigned subjects")
    variants: list[VariantSummary] = Field(default_factory=list, description="Variants")
    metrics: list[Metric] = Field(default_factory=list, description="Metrics")
    last_updated: datetime = Field(default_factory=_utcnow, description="Computed at")
