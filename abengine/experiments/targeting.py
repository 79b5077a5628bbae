"""Target-criteria evaluation against resolved subject attributes."""

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from pydantic import BaseModel, Field

from abengine.experiments.models import TargetCriteria

logger = logging.getLogger(__name__)

# Context keys that may overlay resolved attributes
_CONTEXT_DEVICE_KEYS = ("device_type", "deviceType")
_CONTEXT_REGION_KEYS = ("region",)


class SubjectAttributes(BaseModel):
    """Targeting attributes of a subject."""

    subject_id: str = Field(..., description="Subject ID")
    role: str | None = Field(None, description="Role")
    device_type: str | None = Field(None, description="Device type")
    region: str | None = Field(None, description="Geographic region")
    segments: list[str] = Field(default_factory=list, description="Segments")
    company_type: str | None = Field(None, description="Company type")
    attributes: dict[str, Any] = Field(
        default_factory=dict, description="Arbitrary attributes for custom criteria"
    )


class IdentityResolver(Protocol):
    """Resolves a subject ID to its targeting attributes."""

    def resolve(self, subject_id: str) -> SubjectAttributes | None:
        """Return the subject's attributes, or None if unknown."""
        ...


class StaticIdentityResolver:
    """Identity resolver backed by a fixed mapping."""

    def __init__(self, subjects: Mapping[str, SubjectAttributes] | None = None) -> None:
        self._subjects: dict[str, SubjectAttributes] = dict(subjects or {})

    def add(self, attributes: SubjectAttributes) -> None:
        """Register or replace a subject."""
        self._subjects[attributes.subject_id] = attributes

    def resolve(self, subject_id: str) -> SubjectAttributes | None:
        return self._subjects.get(subject_id)


def _first_present(context: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if context.get(key) is not None:
            return context[key]
    return None


def _matches_custom(expected: Any, actual: Any) -> bool:
    if actual is None:
        return False
    if isinstance(expected, (list, tuple, set, frozenset)):
        return actual in expected
    return actual == expected


def matches_criteria(criteria: TargetCriteria, subject: SubjectAttributes) -> bool:
    """Check that a subject satisfies every populated filter.

    A populated filter fails when the subject's attribute is unknown.
    """
    if criteria.user_roles and subject.role not in criteria.user_roles:
        return False
    if criteria.device_types and subject.device_type not in criteria.device_types:
        return False
    if (
        criteria.geographic_regions
        and subject.region not in criteria.geographic_regions
    ):
        return False
    if criteria.user_segments and not set(subject.segments) & set(
        criteria.user_segments
    ):
        return False
    if criteria.company_types and subject.company_type not in criteria.company_types:
        return False
    if criteria.custom_criteria:
        for key, expected in criteria.custom_criteria.items():
            if not _matches_custom(expected, subject.attributes.get(key)):
                return False
    return True


class TargetingEvaluator:
    """Decides subject eligibility. Fails closed on missing identity data."""

    def __init__(self, resolver: IdentityResolver | None = None) -> None:
        """Initialize the evaluator.

        Args:
            resolver: Identity collaborator. Without one, only experiments
                with empty criteria admit subjects.
        """
        self.resolver = resolver

    def resolve(
        self,
        subject_id: str,
        context: Mapping[str, Any] | None = None,
    ) -> SubjectAttributes | None:
        """Resolve a subject and overlay request context.

        Returns:
            Attributes, or None when the subject cannot be resolved.
        """
        if self.resolver is None:
            return None
        try:
            subject = self.resolver.resolve(subject_id)
        except Exception as e:
            logger.warning("Identity lookup failed for %s: %s", subject_id, e)
            return None
        if subject is None:
            return None

        if context:
            overlay: dict[str, Any] = {}
            device_type = _first_present(context, _CONTEXT_DEVICE_KEYS)
            if device_type is not None:
                overlay["device_type"] = device_type
            region = _first_present(context, _CONTEXT_REGION_KEYS)
            if region is not None:
                overlay["region"] = region
            if overlay:
                subject = subject.model_copy(update=overlay)
        return subject

    def is_eligible(
        self,
        criteria: TargetCriteria,
        subject_id: str,
        context: Mapping[str, Any] | None = None,
    ) -> bool:
        """Check whether a subject may enter an experiment."""
        if criteria.is_empty:
            return True

        subject = self.resolve(subject_id, context)
        if subject is None:
            logger.debug("Subject %s could not be resolved for targeting", subject_id)
            return False

        return matches_criteria(criteria, subject)
