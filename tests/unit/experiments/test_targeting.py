"""Unit tests for target-criteria evaluation."""

import pytest

from abengine.experiments.models import TargetCriteria
from abengine.experiments.targeting import (
    StaticIdentityResolver,
    SubjectAttributes,
    TargetingEvaluator,
    matches_criteria,
)


class ExplodingResolver:
    """Identity resolver that always fails."""

    def resolve(self, subject_id: str) -> SubjectAttributes | None:
        raise ConnectionError("identity service down")


@pytest.fixture
def subject() -> SubjectAttributes:
    """Create a fully described subject."""
    return SubjectAttributes(
        subject_id="u1",
        role="admin",
        device_type="desktop",
        region="eu",
        segments=["beta", "power"],
        company_type="enterprise",
        attributes={"plan": "pro", "seats": 25},
    )


class TestMatchesCriteria:
    """Tests for matches_criteria."""

    def test_empty_criteria(self, subject: SubjectAttributes) -> None:
        """Test empty criteria admit everyone."""
        assert TargetCriteria().is_empty
        assert matches_criteria(TargetCriteria(), subject)

    def test_empty_lists_count_as_unpopulated(self) -> None:
        """Test empty filter lists do not restrict."""
        assert TargetCriteria(user_roles=[], custom_criteria={}).is_empty

    @pytest.mark.parametrize(
        ("criteria", "expected"),
        [
            (TargetCriteria(user_roles=["admin", "owner"]), True),
            (TargetCriteria(user_roles=["viewer"]), False),
            (TargetCriteria(device_types=["desktop"]), True),
            (TargetCriteria(device_types=["mobile"]), False),
            (TargetCriteria(geographic_regions=["eu", "uk"]), True),
            (TargetCriteria(geographic_regions=["us"]), False),
            (TargetCriteria(user_segments=["free", "beta"]), True),
            (TargetCriteria(user_segments=["free"]), False),
            (TargetCriteria(company_types=["enterprise"]), True),
            (TargetCriteria(company_types=["startup"]), False),
            (TargetCriteria(custom_criteria={"plan": "pro"}), True),
            (TargetCriteria(custom_criteria={"plan": ["pro", "team"]}), True),
            (TargetCriteria(custom_criteria={"plan": "free"}), False),
            (TargetCriteria(custom_criteria={"industry": "retail"}), False),
        ],
    )
    def test_single_filter(
        self,
        subject: SubjectAttributes,
        criteria: TargetCriteria,
        expected: bool,
    ) -> None:
        """Test each filter on its own."""
        assert matches_criteria(criteria, subject) is expected

    def test_all_filters_must_pass(self, subject: SubjectAttributes) -> None:
        """Test filters combine with AND."""
        criteria = TargetCriteria(user_roles=["admin"], device_types=["mobile"])
        assert not matches_criteria(criteria, subject)

    def test_unknown_attribute_fails_populated_filter(self) -> None:
        """Test a missing attribute does not satisfy a populated filter."""
        bare = SubjectAttributes(subject_id="u2")
        assert not matches_criteria(TargetCriteria(user_roles=["admin"]), bare)
        assert not matches_criteria(TargetCriteria(user_segments=["beta"]), bare)


class TestTargetingEvaluator:
    """Tests for TargetingEvaluator."""

    def test_empty_criteria_skips_resolver(self) -> None:
        """Test empty criteria are eligible without an identity lookup."""
        evaluator = TargetingEvaluator(ExplodingResolver())
        assert evaluator.is_eligible(TargetCriteria(), "anyone")

    def test_no_resolver_fails_closed(self) -> None:
        """Test populated criteria without a resolver exclude the subject."""
        evaluator = TargetingEvaluator()
        assert not evaluator.is_eligible(TargetCriteria(user_roles=["admin"]), "u1")

    def test_unknown_subject(self, identity_resolver: StaticIdentityResolver) -> None:
        """Test unresolvable subjects are not eligible."""
        evaluator = TargetingEvaluator(identity_resolver)
        assert not evaluator.is_eligible(TargetCriteria(user_roles=["admin"]), "ghost")

    def test_resolver_failure_fails_closed(self) -> None:
        """Test identity errors exclude the subject instead of raising."""
        evaluator = TargetingEvaluator(ExplodingResolver())
        assert evaluator.resolve("u1") is None
        assert not evaluator.is_eligible(TargetCriteria(user_roles=["admin"]), "u1")

    def test_known_subject(self, identity_resolver: StaticIdentityResolver) -> None:
        """Test resolved attributes are matched."""
        evaluator = TargetingEvaluator(identity_resolver)
        criteria = TargetCriteria(user_roles=["admin"])
        assert evaluator.is_eligible(criteria, "admin-1")
        assert not evaluator.is_eligible(criteria, "viewer-1")

    def test_context_overrides_device_and_region(
        self, identity_resolver: StaticIdentityResolver
    ) -> None:
        """Test request context overlays device type and region."""
        evaluator = TargetingEvaluator(identity_resolver)
        criteria = TargetCriteria(device_types=["mobile"], geographic_regions=["us"])

        assert not evaluator.is_eligible(criteria, "admin-1")
        assert evaluator.is_eligible(
            criteria, "admin-1", {"deviceType": "mobile", "region": "us"}
        )

    def test_static_resolver_add(self) -> None:
        """Test subjects can be registered after construction."""
        resolver = StaticIdentityResolver()
        resolver.add(SubjectAttributes(subject_id="u9", role="owner"))
        assert resolver.resolve("u9") is not None
        assert resolver.resolve("u10") is None
