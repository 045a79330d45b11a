import pytest

from mosqos.types import DenyReason, GuardState, Relation, Role


@pytest.mark.unit
class TestRole:
    def test_precedence_order(self) -> None:
        ordered = sorted(Role, key=lambda r: r.precedence, reverse=True)
        assert ordered == [Role.PLATFORM_ADMIN, Role.OWNER, Role.DELEGATE, Role.MEMBER, Role.NONE]

    def test_highest(self) -> None:
        assert Role.highest(Role.MEMBER, Role.OWNER, Role.DELEGATE) == Role.OWNER

    def test_highest_of_nothing_is_none(self) -> None:
        assert Role.highest() == Role.NONE

    def test_string_values(self) -> None:
        assert Role.PLATFORM_ADMIN == "platform_admin"
        assert Role.NONE.value == "none"


@pytest.mark.unit
class TestRelation:
    def test_relation_roles(self) -> None:
        assert Relation.OWNER.role == Role.OWNER
        assert Relation.DELEGATE.role == Role.DELEGATE
        assert Relation.MEMBER.role == Role.MEMBER


@pytest.mark.unit
class TestGuardEnums:
    def test_guard_states(self) -> None:
        assert {s.value for s in GuardState} == {"loading", "allow", "deny", "error"}

    def test_deny_reasons_are_distinct(self) -> None:
        values = [r.value for r in DenyReason]
        assert len(values) == len(set(values))
        assert "organization_not_accessible" in values
        assert "not_a_member" in values
