"""Unit tests for owner-level operations."""

from __future__ import annotations

import pytest

from retention_rules.exceptions import ValidationError
from retention_rules.models import UserDataCounts
from retention_rules.repository import user_repository
from retention_rules.rules import RuleMutationEngine

from tests.conftest import OTHER_OWNER, OWNER

PLACEHOLDER = "default@user.com"


class TestMigrateOwner:
    """Reassigning placeholder-owned data to a real user."""

    def test_moves_rules_and_messages(self, mutations: RuleMutationEngine, ingest, engine) -> None:
        mutations.modify("ADD", "domain", PLACEHOLDER, key_value="a.com", action="delete")
        mutations.modify("ADD", "subdomain", PLACEHOLDER, key_value="x", action="keep", parent_domain="a.com")
        mutations.modify("ADD", "subject", PLACEHOLDER, key_value="otp", action="delete_1d", parent_domain="a.com")
        ingest("n@a.com", message_id="m1", owner=PLACEHOLDER)

        result = user_repository.migrate_owner(engine=engine, to_owner=OWNER, from_owner=PLACEHOLDER)

        assert result.from_owner == PLACEHOLDER
        assert result.to_owner == OWNER
        assert result.criteria_migrated == 2
        assert result.messages_migrated == 1

        moved = user_repository.count_user_rows(engine=engine, owner_user_id=OWNER)
        assert moved.criteria == 2
        assert moved.subject_patterns == 1
        assert user_repository.count_user_rows(engine=engine, owner_user_id=PLACEHOLDER).criteria == 0

        fetched = mutations.modify("GET", "subdomain", OWNER, key_value="x", parent_domain="a.com")
        assert fetched.criterion is not None

    def test_conflicting_rows_stay_with_placeholder(
        self, mutations: RuleMutationEngine, ingest, engine
    ) -> None:
        mutations.modify("ADD", "domain", PLACEHOLDER, key_value="a.com", action="delete")
        mutations.modify("ADD", "domain", PLACEHOLDER, key_value="b.com", action="delete")
        mutations.modify("ADD", "subdomain", PLACEHOLDER, key_value="x", action="keep", parent_domain="b.com")
        mutations.modify("ADD", "domain", OWNER, key_value="b.com", action="keep")
        ingest("n@a.com", message_id="m1", owner=PLACEHOLDER)
        ingest("n@a.com", message_id="m2", owner=PLACEHOLDER)
        ingest("n@a.com", message_id="m2", owner=OWNER)

        result = user_repository.migrate_owner(engine=engine, to_owner=OWNER, from_owner=PLACEHOLDER)

        assert result.criteria_migrated == 1
        assert result.messages_migrated == 1
        kept = mutations.modify("GET", "domain", OWNER, key_value="b.com")
        assert kept.criterion.criterion.default_action.value == "keep"
        assert user_repository.count_user_rows(engine=engine, owner_user_id=PLACEHOLDER).criteria == 2

    def test_registers_target_user(self, engine) -> None:
        assert user_repository.get_user(engine=engine, email=OWNER) is None

        user_repository.migrate_owner(engine=engine, to_owner=" Alice@Example.org ", from_owner=PLACEHOLDER)
        user_repository.migrate_owner(engine=engine, to_owner=OWNER, from_owner=PLACEHOLDER)

        user = user_repository.get_user(engine=engine, email=OWNER)
        assert user is not None
        assert user.email == OWNER

    def test_same_owner_is_rejected(self, engine) -> None:
        with pytest.raises(ValidationError):
            user_repository.migrate_owner(engine=engine, to_owner=PLACEHOLDER, from_owner="Default@User.com")

    def test_blank_target_is_rejected(self, engine) -> None:
        with pytest.raises(ValidationError):
            user_repository.migrate_owner(engine=engine, to_owner="  ", from_owner=PLACEHOLDER)


def test_clear_user_rules_only_touches_that_owner(mutations: RuleMutationEngine, engine) -> None:
    test_user = "test-scenarios@test.local"
    mutations.modify("ADD", "domain", test_user, key_value="a.com", action="delete")
    mutations.modify("ADD", "subdomain", test_user, key_value="x", action="keep", parent_domain="a.com")
    mutations.modify(
        "ADD", "subject", test_user, key_value="otp", action="delete_1d", parent_domain="a.com",
        parent_subdomain="x",
    )
    mutations.modify("ADD", "from_email", test_user, key_value="n@a.com", action="keep", parent_domain="a.com")
    mutations.modify("ADD", "domain", OTHER_OWNER, key_value="a.com", action="keep")

    before = user_repository.count_user_rows(engine=engine, owner_user_id=test_user)
    removed = user_repository.clear_user_rules(engine=engine, owner_user_id=test_user)

    assert removed == before
    assert removed.criteria == 2
    assert removed.subject_patterns == 1
    assert removed.address_patterns == 1
    assert removed.audit_log == 4
    assert user_repository.count_user_rows(engine=engine, owner_user_id=test_user) == UserDataCounts()
    assert user_repository.count_user_rows(engine=engine, owner_user_id=OTHER_OWNER).criteria == 1
