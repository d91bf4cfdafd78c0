"""Unit tests for message classification."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from retention_rules.classify import ClassificationEngine, classify
from retention_rules.exceptions import ValidationError
from retention_rules.models import Action, PendingMessage
from retention_rules.repository import message_repository
from retention_rules.rules import CriterionRules, RuleMutationEngine, RuleSet

from tests.conftest import OTHER_OWNER, OWNER


def _msg(from_email: str, subject: str = "", to_email: str = "me@home.org") -> PendingMessage:
    return PendingMessage(
        message_id="m", owner_user_id=OWNER, from_email=from_email, to_email=to_email, subject=subject
    )


@pytest.fixture
def bank_rules() -> RuleSet:
    alerts = CriterionRules(
        criterion_id=2,
        key="alerts.bank.com",
        subject_patterns={Action.DELETE: ("promo",)},
    )
    bank = CriterionRules(
        criterion_id=1,
        key="bank.com",
        default_action=Action.DELETE,
        subject_patterns={
            Action.DELETE: ("invoice",),
            Action.KEEP: ("receipt",),
            Action.DELETE_1D: ("otp",),
        },
        from_addresses={"ceo@bank.com": Action.KEEP, "spam@bank.com": Action.DELETE},
        to_addresses={"me@home.org": Action.KEEP, "old@home.org": Action.DELETE},
        subdomains={"alerts.bank.com": alerts},
    )
    boss = CriterionRules(criterion_id=3, key="boss@bank.com", default_action=Action.KEEP)
    return RuleSet(owner_user_id=OWNER, domains={"bank.com": bank}, emails={"boss@bank.com": boss})


class TestClassify:
    """Priority cascade over an in-memory rule set."""

    def test_email_key_wins(self, bank_rules: RuleSet) -> None:
        result = classify(_msg("Boss@Bank.com", "invoice"), bank_rules)

        assert result.action == Action.KEEP
        assert result.matched_rule == "email_key.default"
        assert result.matched_pattern == "boss@bank.com"

    def test_from_keep_beats_everything_below(self, bank_rules: RuleSet) -> None:
        result = classify(_msg("ceo@bank.com", "invoice", to_email="old@home.org"), bank_rules)

        assert result.action == Action.KEEP
        assert result.matched_rule == "fromEmails.keep"

    def test_from_delete_beats_to_keep(self, bank_rules: RuleSet) -> None:
        result = classify(_msg("spam@bank.com", to_email="me@home.org"), bank_rules)

        assert result.action == Action.DELETE
        assert result.matched_rule == "fromEmails.delete"

    def test_to_addresses(self, bank_rules: RuleSet) -> None:
        kept = classify(_msg("news@bank.com", "invoice", to_email="Me@Home.org"), bank_rules)
        dropped = classify(_msg("news@bank.com", "receipt", to_email="old@home.org"), bank_rules)

        assert (kept.action, kept.matched_rule) == (Action.KEEP, "toEmails.keep")
        assert (dropped.action, dropped.matched_rule) == (Action.DELETE, "toEmails.delete")

    def test_keep_pattern_beats_delete_pattern(self, bank_rules: RuleSet) -> None:
        result = classify(_msg("news@bank.com", "Invoice and RECEIPT", to_email=""), bank_rules)

        assert result.action == Action.KEEP
        assert result.matched_rule == "pattern.keep"
        assert result.matched_pattern == "receipt"

    def test_short_retention_pattern(self, bank_rules: RuleSet) -> None:
        result = classify(_msg("auth@bank.com", "Your OTP is 123456", to_email=""), bank_rules)

        assert result.action == Action.DELETE_1D
        assert result.matched_rule == "pattern.delete_1d"
        assert result.matched_pattern == "otp"

    def test_domain_default(self, bank_rules: RuleSet) -> None:
        result = classify(_msg("news@bank.com", "Hello", to_email=""), bank_rules)

        assert result.action == Action.DELETE
        assert result.matched_rule == "default"
        assert result.matched_pattern == "bank.com"

    def test_subdomain_is_the_effective_criterion(self, bank_rules: RuleSet) -> None:
        """A defined subdomain replaces its parent; the parent's rules are not consulted."""
        promo = classify(_msg("x@alerts.bank.com", "Promo inside", to_email=""), bank_rules)
        other = classify(_msg("x@alerts.bank.com", "Your receipt", to_email="me@home.org"), bank_rules)

        assert promo.action == Action.DELETE
        assert promo.matched_rule == "pattern.delete"
        assert other.action is None
        assert other.action_label == "undecided"

    def test_undefined_subdomain_falls_back_to_domain(self, bank_rules: RuleSet) -> None:
        result = classify(_msg("x@mail.bank.com", "Hello", to_email=""), bank_rules)

        assert result.action == Action.DELETE
        assert result.matched_rule == "default"

    def test_unknown_sender_is_undecided(self, bank_rules: RuleSet) -> None:
        result = classify(_msg("someone@elsewhere.net", "receipt"), bank_rules)

        assert result.action is None
        assert result.matched_rule == "none"

    def test_stored_domains_are_used_when_present(self, bank_rules: RuleSet) -> None:
        msg = _msg("x@elsewhere.net", "Hello", to_email="")
        msg.primary_domain = "bank.com"

        assert classify(msg, bank_rules).action == Action.DELETE


class TestClassificationEngine:
    """Batch evaluation against the store."""

    def test_from_keep_overrides_domain_delete(
        self, mutations: RuleMutationEngine, classifier: ClassificationEngine, ingest, engine
    ) -> None:
        mutations.modify("ADD", "domain", OWNER, key_value="shop.com", action="delete")
        mutations.modify("ADD", "from_email", OWNER, key_value="vip@shop.com", action="keep", parent_domain="shop.com")
        ingest("vip@shop.com", "Your order", message_id="vip")
        ingest("sale@shop.com", "Big sale", message_id="sale")

        summary = classifier.evaluate_pending(OWNER)

        assert summary.total == 2
        assert summary.keep == 1
        assert summary.delete == 1

        vip = message_repository.get_message(engine=engine, owner_user_id=OWNER, message_id="vip")
        assert vip.action == "keep"
        assert vip.matched_rule == "fromEmails.keep"
        assert vip.matched_pattern == "vip@shop.com"
        assert vip.evaluated_at is not None

    def test_subject_pattern_with_short_retention(
        self, mutations: RuleMutationEngine, classifier: ClassificationEngine, ingest, engine
    ) -> None:
        mutations.modify("ADD", "subject", OWNER, key_value="OTP", action="delete_1d", parent_domain="bank.com")
        ingest("auth@bank.com", "Your OTP code", message_id="otp")

        summary = classifier.evaluate_pending(OWNER)

        assert summary.delete_1d == 1
        stored = message_repository.get_message(engine=engine, owner_user_id=OWNER, message_id="otp")
        assert stored.matched_rule == "pattern.delete_1d"
        assert stored.matched_pattern == "otp"

    def test_owners_are_isolated(
        self, mutations: RuleMutationEngine, classifier: ClassificationEngine, ingest, engine
    ) -> None:
        mutations.modify("ADD", "domain", OWNER, key_value="shared.com", action="delete")
        mutations.modify("ADD", "domain", OTHER_OWNER, key_value="shared.com", action="keep")
        ingest("news@shared.com", message_id="m1", owner=OWNER)
        ingest("news@shared.com", message_id="m1", owner=OTHER_OWNER)

        mine = classifier.evaluate_pending(OWNER)

        assert (mine.total, mine.delete) == (1, 1)
        theirs = message_repository.get_message(engine=engine, owner_user_id=OTHER_OWNER, message_id="m1")
        assert theirs.action is None

        classifier.evaluate_pending(OTHER_OWNER)
        theirs = message_repository.get_message(engine=engine, owner_user_id=OTHER_OWNER, message_id="m1")
        assert theirs.action == "keep"

    def test_matching_is_case_insensitive(
        self, mutations: RuleMutationEngine, classifier: ClassificationEngine, ingest
    ) -> None:
        mutations.modify("ADD", "domain", "Alice@Example.ORG", key_value="Shared.COM", action="delete")
        ingest("News@SHARED.com", "Weekly digest")

        summary = classifier.evaluate_pending("ALICE@example.org")

        assert summary.delete == 1

    @pytest.mark.parametrize("owner", [None, "", "   "])
    def test_blank_owner_is_rejected(
        self, classifier: ClassificationEngine, ingest, engine, owner
    ) -> None:
        ingest("news@shop.com", message_id="m1")

        with pytest.raises(ValidationError):
            classifier.evaluate_pending(owner)

        stored = message_repository.get_message(engine=engine, owner_user_id=OWNER, message_id="m1")
        assert stored.action is None

    def test_unmatched_messages_are_undecided(self, classifier: ClassificationEngine, ingest, engine) -> None:
        ingest("someone@nowhere.net", message_id="m1")

        summary = classifier.evaluate_pending(OWNER)

        assert summary.undecided == 1
        stored = message_repository.get_message(engine=engine, owner_user_id=OWNER, message_id="m1")
        assert stored.action == "undecided"
        assert stored.matched_rule == "none"

    def test_new_rules_apply_on_next_evaluation(
        self, mutations: RuleMutationEngine, classifier: ClassificationEngine, ingest
    ) -> None:
        ingest("news@shop.com", message_id="m1")
        assert classifier.evaluate_pending(OWNER).undecided == 1

        mutations.modify("ADD", "domain", OWNER, key_value="shop.com", action="delete_10d")

        assert classifier.evaluate_pending(OWNER).delete_10d == 1

    def test_evaluate_all_pending(
        self, mutations: RuleMutationEngine, classifier: ClassificationEngine, ingest
    ) -> None:
        mutations.modify("ADD", "domain", OWNER, key_value="shop.com", action="delete")
        mutations.modify("ADD", "domain", OTHER_OWNER, key_value="shop.com", action="keep")
        ingest("a@shop.com", message_id="m1", owner=OWNER)
        ingest("b@shop.com", message_id="m2", owner=OWNER)
        ingest("a@shop.com", message_id="m1", owner=OTHER_OWNER)

        summary = classifier.evaluate_all_pending()

        assert summary.total == 3
        assert summary.delete == 2
        assert summary.keep == 1

    def test_failed_sweep_leaves_every_owner_unevaluated(
        self,
        mutations: RuleMutationEngine,
        classifier: ClassificationEngine,
        ingest,
        engine,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        mutations.modify("ADD", "domain", OWNER, key_value="shop.com", action="delete")
        mutations.modify("ADD", "domain", OTHER_OWNER, key_value="shop.com", action="keep")
        ingest("a@shop.com", message_id="m1", owner=OWNER)
        ingest("a@shop.com", message_id="m1", owner=OTHER_OWNER)

        write_results = message_repository.write_results
        calls = []

        def _fail_second(conn, results):
            calls.append(results)
            if len(calls) == 2:
                raise OperationalError("UPDATE pending_message", {}, Exception("disk I/O error"))
            write_results(conn, results)

        monkeypatch.setattr(message_repository, "write_results", _fail_second)

        with pytest.raises(OperationalError):
            classifier.evaluate_all_pending()

        assert len(calls) == 2
        for owner in (OWNER, OTHER_OWNER):
            stored = message_repository.get_message(engine=engine, owner_user_id=owner, message_id="m1")
            assert stored.action is None
            assert stored.evaluated_at is None

    def test_preview_does_not_store(
        self, mutations: RuleMutationEngine, classifier: ClassificationEngine, ingest, engine
    ) -> None:
        mutations.modify("ADD", "domain", OWNER, key_value="shop.com", action="delete")
        msg = ingest("a@shop.com", message_id="m1")

        result = classifier.preview(msg)

        assert result.action == Action.DELETE
        stored = message_repository.get_message(engine=engine, owner_user_id=OWNER, message_id="m1")
        assert stored.action is None
