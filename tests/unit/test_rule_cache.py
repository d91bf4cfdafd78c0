"""Unit tests for the rule snapshot cache and rule set export."""

from __future__ import annotations

from retention_rules.config import Settings
from retention_rules.rules import RuleMutationEngine, RuleSet, RuleSetCache, load_rule_set

from tests.conftest import OWNER


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class CountingLoader:
    def __init__(self, owner: str = OWNER) -> None:
        self.owner = owner
        self.calls = 0

    def __call__(self) -> RuleSet:
        self.calls += 1
        return RuleSet(owner_user_id=self.owner)


class TestRuleSetCache:
    """Test suite for RuleSetCache."""

    def test_hit_within_ttl(self) -> None:
        clock = FakeClock()
        cache = RuleSetCache(5.0, clock=clock)
        loader = CountingLoader()

        first = cache.get(OWNER, loader)
        clock.now += 4.9
        second = cache.get(OWNER, loader)

        assert first is second
        assert loader.calls == 1
        assert OWNER in cache

    def test_expires_after_ttl(self) -> None:
        clock = FakeClock()
        cache = RuleSetCache(5.0, clock=clock)
        loader = CountingLoader()

        cache.get(OWNER, loader)
        clock.now += 5.0

        assert OWNER not in cache
        cache.get(OWNER, loader)
        assert loader.calls == 2

    def test_invalidate_one_owner(self) -> None:
        cache = RuleSetCache(60.0)
        cache.get("a@x.com", CountingLoader("a@x.com"))
        cache.get("b@x.com", CountingLoader("b@x.com"))

        cache.invalidate("a@x.com")

        assert "a@x.com" not in cache
        assert "b@x.com" in cache

    def test_invalidate_all(self) -> None:
        cache = RuleSetCache(60.0)
        cache.get("a@x.com", CountingLoader("a@x.com"))
        cache.get("b@x.com", CountingLoader("b@x.com"))

        cache.invalidate()

        assert "a@x.com" not in cache
        assert "b@x.com" not in cache

    def test_load_racing_an_invalidation_is_not_stored(self) -> None:
        cache = RuleSetCache(60.0)

        def loader() -> RuleSet:
            # A mutation commits while the snapshot is being read.
            cache.invalidate(OWNER)
            return RuleSet(owner_user_id=OWNER)

        cache.get(OWNER, loader)

        assert OWNER not in cache

    def test_disabled_always_loads(self) -> None:
        cache = RuleSetCache(60.0, enabled=False)
        loader = CountingLoader()

        cache.get(OWNER, loader)
        cache.get(OWNER, loader)

        assert loader.calls == 2
        assert OWNER not in cache

    def test_from_settings(self) -> None:
        cache = RuleSetCache.from_settings(Settings(rule_cache_ttl=1.5, rule_cache_enabled=False))
        loader = CountingLoader()

        cache.get(OWNER, loader)

        assert OWNER not in cache


def test_load_rule_set_nests_subdomains(mutations: RuleMutationEngine, engine) -> None:
    mutations.modify("ADD", "domain", OWNER, key_value="bank.com", action="keep")
    mutations.modify("ADD", "subdomain", OWNER, key_value="alerts", action="delete", parent_domain="bank.com")
    mutations.modify(
        "ADD", "subject", OWNER, key_value="otp", action="delete_1d", parent_domain="bank.com",
        parent_subdomain="alerts",
    )
    mutations.modify("ADD", "subject", OWNER, key_value="statement", action="keep", parent_domain="bank.com")
    mutations.modify("ADD", "from_email", OWNER, key_value="ceo@bank.com", action="keep", parent_domain="bank.com")
    mutations.modify("ADD", "to_email", OWNER, key_value="old@home.org", action="delete", parent_domain="bank.com")
    mutations.modify("ADD", "email", OWNER, key_value="boss@work.com", action="keep")

    with engine.connect() as conn:
        rule_set = load_rule_set(conn, OWNER)

    assert set(rule_set.domains) == {"bank.com"}
    assert "alerts.bank.com" not in rule_set.domains
    assert rule_set.as_nested_dict() == {
        "owner_user_id": OWNER,
        "domains": {
            "bank.com": {
                "default": "keep",
                "keep": ["statement"],
                "from_emails": {"keep": ["ceo@bank.com"]},
                "to_emails": {"delete": ["old@home.org"]},
                "subdomains": {
                    "alerts.bank.com": {"default": "delete", "delete_1d": ["otp"]},
                },
            },
        },
        "emails": {"boss@work.com": "keep"},
    }
