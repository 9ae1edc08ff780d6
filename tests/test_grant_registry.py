from datetime import timedelta
from itertools import chain, repeat

import pytest

from vault.commons.errors import Forbidden, InvalidScope, InvalidToken, NotFound, TokenCollision
from vault.parsers.models import GrantStatus
from vault.services.grant_registry import GrantRegistry, new_token

from test_report_store import make_report


def seed(vault, *ids, owner="alice"):
    for i, rid in enumerate(ids):
        vault["reports"].put(make_report(rid, owner=owner, minutes=i))


def test_issue_scope_matches_request_and_resolves(vault):
    seed(vault, "r1", "r2", "r3")
    reg = vault["registry"]
    g = reg.issue("alice", ["r1", "r3"])

    assert g.scope == frozenset({"r1", "r3"})
    assert g.active is True
    assert g.token != g.id
    assert g.issued_at == vault["clock"].now
    assert g.expires_at == g.issued_at + timedelta(hours=24)
    assert reg.resolve(g.token) == g


def test_issue_custom_ttl_and_duplicates_collapse(vault):
    seed(vault, "r1")
    g = vault["registry"].issue("alice", ["r1", "r1"], ttl=timedelta(hours=2))
    assert g.scope == frozenset({"r1"})
    assert g.expires_at - g.issued_at == timedelta(hours=2)


def test_issue_foreign_report_is_forbidden_and_creates_nothing(vault):
    seed(vault, "r1")
    seed(vault, "b1", owner="bob")
    reg = vault["registry"]
    before = len(reg.list_active("alice"))

    with pytest.raises(Forbidden):
        reg.issue("alice", ["r1", "b1"])
    with pytest.raises(Forbidden):
        reg.issue("alice", ["r1", "does-not-exist"])

    assert len(reg.list_active("alice")) == before
    assert reg.list_grants("alice") == []


@pytest.mark.parametrize("bad", [[], None, "r1", ["r1", ""], ["r1", 7]])
def test_issue_rejects_malformed_scope(vault, bad):
    seed(vault, "r1")
    with pytest.raises(InvalidScope):
        vault["registry"].issue("alice", bad)


def test_issue_rejects_non_positive_ttl(vault):
    seed(vault, "r1")
    with pytest.raises(InvalidScope):
        vault["registry"].issue("alice", ["r1"], ttl=timedelta(0))


def test_tokens_are_unique_per_grant(vault):
    seed(vault, "r1")
    reg = vault["registry"]
    tokens = {reg.issue("alice", ["r1"]).token for _ in range(20)}
    assert len(tokens) == 20


def test_collision_regenerates_token(vault):
    seed(vault, "r1")
    first = vault["registry"].issue("alice", ["r1"])
    fresh = new_token()
    tokens = chain([first.token, first.token], repeat(fresh))
    reg = GrantRegistry(
        vault["reports"], vault["grants"], clock=vault["clock"], token_factory=lambda: next(tokens)
    )
    second = reg.issue("alice", ["r1"])
    assert second.token == fresh
    assert reg.resolve(first.token).id == first.id


def test_collision_gives_up_after_max_attempts(vault):
    seed(vault, "r1")
    first = vault["registry"].issue("alice", ["r1"])
    reg = GrantRegistry(
        vault["reports"],
        vault["grants"],
        clock=vault["clock"],
        token_factory=lambda: first.token,
        max_token_attempts=3,
    )
    with pytest.raises(TokenCollision):
        reg.issue("alice", ["r1"])
    assert len(reg.list_grants("alice")) == 1


def test_revoke_twice_is_idempotent(vault):
    seed(vault, "r1")
    reg = vault["registry"]
    g = reg.issue("alice", ["r1"])

    assert reg.revoke("alice", g.id).active is False
    assert reg.revoke("alice", g.id).active is False
    assert reg.resolve(g.token).active is False
    assert reg.resolve(g.token).scope == g.scope


def test_revoke_unknown_or_foreign_grant(vault):
    seed(vault, "r1")
    reg = vault["registry"]
    g = reg.issue("alice", ["r1"])
    with pytest.raises(NotFound):
        reg.revoke("alice", "no-such-grant")
    with pytest.raises(NotFound):
        reg.revoke("bob", g.id)
    assert reg.resolve(g.token).active is True


@pytest.mark.parametrize("token", ["", "not-a-token", None])
def test_resolve_unknown_token(vault, token):
    with pytest.raises(InvalidToken):
        vault["registry"].resolve(token)


def test_list_active_order_and_expired_included(vault):
    seed(vault, "r1")
    reg, clock = vault["registry"], vault["clock"]
    g1 = reg.issue("alice", ["r1"], ttl=timedelta(hours=1))
    clock.advance(hours=2)
    g2 = reg.issue("alice", ["r1"])
    clock.advance(minutes=5)
    g3 = reg.issue("alice", ["r1"])
    reg.revoke("alice", g2.id)

    # g1 is past expiry but still active: it stays listed
    assert [g.id for g in reg.list_active("alice")] == [g3.id, g1.id]
    assert reg.list_active("bob") == []


def test_list_grants_reports_status(vault):
    seed(vault, "r1")
    reg, clock = vault["registry"], vault["clock"]
    expired = reg.issue("alice", ["r1"], ttl=timedelta(minutes=30))
    revoked = reg.issue("alice", ["r1"])
    live = reg.issue("alice", ["r1"])
    reg.revoke("alice", revoked.id)
    clock.advance(hours=1)

    statuses = {g.id: s for g, s in reg.list_grants("alice")}
    assert statuses == {
        expired.id: GrantStatus.EXPIRED,
        revoked.id: GrantStatus.REVOKED,
        live.id: GrantStatus.ACTIVE,
    }
