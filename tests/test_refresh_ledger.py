from datetime import timedelta

import fakeredis

from authcore.core.security import token_fingerprint, utc_now
from authcore.models.security import RefreshToken
from authcore.services.refresh_ledger import RefreshTokenLedger
from authcore.services.revocation_cache import RevocationCache

from conftest import REFRESH_TTL, FrozenClock, make_principal


def test_record_stores_fingerprint_only(db, admin, ledger, clock):
    record = ledger.record(db, admin.id, "raw-refresh-token", "family-1")

    assert record.token_fingerprint == token_fingerprint("raw-refresh-token")
    assert record.token_fingerprint != "raw-refresh-token"
    assert record.issued_at == clock.now
    assert record.expires_at == clock.now + REFRESH_TTL
    assert record.revoked_at is None
    assert db.query(RefreshToken).filter(RefreshToken.token_fingerprint == "raw-refresh-token").count() == 0


def test_validate_returns_live_record(db, admin, ledger):
    record = ledger.record(db, admin.id, "tok", "fam")
    assert ledger.validate(db, "tok").id == record.id


def test_validate_rejects_unknown_revoked_and_expired(db, admin, ledger, clock):
    assert ledger.validate(db, "never-issued") is None

    ledger.record(db, admin.id, "revoked", "fam")
    assert ledger.revoke_one(db, "revoked") is True
    db.expire_all()
    assert ledger.validate(db, "revoked") is None

    ledger.record(db, admin.id, "ageing", "fam")
    clock.advance(days=7)
    assert ledger.validate(db, "ageing") is None


def test_validate_rejects_blacklisted_token(db, admin, ledger, revocation_cache):
    ledger.record(db, admin.id, "tok", "fam")
    revocation_cache.add("tok", 60)
    assert ledger.validate(db, "tok") is None


def test_rotate_links_predecessor_to_successor(db, admin, ledger, clock):
    old = ledger.record(db, admin.id, "old", "fam-1")
    clock.advance(minutes=5)

    successor = ledger.rotate(db, "old", "new")

    assert successor is not None
    assert successor.family_id == "fam-1"
    assert successor.principal_id == admin.id
    db.expire_all()
    old = db.get(RefreshToken, old.id)
    assert old.revoked_at == clock.now
    assert old.superseded_by == successor.id
    assert ledger.validate(db, "old") is None
    assert ledger.validate(db, "new").id == successor.id


def test_rotated_token_cannot_rotate_again(db, admin, ledger):
    ledger.record(db, admin.id, "old", "fam")
    assert ledger.rotate(db, "old", "new-1") is not None
    db.expire_all()

    assert ledger.rotate(db, "old", "new-2") is None
    assert db.query(RefreshToken).count() == 2


def test_interleaved_rotation_has_one_winner(file_session_factory, clock):
    cache = RevocationCache(fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True))
    ledger = RefreshTokenLedger(cache, REFRESH_TTL, clock=clock)
    setup = file_session_factory()
    principal = make_principal(setup, email="race@test.com", username="race", password="pw")
    ledger.record(setup, principal.id, "shared", "fam")
    setup.close()

    first, second = file_session_factory(), file_session_factory()
    try:
        # both callers observe a usable token before either writes
        assert ledger.validate(first, "shared") is not None
        assert ledger.validate(second, "shared") is not None

        winner = ledger.rotate(first, "shared", "winner")
        loser = ledger.rotate(second, "shared", "loser")
    finally:
        first.close()
        second.close()

    assert winner is not None
    assert loser is None
    check = file_session_factory()
    try:
        assert check.query(RefreshToken).count() == 2
        assert check.query(RefreshToken).filter(
            RefreshToken.token_fingerprint == token_fingerprint("loser")
        ).count() == 0
    finally:
        check.close()


def test_revoke_one_is_idempotent(db, admin, ledger):
    ledger.record(db, admin.id, "tok", "fam")
    assert ledger.revoke_one(db, "tok") is True
    assert ledger.revoke_one(db, "tok") is False
    assert ledger.revoke_one(db, "unknown") is False


def test_revoke_family_leaves_other_families(db, admin, ledger):
    ledger.record(db, admin.id, "a1", "fam-a")
    ledger.record(db, admin.id, "a2", "fam-a")
    ledger.record(db, admin.id, "b1", "fam-b")

    assert ledger.revoke_family(db, "fam-a") == 2
    db.expire_all()
    assert ledger.validate(db, "a1") is None
    assert ledger.validate(db, "a2") is None
    assert ledger.validate(db, "b1") is not None


def test_revoke_all_covers_every_device(db, admin, ledger):
    other = make_principal(db, email="other@test.com", username="other", password="pw")
    for device in range(3):
        ledger.record(db, admin.id, f"device-{device}", f"fam-{device}")
    ledger.record(db, other.id, "other-device", "fam-other")

    assert ledger.revoke_all(db, admin.id) == 3
    assert ledger.revoke_all(db, admin.id) == 0
    assert ledger.count_active(db, admin.id) == 0
    assert ledger.count_active(db, other.id) == 1


def test_count_active_ignores_expired(db, admin, ledger, clock):
    ledger.record(db, admin.id, "early", "fam")
    clock.advance(days=3)
    ledger.record(db, admin.id, "late", "fam")
    assert ledger.count_active(db, admin.id) == 2

    clock.advance(days=4)
    assert ledger.count_active(db, admin.id) == 1


def test_sweep_expired_deletes_only_dead_rows(db, admin, ledger, clock):
    ledger.record(db, admin.id, "old", "fam")
    clock.advance(days=5)
    ledger.record(db, admin.id, "young", "fam")
    clock.advance(days=3)

    assert ledger.sweep_expired(db) == 1
    assert ledger.validate(db, "young") is not None
    assert db.query(RefreshToken).count() == 1


def test_sweep_handles_rotated_chain(db, admin, revocation_cache):
    clock = FrozenClock(utc_now().replace(microsecond=0))
    ledger = RefreshTokenLedger(revocation_cache, timedelta(hours=1), clock=clock)
    ledger.record(db, admin.id, "gen-1", "fam")
    ledger.rotate(db, "gen-1", "gen-2")
    clock.advance(hours=2)

    assert ledger.sweep_expired(db) == 2
    assert db.query(RefreshToken).count() == 0
