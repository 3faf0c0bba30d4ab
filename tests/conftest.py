from datetime import timedelta

import bcrypt
import fakeredis
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from authcore.core.database import Base
from authcore.core.security import utc_now
from authcore.core.signer import TokenSigner
from authcore.models.principal import Principal, PrincipalStatus
from authcore.services.auth_service import AuthenticationCoordinator
from authcore.services.credential_store import CredentialStore
from authcore.services.lockout_policy import LockoutPolicy
from authcore.services.refresh_ledger import RefreshTokenLedger
from authcore.services.revocation_cache import RevocationCache

ACCESS_TTL = timedelta(minutes=15)
REFRESH_TTL = timedelta(days=7)
ADMIN_PASSWORD = "correct-horse-battery"


class FrozenClock:
    """Manually advanced clock shared by every component under test."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingAudit:
    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)

    def actions(self):
        return [event.action for event in self.events]


def _generate_key_pair():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return private_pem, public_pem


@pytest.fixture(scope="session")
def rsa_keys():
    return _generate_key_pair()


@pytest.fixture(scope="session")
def other_rsa_keys():
    return _generate_key_pair()


@pytest.fixture
def clock():
    return FrozenClock(utc_now().replace(microsecond=0))


@pytest.fixture
def signer(rsa_keys, clock):
    private_pem, public_pem = rsa_keys
    return TokenSigner(private_pem, public_pem, clock=clock)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    """Separate connections per session, for interleaving tests."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'authcore.db'}",
        connect_args={"check_same_thread": False, "timeout": 5},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def revocation_cache(redis_client):
    return RevocationCache(redis_client)


@pytest.fixture
def ledger(revocation_cache, clock):
    return RefreshTokenLedger(revocation_cache, REFRESH_TTL, clock=clock)


@pytest.fixture
def lockout_policy():
    return LockoutPolicy(max_failed_attempts=5, lockout_duration=timedelta(minutes=30))


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def coordinator(signer, ledger, revocation_cache, lockout_policy, audit, clock):
    return AuthenticationCoordinator(
        signer=signer,
        credential_store=CredentialStore(),
        lockout_policy=lockout_policy,
        ledger=ledger,
        revocation_cache=revocation_cache,
        audit=audit,
        access_ttl=ACCESS_TTL,
        refresh_ttl=REFRESH_TTL,
        clock=clock,
    )


def make_principal(db, *, email, username, password, status=PrincipalStatus.ACTIVE):
    # low bcrypt cost keeps the suite fast; checkpw reads the cost from the hash
    principal = Principal(
        email=email,
        username=username,
        password_hash=bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8"),
        status=status.value,
        failed_attempt_count=0,
    )
    db.add(principal)
    db.commit()
    db.refresh(principal)
    return principal


@pytest.fixture
def admin(db):
    return make_principal(db, email="admin@test.com", username="admin", password=ADMIN_PASSWORD)
