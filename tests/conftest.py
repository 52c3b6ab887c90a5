"""Shared pytest fixtures for all tests."""

import base64
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from sessionward.auth import (
    AuthEngine,
    LockoutGuard,
    LoginThrottle,
    PasswordPolicy,
    SessionStore,
    TokenSigner,
    TokenSignerConfig,
)
from sessionward.common.config import Config, DatabaseConfig, LoggingConfig, PasswordConfig
from sessionward.core.db import AuthRepository

# 36 bytes once decoded
TEST_SECRET = base64.b64encode(b"test-signing-secret-0123456789abcdef").decode()
TEST_PASSWORD = "Secure123!"
BCRYPT_TEST_ROUNDS = 4


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now


@pytest.fixture
def clock() -> ManualClock:
    """Provide a clock pinned to a fixed UTC instant."""
    return ManualClock(datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def database_config(tmp_path: Path) -> DatabaseConfig:
    """Provide a test database configuration."""
    return DatabaseConfig(
        database_path=str(tmp_path / "test_sessionward.db"),
        enable_wal_mode=False,  # Disable WAL for tests
        connection_timeout=5,
    )


@pytest.fixture
def test_config(tmp_path: Path, database_config: DatabaseConfig) -> Config:
    """Provide a configuration rooted in a temporary directory."""
    return Config(
        config_dir=tmp_path,
        database=database_config,
        password=PasswordConfig(bcrypt_rounds=BCRYPT_TEST_ROUNDS),
        logging=LoggingConfig(level="WARNING", format="text"),
    )


@pytest_asyncio.fixture
async def test_repository(test_config: Config) -> AuthRepository:
    """Provide a connected, migrated repository for tests."""
    repo = await AuthRepository.from_config(test_config)
    yield repo
    await repo.close()


@pytest.fixture
def signer_config() -> TokenSignerConfig:
    """Provide a signing configuration with the default lifetimes."""
    return TokenSignerConfig.from_base64(TEST_SECRET)


@pytest.fixture
def signer(signer_config: TokenSignerConfig, clock: ManualClock) -> TokenSigner:
    return TokenSigner(signer_config, clock=clock)


@pytest.fixture
def session_store(test_repository: AuthRepository, clock: ManualClock) -> SessionStore:
    return SessionStore(test_repository, refresh_ttl=timedelta(days=7), clock=clock)


@pytest.fixture
def engine(
    test_repository: AuthRepository,
    session_store: SessionStore,
    signer: TokenSigner,
    clock: ManualClock,
) -> AuthEngine:
    """Provide an engine with default lockout rules and throttling disabled."""
    return AuthEngine(
        credentials=test_repository,
        sessions=session_store,
        signer=signer,
        guard=LockoutGuard(max_failed_attempts=5, lock_duration=timedelta(hours=24)),
        policy=PasswordPolicy(),
        throttle=None,
        clock=clock,
        bcrypt_rounds=BCRYPT_TEST_ROUNDS,
    )


@pytest.fixture
def throttled_engine(
    test_repository: AuthRepository,
    session_store: SessionStore,
    signer: TokenSigner,
    clock: ManualClock,
) -> AuthEngine:
    """Provide an engine whose throttle blocks an address after three failures."""
    return AuthEngine(
        credentials=test_repository,
        sessions=session_store,
        signer=signer,
        throttle=LoginThrottle(max_attempts=3, window_seconds=60, clock=clock),
        clock=clock,
        bcrypt_rounds=BCRYPT_TEST_ROUNDS,
    )


@pytest.fixture
def jwt_secret() -> str:
    """Base64 signing secret accepted by TokenSignerConfig and APISettings."""
    return TEST_SECRET
