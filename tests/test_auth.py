"""
Tests for AuthSession token handling against the fake engine.
"""
import asyncio
import math

import pytest

from navigator_pii import AuthenticationFailure, EngineTimeout
from navigator_pii.vault import AuthSession, TransitCipherClient, VaultConfig, VaultTransport

from .conftest import ROLE_ID, ROOT_TOKEN, SECRET_ID


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def transport(address):
    t = VaultTransport(address, timeout=5)
    yield t
    await t.close()


class TestStaticAndUnconfigured:
    """Sessions that never talk to the login endpoint."""

    async def test_static_token_never_expires(self, static_config, transport, engine):
        """Test a static token is used as-is and never renewed."""
        session = AuthSession(static_config, transport)
        await session.ensure_valid()
        assert session.token == ROOT_TOKEN
        assert session.expiry == math.inf
        assert session.expired() is False
        assert engine.logins == 0

    async def test_unconfigured_is_noop(self, address, transport, engine):
        """Test an unconfigured session makes no request and sends no header."""
        session = AuthSession(VaultConfig(address=address), transport)
        await session.ensure_valid()
        assert session.configured is False
        assert session.token is None
        assert session.headers() == {}
        assert engine.requests == []

    async def test_invalidate_keeps_static_token(self, static_config, transport):
        """Test invalidate does not drop a static token."""
        session = AuthSession(static_config, transport)
        session.invalidate()
        assert session.token == ROOT_TOKEN


class TestRoleLogin:
    """Role-based login and renewal."""

    async def test_login_sets_expiry_with_margin(self, role_config, transport, engine, clock):
        """Test expiry is now + lease - margin."""
        session = AuthSession(role_config, transport, clock=clock)
        await session.ensure_valid()
        assert engine.logins == 1
        assert session.token == "s.token-1"
        assert session.expiry == 1000.0 + 3600 - 300
        assert session.headers() == {"X-Vault-Token": "s.token-1"}

    async def test_valid_token_is_reused(self, role_config, transport, engine, clock):
        """Test a token inside its lease is not renewed."""
        session = AuthSession(role_config, transport, clock=clock)
        await session.ensure_valid()
        clock.now += 3000
        await session.ensure_valid()
        assert engine.logins == 1

    async def test_renews_at_expiry(self, role_config, transport, engine, clock):
        """Test reaching the stored expiry triggers a new login."""
        session = AuthSession(role_config, transport, clock=clock)
        await session.ensure_valid()
        clock.now = session.expiry
        await session.ensure_valid()
        assert engine.logins == 2
        assert session.token == "s.token-2"

    async def test_short_lease_keeps_half_lifetime(self, role_config, transport, engine, clock):
        """Test a lease shorter than the margin keeps half of its lifetime."""
        engine.lease_duration = 120
        session = AuthSession(role_config, transport, clock=clock)
        await session.ensure_valid()
        assert session.expiry == 1000.0 + 60

    async def test_zero_lease_never_expires(self, role_config, transport, engine, clock):
        """Test a zero lease duration is treated as a non-expiring token."""
        engine.lease_duration = 0
        session = AuthSession(role_config, transport, clock=clock)
        await session.ensure_valid()
        assert session.expiry == math.inf
        clock.now += 10 ** 6
        await session.ensure_valid()
        assert engine.logins == 1

    async def test_zero_lease_single_login_for_many_calls(self, role_client, engine):
        """Test repeated crypto calls with a zero-lease token log in once."""
        engine.lease_duration = 0
        for value in ("a", "b", "c"):
            await role_client.encrypt(value)
        assert engine.logins == 1

    async def test_concurrent_callers_share_one_login(self, role_config, transport, engine):
        """Test single-flight renewal under concurrent callers."""
        session = AuthSession(role_config, transport)
        await asyncio.gather(*(session.ensure_valid() for _ in range(5)))
        assert engine.logins == 1

    async def test_bad_secret_raises(self, address, transport, engine):
        """Test wrong role credentials raise AuthenticationFailure."""
        config = VaultConfig(address=address, role_id=ROLE_ID, secret_id="wrong")
        session = AuthSession(config, transport)
        with pytest.raises(AuthenticationFailure):
            await session.ensure_valid()
        assert session.token is None

    async def test_sealed_engine_raises(self, role_config, transport, engine):
        """Test login against a sealed engine raises AuthenticationFailure."""
        engine.sealed = True
        session = AuthSession(role_config, transport)
        with pytest.raises(AuthenticationFailure):
            await session.ensure_valid()

    async def test_unreachable_engine_raises(self):
        """Test login against an unreachable engine raises AuthenticationFailure."""
        config = VaultConfig(address="http://127.0.0.1:1", role_id=ROLE_ID, secret_id=SECRET_ID)
        transport = VaultTransport(config.address, timeout=2)
        try:
            with pytest.raises(AuthenticationFailure):
                await AuthSession(config, transport).ensure_valid()
        finally:
            await transport.close()

    async def test_failed_renewal_keeps_prior_state(self, role_config, transport, engine, clock):
        """Test a timed-out renewal leaves the expired token so the next call retries."""
        session = AuthSession(role_config, transport, clock=clock)
        await session.ensure_valid()
        clock.now = session.expiry + 1
        engine.delay = 0.3
        with pytest.raises(AuthenticationFailure) as exc:
            await session.ensure_valid(timeout=0.05)
        assert isinstance(exc.value.__cause__, EngineTimeout)
        assert session.token == "s.token-1"
        assert session.expired() is True
        engine.delay = 0
        await session.ensure_valid()
        assert session.expired() is False


class TestRevokedToken:
    """A revoked token is replaced transparently once."""

    async def test_forbidden_triggers_relogin(self, role_client, engine):
        """Test a 403 on a role session renews the token and retries."""
        ciphertext = await role_client.encrypt("a@b.com")
        engine.revoke_tokens()
        assert await role_client.decrypt(ciphertext) == "a@b.com"
        assert engine.logins == 2

    async def test_second_forbidden_raises(self, role_client, engine):
        """Test a 403 after the renewal retry raises AuthenticationFailure."""
        engine.deny_all = True
        with pytest.raises(AuthenticationFailure):
            await role_client.encrypt("a@b.com")
        assert engine.logins == 2
        assert engine.count("encrypt") == 2

    async def test_static_token_forbidden_is_not_retried(self, address, engine):
        """Test a rejected static token fails without any retry."""
        config = VaultConfig(address=address, token="not-a-token")
        async with TransitCipherClient(config) as client:
            with pytest.raises(AuthenticationFailure):
                await client.encrypt("a@b.com")
        assert engine.logins == 0
        assert engine.count("encrypt") == 1

    async def test_stale_rejection_keeps_renewed_token(self, role_config, transport, engine):
        """Test invalidating an old token leaves the current one in place."""
        session = AuthSession(role_config, transport)
        await session.ensure_valid()
        session.invalidate("s.token-0")
        assert session.token == "s.token-1"
        session.invalidate("s.token-1")
        assert session.token is None

    async def test_concurrent_rejections_renew_once(self, role_client, engine):
        """Test concurrent 403s for the same revoked token cause one renewal."""
        ciphertexts = await role_client.encrypt_batch(["a", "b", "c"])
        engine.revoke_tokens()
        plaintexts = await asyncio.gather(
            *(role_client.decrypt(c) for c in ciphertexts)
        )
        assert plaintexts == ["a", "b", "c"]
        assert engine.logins == 2
