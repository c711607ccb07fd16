"""
AuthSession — keeps a valid engine token for the transit client.

Two credential sources are supported:
- static token (development / administrative), never expires
- role login (``role_id`` + ``secret_id``) exchanged for a leased token,
  renewed ``renew_margin`` seconds before the lease ends

With neither configured the session is *unconfigured* and the transit client
passes every value through unchanged.

Security Note:
    Never log the token or the secret id.
"""
import math
import time
import asyncio
import logging
from typing import Callable, Optional

from .config import AuthMode, VaultConfig
from .transport import VaultTransport
from ..exceptions import AuthenticationFailure, TransitError

logger = logging.getLogger("navigator.pii")

TOKEN_HEADER = "X-Vault-Token"


class AuthSession:
    """Engine credential and its expiry, renewed on demand.

    Renewal is single-flighted: callers racing an expired token wait for one
    login round trip. A failed or timed-out login leaves the previous token
    and expiry untouched, so the next call tries again.
    """

    def __init__(
        self,
        config: VaultConfig,
        transport: VaultTransport,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config
        self._transport = transport
        self._clock = clock
        self._mode = config.auth_mode
        self._token: Optional[str] = None
        self._expiry: float = 0.0
        self._lock = asyncio.Lock()
        if self._mode is AuthMode.STATIC:
            self._token = config.token.get_secret_value()
            self._expiry = math.inf

    @property
    def mode(self) -> AuthMode:
        return self._mode

    @property
    def configured(self) -> bool:
        return self._mode is not AuthMode.UNCONFIGURED

    @property
    def renewable(self) -> bool:
        return self._mode is AuthMode.ROLE

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def expiry(self) -> float:
        return self._expiry

    def expired(self) -> bool:
        if self._mode is AuthMode.STATIC:
            return False
        return self._token is None or self._clock() >= self._expiry

    def headers(self) -> dict[str, str]:
        if self._token is None:
            return {}
        return {TOKEN_HEADER: self._token}

    def invalidate(self, token: Optional[str] = None) -> None:
        """Forget a role-based token so the next call logs in again.

        When ``token`` is given, only drop it if it is still the current one,
        so a late rejection of an old token keeps a freshly renewed one.
        """
        if token is not None and token != self._token:
            return
        if self.renewable:
            self._token = None
            self._expiry = 0.0

    async def ensure_valid(self, timeout: Optional[float] = None) -> None:
        """Make sure a non-expired token is held.

        Raises:
            AuthenticationFailure: If the role login round trip fails.
        """
        if not self.configured or self._mode is AuthMode.STATIC:
            return
        if not self.expired():
            return
        async with self._lock:
            # another caller may have renewed while we waited
            if self.expired():
                await self._login(timeout)

    async def _login(self, timeout: Optional[float]) -> None:
        path = f"auth/{self._config.auth_method}/login"
        body = {
            "role_id": self._config.role_id,
            "secret_id": self._config.secret_id.get_secret_value(),
        }
        try:
            response = await self._transport.call(
                "POST", path, body=body, timeout=timeout,
            )
        except TransitError as err:
            logger.error("Vault role login failed: %s", err)
            raise AuthenticationFailure(f"Vault role login failed: {err}") from err
        auth = response.get("auth") or {}
        token = auth.get("client_token")
        lease = auth.get("lease_duration")
        if not token or not isinstance(lease, (int, float)):
            raise AuthenticationFailure(
                "Vault role login returned no client token or lease duration"
            )
        self._token = token
        if lease <= 0:
            # a zero lease means the token never expires
            self._expiry = math.inf
            logger.info("Authenticated via role login. Token does not expire")
            return
        # leases shorter than the margin keep at least half of their lifetime
        margin = min(self._config.renew_margin, lease / 2)
        self._expiry = self._clock() + lease - margin
        logger.info("Authenticated via role login. Token valid for %ss", lease)
