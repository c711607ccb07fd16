"""
TransitCipherClient — encrypt, decrypt and rewrap through a transit engine.

The application never holds the encryption key; the engine performs every
cryptographic operation and returns ``vault:v<N>:...`` envelopes.

Security Note:
    Never log plaintext or ciphertext values. Only log counts, indices and
    key versions.
"""
import base64
import logging
from typing import Any, Optional, Sequence

from pydantic import BaseModel

from .auth import AuthSession
from .config import VaultConfig
from .envelope import is_envelope, key_version, parse_envelope
from .transport import VaultTransport
from ..exceptions import (
    AuthenticationFailure,
    BatchOperationFailure,
    CipherOperationFailure,
    EngineResponseError,
    EngineSealed,
    EngineUnavailable,
    TransitError,
)

logger = logging.getLogger("navigator.pii")


class HealthStatus(BaseModel):
    """Result of a best-effort engine reachability check."""

    ok: bool
    sealed: Optional[bool] = None
    version: Optional[str] = None
    error: Optional[str] = None


def _b64encode(value: Any) -> str:
    return base64.b64encode(str(value).encode("utf-8")).decode("ascii")


def _b64decode(value: str) -> str:
    return base64.b64decode(value).decode("utf-8")


class TransitCipherClient:
    """Client for the transit engine's encrypt/decrypt/rewrap endpoints.

    Build one per process and pass it explicitly to the codec, repositories
    and the rewrap orchestrator.

    Example::

        async with TransitCipherClient(VaultConfig.from_env()) as client:
            ct = await client.encrypt("a@b.com")
            assert await client.decrypt(ct) == "a@b.com"
    """

    def __init__(
        self,
        config: VaultConfig,
        transport: Optional[VaultTransport] = None,
        session: Optional[AuthSession] = None,
    ):
        self._config = config
        self._transport = transport or VaultTransport(
            config.address, timeout=config.timeout,
        )
        self._auth = session or AuthSession(config, self._transport)

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def auth(self) -> AuthSession:
        return self._auth

    @property
    def configured(self) -> bool:
        return self._auth.configured

    async def __aenter__(self) -> "TransitCipherClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._transport.close()

    def _path(self, operation: str) -> str:
        return f"{self._config.transit_mount}/{operation}/{self._config.key_name}"

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    async def _send(
        self,
        operation: str,
        body: dict[str, Any],
        timeout: Optional[float],
        retry: bool = True,
    ) -> tuple[int, dict[str, Any]]:
        """POST one transit request with a freshly validated token.

        A 403 on a role-based session means the token was revoked; the
        credential is dropped and the request retried once.
        """
        await self._auth.ensure_valid(timeout=timeout)
        used_token = self._auth.token
        status, response = await self._transport.request(
            "POST",
            self._path(operation),
            body=body,
            headers=self._auth.headers(),
            timeout=timeout,
        )
        if status == 403 and retry and self._auth.renewable:
            logger.warning(
                "Vault rejected the token for %s; renewing and retrying", operation,
            )
            self._auth.invalidate(used_token)
            return await self._send(operation, body, timeout, retry=False)
        if status in (401, 403):
            raise AuthenticationFailure(
                f"Vault denied {operation}: "
                f"{', '.join(response.get('errors') or []) or 'permission denied'}"
            )
        if status == 503:
            raise EngineSealed(
                f"Vault cannot serve {operation}: "
                f"{', '.join(response.get('errors') or []) or 'sealed'}"
            )
        return status, response

    async def _single(
        self,
        operation: str,
        body: dict[str, Any],
        field: str,
        timeout: Optional[float],
    ) -> str:
        status, response = await self._send(operation, body, timeout)
        if status >= 400:
            errors = [str(e) for e in response.get("errors") or []]
            if 400 <= status < 500:
                raise CipherOperationFailure(
                    operation, ", ".join(errors) or f"status {status}",
                ) from EngineResponseError(status, errors, body=response)
            raise EngineUnavailable(
                f"Vault {operation} failed with status {status}"
            ) from EngineResponseError(status, errors, body=response)
        value = (response.get("data") or {}).get(field)
        if not isinstance(value, str):
            raise CipherOperationFailure(
                operation, f"response carries no {field}",
            )
        return value

    async def _batch(
        self,
        operation: str,
        items: list[dict[str, str]],
        field: str,
        timeout: Optional[float],
    ) -> list[tuple[Optional[str], Optional[str]]]:
        """Send one batch request and return ``(value, error)`` per item."""
        status, response = await self._send(
            operation, {"batch_input": items}, timeout,
        )
        results = (response.get("data") or {}).get("batch_results")
        if status >= 400 and not isinstance(results, list):
            errors = [str(e) for e in response.get("errors") or []]
            if status >= 500:
                raise EngineUnavailable(
                    f"Vault batch {operation} failed with status {status}"
                ) from EngineResponseError(status, errors, body=response)
            raise CipherOperationFailure(
                operation, ", ".join(errors) or f"status {status}",
            ) from EngineResponseError(status, errors, body=response)
        if not isinstance(results, list) or len(results) != len(items):
            raise CipherOperationFailure(
                operation,
                f"expected {len(items)} batch result(s), "
                f"got {len(results) if isinstance(results, list) else 0}",
            )
        out = []
        for result in results:
            error = result.get("error")
            value = result.get(field)
            if error or not isinstance(value, str):
                out.append((None, str(error or f"result carries no {field}")))
            else:
                out.append((value, None))
        return out

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def encrypt(self, plaintext: Any, timeout: Optional[float] = None) -> Any:
        """Encrypt one value and return its envelope.

        Returns the input unchanged when no credential is configured.
        """
        if not self.configured:
            return plaintext
        return await self._single(
            "encrypt", {"plaintext": _b64encode(plaintext)}, "ciphertext", timeout,
        )

    async def decrypt(self, ciphertext: Any, timeout: Optional[float] = None) -> Any:
        """Decrypt one envelope; non-envelope input is returned as-is."""
        if not self.configured or not is_envelope(ciphertext):
            return ciphertext
        plaintext = await self._single(
            "decrypt", {"ciphertext": ciphertext}, "plaintext", timeout,
        )
        try:
            return _b64decode(plaintext)
        except ValueError as err:
            raise CipherOperationFailure(
                "decrypt", "engine returned malformed plaintext",
            ) from err

    async def encrypt_batch(
        self,
        values: Sequence[Any],
        timeout: Optional[float] = None,
    ) -> list[Any]:
        """Encrypt many values in one request, preserving order.

        Raises:
            BatchOperationFailure: Naming every position the engine refused.
        """
        values = list(values)
        if not self.configured or not values:
            return values
        items = [{"plaintext": _b64encode(v)} for v in values]
        outcome = await self._batch("encrypt", items, "ciphertext", timeout)
        results: list[Optional[str]] = [value for value, _ in outcome]
        failures = {i: err for i, (_, err) in enumerate(outcome) if err}
        if failures:
            raise BatchOperationFailure("encrypt", failures, results)
        logger.debug("Encrypted batch of %d value(s)", len(values))
        return results

    async def decrypt_batch(
        self,
        values: Sequence[Any],
        timeout: Optional[float] = None,
    ) -> list[Any]:
        """Decrypt many values in one request, preserving order.

        Non-envelope entries are returned untouched and never sent to the
        engine. A batch without envelopes performs no request at all.

        Raises:
            BatchOperationFailure: Naming every position the engine refused;
                ``results`` still holds the other positions.
        """
        results = list(values)
        if not self.configured:
            return results
        positions = [i for i, v in enumerate(results) if is_envelope(v)]
        if not positions:
            return results
        items = [{"ciphertext": results[i]} for i in positions]
        outcome = await self._batch("decrypt", items, "plaintext", timeout)
        failures: dict[int, str] = {}
        for index, (value, error) in zip(positions, outcome):
            if error is not None:
                failures[index] = error
                results[index] = None
                continue
            try:
                results[index] = _b64decode(value)
            except ValueError:
                failures[index] = "engine returned malformed plaintext"
                results[index] = None
        if failures:
            raise BatchOperationFailure("decrypt", failures, results)
        logger.debug("Decrypted batch of %d envelope(s)", len(positions))
        return results

    async def rewrap(self, ciphertext: str, timeout: Optional[float] = None) -> str:
        """Re-encrypt an envelope under the newest key version.

        The plaintext never leaves the engine.

        Raises:
            ValidationFailure: If ciphertext is not a well-formed envelope.
        """
        if not self.configured:
            return ciphertext
        old_version, _ = parse_envelope(ciphertext)
        new = await self._single(
            "rewrap", {"ciphertext": ciphertext}, "ciphertext", timeout,
        )
        logger.debug("Rewrapped value v%s -> v%s", old_version, key_version(new))
        return new

    async def health_check(self, timeout: Optional[float] = None) -> HealthStatus:
        """Query ``sys/health``; never raises."""
        try:
            status, response = await self._transport.request(
                "GET", "sys/health", timeout=timeout,
            )
        except TransitError as err:
            return HealthStatus(ok=False, error=str(err))
        sealed = response.get("sealed")
        version = response.get("version")
        if "sealed" not in response:
            errors = ", ".join(str(e) for e in response.get("errors") or [])
            return HealthStatus(
                ok=False, error=errors or f"Vault health returned status {status}",
            )
        # 429 (standby) and 473 (performance standby) are serving nodes
        ok = not sealed and (status < 400 or status in (429, 473))
        return HealthStatus(
            ok=ok,
            sealed=bool(sealed),
            version=str(version) if version is not None else None,
            error=None if ok else f"Vault health returned status {status}",
        )

    async def log_startup_status(self) -> HealthStatus:
        """Log the auth mode and engine reachability once at startup."""
        if not self.configured:
            logger.warning(
                "Vault auth not configured. PII encryption disabled. "
                "Set VAULT_TOKEN (dev) or VAULT_ROLE_ID + VAULT_SECRET_ID (prod)."
            )
            return HealthStatus(ok=False, error="not configured")
        logger.info("Using Vault %s auth", self._auth.mode.value)
        status = await self.health_check()
        if status.ok:
            logger.info(
                "Vault connected, version %s, sealed=%s",
                status.version, status.sealed,
            )
        else:
            logger.warning("Vault unreachable on startup: %s", status.error)
        return status
