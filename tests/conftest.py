"""
Shared fixtures: an in-process transit engine served over real HTTP.

The fake engine speaks the same JSON protocol as Vault's transit and approle
endpoints and encrypts with AES-GCM under versioned keys, so envelopes,
rotation and rewrap behave like the real thing (every encryption uses a fresh
nonce, rewrap always returns a new string).
"""
import os
import re
import base64
import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from navigator_pii.vault import TransitCipherClient, VaultConfig

ROOT_TOKEN = "root-token"
ROLE_ID = "app-role"
SECRET_ID = "app-secret"
VAULT_VERSION = "1.15.0"

_ENVELOPE = re.compile(r"^vault:v(\d+):(.+)$")


class FakeTransitEngine:
    """Minimal transit + approle + sys/health implementation."""

    def __init__(self, key_name: str = "pii-encryption", lease_duration: int = 3600):
        self.key_name = key_name
        self.lease_duration = lease_duration
        self.keys: dict[int, bytes] = {1: AESGCM.generate_key(bit_length=256)}
        self.tokens: set[str] = {ROOT_TOKEN}
        self.requests: list[tuple[str, str]] = []
        self.logins = 0
        self.sealed = False
        self.delay = 0.0
        # Vault answers 400 on partial batch failure unless
        # partial_failure_response_code overrides it
        self.batch_error_status = 400
        self.refused_plaintexts: set[str] = set()
        self.deny_all = False

    @property
    def latest_version(self) -> int:
        return max(self.keys)

    def rotate(self) -> int:
        version = self.latest_version + 1
        self.keys[version] = AESGCM.generate_key(bit_length=256)
        return version

    def revoke_tokens(self) -> None:
        self.tokens = {ROOT_TOKEN}

    def count(self, operation: str) -> int:
        return sum(1 for _, path in self.requests if f"/{operation}/" in path)

    # -- crypto ---------------------------------------------------------

    def _encrypt(self, plaintext_b64: str) -> dict:
        try:
            plaintext = base64.b64decode(plaintext_b64, validate=True)
        except ValueError:
            return {"error": "failed to base64-decode plaintext"}
        if plaintext.decode("utf-8", "replace") in self.refused_plaintexts:
            return {"error": "plaintext refused by policy"}
        version = self.latest_version
        nonce = os.urandom(12)
        ct = AESGCM(self.keys[version]).encrypt(nonce, plaintext, None)
        payload = base64.b64encode(nonce + ct).decode("ascii")
        return {"ciphertext": f"vault:v{version}:{payload}", "key_version": version}

    def _decrypt(self, ciphertext: str) -> dict:
        match = _ENVELOPE.match(ciphertext or "")
        if not match:
            return {"error": "invalid ciphertext: no prefix"}
        version = int(match.group(1))
        if version not in self.keys:
            return {"error": "invalid key version"}
        try:
            raw = base64.b64decode(match.group(2), validate=True)
            plaintext = AESGCM(self.keys[version]).decrypt(raw[:12], raw[12:], None)
        except (ValueError, InvalidTag):
            return {"error": "cipher: message authentication failed"}
        return {"plaintext": base64.b64encode(plaintext).decode("ascii")}

    def _rewrap(self, ciphertext: str) -> dict:
        result = self._decrypt(ciphertext)
        if "error" in result:
            return result
        return self._encrypt(result["plaintext"])

    # -- HTTP -----------------------------------------------------------

    async def _common(self, request: web.Request) -> None:
        self.requests.append((request.method, request.path))
        if self.delay:
            await asyncio.sleep(self.delay)

    async def login(self, request: web.Request) -> web.Response:
        await self._common(request)
        body = await request.json()
        if self.sealed:
            return web.json_response({"errors": ["Vault is sealed"]}, status=503)
        if body.get("role_id") != ROLE_ID or body.get("secret_id") != SECRET_ID:
            return web.json_response(
                {"errors": ["invalid role or secret ID"]}, status=400,
            )
        self.logins += 1
        token = f"s.token-{self.logins}"
        self.tokens.add(token)
        return web.json_response({
            "auth": {
                "client_token": token,
                "lease_duration": self.lease_duration,
                "renewable": True,
            }
        })

    async def transit(self, request: web.Request) -> web.Response:
        await self._common(request)
        if self.sealed:
            return web.json_response({"errors": ["Vault is sealed"]}, status=503)
        if self.deny_all or request.headers.get("X-Vault-Token") not in self.tokens:
            return web.json_response({"errors": ["permission denied"]}, status=403)
        if request.match_info["key"] != self.key_name:
            return web.json_response({"errors": ["encryption key not found"]}, status=400)
        operation = request.match_info["operation"]
        handler, field = {
            "encrypt": (self._encrypt, "plaintext"),
            "decrypt": (self._decrypt, "ciphertext"),
            "rewrap": (self._rewrap, "ciphertext"),
        }[operation]
        body = await request.json()
        if "batch_input" in body:
            results = [handler(item.get(field, "")) for item in body["batch_input"]]
            status = self.batch_error_status if any("error" in r for r in results) else 200
            return web.json_response({"data": {"batch_results": results}}, status=status)
        result = handler(body.get(field, ""))
        if "error" in result:
            return web.json_response({"errors": [result["error"]]}, status=400)
        return web.json_response({"data": result})

    async def health(self, request: web.Request) -> web.Response:
        await self._common(request)
        return web.json_response(
            {
                "initialized": True,
                "sealed": self.sealed,
                "standby": False,
                "version": VAULT_VERSION,
            },
            status=503 if self.sealed else 200,
        )

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/v1/auth/approle/login", self.login)
        app.router.add_post(
            r"/v1/transit/{operation:encrypt|decrypt|rewrap}/{key}", self.transit,
        )
        app.router.add_get("/v1/sys/health", self.health)
        return app


@pytest.fixture
def engine():
    return FakeTransitEngine()


@pytest.fixture
async def server(engine):
    srv = TestServer(engine.app())
    await srv.start_server()
    yield srv
    await srv.close()


@pytest.fixture
def address(server):
    return f"http://{server.host}:{server.port}"


@pytest.fixture
def static_config(address):
    return VaultConfig(address=address, token=ROOT_TOKEN)


@pytest.fixture
def role_config(address):
    return VaultConfig(address=address, role_id=ROLE_ID, secret_id=SECRET_ID)


@pytest.fixture
async def client(static_config):
    async with TransitCipherClient(static_config) as c:
        yield c


@pytest.fixture
async def role_client(role_config):
    async with TransitCipherClient(role_config) as c:
        yield c


@pytest.fixture
async def unconfigured_client(address):
    async with TransitCipherClient(VaultConfig(address=address)) as c:
        yield c
