"""Obtención del bearer token.

Orden de resolución:
1. Token explícito (flag `--token`).
2. Token cacheado en preferencias (validado contra tokeninfo salvo `nocheck`).
3. Service account (fichero `--account` o `GOOGLE_APPLICATION_CREDENTIALS`):
   se firma un JWT RS256 y se intercambia en el endpoint OAuth.
4. Servidor de metadatos (solo si se pide explícitamente).

Nota: las llamadas de este módulo pertenecen a la familia de APIs auxiliares y
no consumen tokens del rate limiter.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
from datetime import date
from pathlib import Path
from typing import Any

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from pydantic import BaseModel, ConfigDict, ValidationError

from core.config import LAST_CHECK_FORMAT, CliPreferences, read_preferences, update_preferences
from core.domain.errors import AuthError

logger = logging.getLogger(__name__)

OAUTH_TOKEN_URL = "https://www.googleapis.com/oauth2/v4/token"
TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
METADATA_TOKEN_URL = (
    "http://metadata.google.internal/computeMetadata/v1/instance/service-accounts/default/token"
)
CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_LIFETIME_SECONDS = 3600


class ServiceAccount(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str | None = None
    project_id: str | None = None
    private_key_id: str | None = None
    private_key: str
    client_email: str

    @classmethod
    def from_file(cls, path: Path) -> ServiceAccount:
        try:
            return cls.model_validate_json(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise AuthError(f"cannot read service account file {path}: {exc}") from exc
        except ValidationError as exc:
            raise AuthError(f"invalid service account file {path}: {exc}") from exc


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def build_signed_jwt(account: ServiceAccount, *, now: int | None = None) -> str:
    """JWT bearer assertion firmado con la clave privada del service account."""

    issued_at = int(now if now is not None else time.time())
    header: dict[str, Any] = {"alg": "RS256", "typ": "JWT"}
    if account.private_key_id:
        header["kid"] = account.private_key_id
    claims = {
        "aud": OAUTH_TOKEN_URL,
        "iss": account.client_email,
        "scope": CLOUD_PLATFORM_SCOPE,
        "iat": issued_at,
        "exp": issued_at + TOKEN_LIFETIME_SECONDS,
    }
    signing_input = ".".join(
        _b64url(json.dumps(part, separators=(",", ":")).encode("utf-8")) for part in (header, claims)
    )

    try:
        key = serialization.load_pem_private_key(account.private_key.encode("utf-8"), password=None)
    except ValueError as exc:
        raise AuthError(f"invalid private key: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise AuthError("service account private key is not an RSA key")

    signature = key.sign(signing_input.encode("ascii"), padding.PKCS1v15(), hashes.SHA256())
    return f"{signing_input}.{_b64url(signature)}"


class TokenProvider:
    """Resuelve (una vez) y cachea el access token del proceso."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        token: str | None = None,
        service_account_path: Path | None = None,
        use_metadata: bool = False,
        check_token: bool = True,
        skip_cache: bool = False,
        preferences_path: Path | None = None,
    ) -> None:
        self._client = client
        self._explicit = token
        self._service_account_path = service_account_path
        self._use_metadata = use_metadata
        self._check_token = check_token
        self._skip_cache = skip_cache
        self._preferences_path = preferences_path
        self._token: str | None = None
        self._lock = asyncio.Lock()
        self.source: str | None = None

    async def get_token(self) -> str:
        if self._token:
            return self._token
        async with self._lock:
            if not self._token:
                self._token = await self._resolve()
        return self._token

    async def _resolve(self) -> str:
        if self._explicit:
            self.source = "flag"
            return self._explicit

        prefs = read_preferences(self._preferences_path)
        if prefs.token and await self._cached_token_valid(prefs):
            self.source = "cache"
            return prefs.token

        if self._service_account_path:
            token = await self._exchange_service_account(self._service_account_path)
            self.source = "service-account"
            if not self._skip_cache:
                update_preferences(
                    self._preferences_path,
                    token=token,
                    last_check=date.today().strftime(LAST_CHECK_FORMAT),
                )
            return token

        if self._use_metadata:
            self.source = "metadata"
            return await self._metadata_token()

        raise AuthError("either token or service account must be provided")

    async def _cached_token_valid(self, prefs: CliPreferences) -> bool:
        if not self._check_token or prefs.nocheck or prefs.checked_today():
            return True
        valid = await self.check_token(prefs.token or "")
        if valid:
            update_preferences(self._preferences_path, last_check=date.today().strftime(LAST_CHECK_FORMAT))
        else:
            logger.info("cached token is no longer valid")
        return valid

    async def check_token(self, token: str) -> bool:
        """True si tokeninfo acepta el token."""

        try:
            response = await self._client.get(TOKENINFO_URL, params={"access_token": token})
        except httpx.HTTPError as exc:
            logger.warning("token check failed: %s", exc)
            return False
        return response.status_code == 200

    async def _exchange_service_account(self, path: Path) -> str:
        account = ServiceAccount.from_file(path)
        assertion = build_signed_jwt(account)
        try:
            response = await self._client.post(
                OAUTH_TOKEN_URL,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"token exchange failed: {exc}") from exc
        if response.status_code != 200:
            raise AuthError(f"token exchange failed: HTTP {response.status_code} {response.text}")
        token = response.json().get("access_token")
        if not token:
            raise AuthError("token exchange response has no access_token")
        logger.debug("obtained access token for %s", account.client_email)
        return token

    async def _metadata_token(self) -> str:
        try:
            response = await self._client.get(METADATA_TOKEN_URL, headers={"Metadata-Flavor": "Google"})
        except httpx.HTTPError as exc:
            raise AuthError(f"metadata server unreachable: {exc}") from exc
        if response.status_code != 200:
            raise AuthError(f"metadata server returned HTTP {response.status_code}")
        token = response.json().get("access_token")
        if not token:
            raise AuthError("metadata server response has no access_token")
        return token
