"""
API Setup Service — model selection and agent credentials.

Settings live in the SessionStore settings table; credentials are
encrypted with CredentialCipher before they are written. agent_env()
turns the stored setup into the environment an agent process needs.

Auth priority when building the agent environment:
1. Custom base URL (self-hosted or proxy provider), with the stored API key
   or a placeholder for providers that do not check keys
2. OAuth token
3. API key against the default endpoint
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from agentrelay.core.crypto import CredentialCipher
from agentrelay.session.store import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"

AUTH_TYPES = ("api_key", "oauth_token")

_KEY_MODEL = "model"
_KEY_AUTH_TYPE = "auth_type"
_KEY_BASE_URL = "anthropic_base_url"
_KEY_CUSTOM_MODEL = "custom_model"


def _credential_key(auth_type: str) -> str:
    return f"credential:{auth_type}"


class ApiSetupService:
    """Reads and writes the model/auth setup."""

    def __init__(
        self,
        store: SessionStore,
        cipher: CredentialCipher,
        default_model: str = "claude-sonnet-4-5",
        default_base_url: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.store = store
        self.cipher = cipher
        self.default_model = default_model
        self.default_base_url = default_base_url
        self._transport = transport

    # ─── Model ────────────────────────────────────────────────

    async def get_model(self) -> str:
        custom = await self.store.get_setting(_KEY_CUSTOM_MODEL)
        if custom:
            return custom
        return await self.store.get_setting(_KEY_MODEL) or self.default_model

    async def set_model(self, model: str) -> None:
        await self.store.set_setting(_KEY_MODEL, model)
        logger.info("Model set to %s", model)

    # ─── Auth ─────────────────────────────────────────────────

    async def get_auth_type(self) -> str:
        return await self.store.get_setting(_KEY_AUTH_TYPE) or "api_key"

    async def get_credential(self, auth_type: str | None = None) -> str | None:
        auth_type = auth_type or await self.get_auth_type()
        stored = await self.store.get_setting(_credential_key(auth_type))
        if stored is None:
            return None
        return self.cipher.decrypt(stored)

    async def get_base_url(self) -> str | None:
        return await self.store.get_setting(_KEY_BASE_URL) or self.default_base_url or None

    async def get_api_setup(self) -> dict[str, Any]:
        auth_type = await self.get_auth_type()
        return {
            "authType": auth_type,
            "hasCredential": await self.get_credential(auth_type) is not None,
            "anthropicBaseUrl": await self.get_base_url(),
            "customModel": await self.store.get_setting(_KEY_CUSTOM_MODEL),
        }

    async def update_api_setup(
        self,
        auth_type: str,
        credential: str | None = None,
        base_url: str | None = None,
        custom_model: str | None = None,
        *,
        update_base_url: bool = True,
        update_custom_model: bool = True,
    ) -> None:
        """
        Store a new auth setup.

        An empty or missing credential keeps the stored one. base_url and
        custom_model are written as given (None clears them) unless their
        update_* flag is False.
        """
        if auth_type not in AUTH_TYPES:
            raise ValueError(f"Unknown auth type: {auth_type}")

        await self.store.set_setting(_KEY_AUTH_TYPE, auth_type)
        if credential:
            await self.store.set_setting(
                _credential_key(auth_type), self.cipher.encrypt(credential)
            )
        if update_base_url:
            await self.store.set_setting(_KEY_BASE_URL, base_url or None)
        if update_custom_model:
            await self.store.set_setting(_KEY_CUSTOM_MODEL, custom_model or None)

        logger.info(
            "API setup updated (auth=%s, base_url=%s, encrypted=%s)",
            auth_type,
            base_url or "default",
            self.cipher.enabled,
        )

    async def agent_env(self) -> dict[str, str]:
        """Environment variables that authenticate an agent process."""
        env: dict[str, str] = {}
        base_url = await self.get_base_url()
        api_key = await self.get_credential("api_key")

        if base_url:
            env["ANTHROPIC_BASE_URL"] = base_url
            if api_key:
                env["ANTHROPIC_API_KEY"] = api_key
            else:
                logger.warning(
                    "Custom base URL configured but no API key set, using placeholder key"
                )
                env["ANTHROPIC_API_KEY"] = "not-needed"
            return env

        if await self.get_auth_type() == "oauth_token":
            token = await self.get_credential("oauth_token")
            if token:
                env["CLAUDE_CODE_OAUTH_TOKEN"] = token
                return env

        if api_key:
            env["ANTHROPIC_API_KEY"] = api_key
        else:
            logger.error("No authentication configured for the agent")
        return env

    # ─── Connection Test ──────────────────────────────────────

    async def test_api_connection(
        self,
        api_key: str,
        base_url: str | None = None,
        model_name: str | None = None,
    ) -> dict[str, Any]:
        """List models with the given key. Never raises."""
        url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        try:
            async with httpx.AsyncClient(timeout=15, transport=self._transport) as client:
                resp = await client.get(
                    f"{url}/v1/models",
                    headers={
                        "x-api-key": api_key,
                        "anthropic-version": ANTHROPIC_VERSION,
                    },
                )
                if resp.status_code >= 400:
                    return {
                        "success": False,
                        "error": f"API error: {resp.status_code} {resp.text}",
                    }
                data = resp.json()
        except httpx.HTTPError as e:
            logger.warning("API connection test failed for %s: %s", url, e)
            return {"success": False, "error": str(e) or "Connection failed"}
        except ValueError as e:
            return {"success": False, "error": f"Invalid response: {e}"}

        models = data.get("data") if isinstance(data, dict) else None
        result: dict[str, Any] = {"success": True, "modelCount": len(models or [])}
        if model_name and models:
            result["modelFound"] = any(
                isinstance(m, dict) and m.get("id") == model_name for m in models
            )
        return result
