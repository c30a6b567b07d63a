"""Credential acquisition.

The provider walks a small state machine::

    AWAITING_API_KEY -> AWAITING_USER_ID -> READY

Values already present in the settings skip their step; missing ones are
prompted for once.  ``acquire`` is single-flight: concurrent callers wait on
the same run and get the same :data:`CredentialResult`.  A client is only
ever built in ``READY``, so half-entered credentials never reach the API.
The first client handed out is checked against ``authenticate`` once.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from functools import partial

from loguru import logger

from quantsync.workspace.client import LeanApiClient
from quantsync.workspace.errors import MissingCredentialsError, RemoteRequestError
from quantsync.workspace.prompts import Prompter
from quantsync.workspace.settings import SyncSettings, persist_credentials

_ACCOUNT_HINT = "You can find it at https://www.quantconnect.com/account or set it in the workspace .env file"


class CredentialState(StrEnum):
    AWAITING_API_KEY = "awaiting_api_key"
    AWAITING_USER_ID = "awaiting_user_id"
    READY = "ready"


@dataclass(frozen=True)
class Credentials:
    api_key: str
    user_id: str


@dataclass(frozen=True)
class Ok:
    credentials: Credentials


@dataclass(frozen=True)
class Cancelled:
    step: CredentialState


@dataclass(frozen=True)
class Invalid:
    reason: str


CredentialResult = Ok | Cancelled | Invalid


class CredentialProvider:
    """Supplies API credentials and the authenticated client built from them."""

    def __init__(
        self,
        settings: SyncSettings,
        prompter: Prompter,
        *,
        persist: Callable[[str, str], None] | None = None,
        client_factory: Callable[[Credentials], LeanApiClient] | None = None,
    ) -> None:
        self._settings = settings
        self._prompter = prompter
        self._persist = persist or partial(persist_credentials, settings.env_path)
        self._client_factory = client_factory or self._default_client
        self._api_key = settings.api_key_value() or None
        self._user_id = settings.user_id or None
        self._state = CredentialState.AWAITING_API_KEY
        self._lock = asyncio.Lock()
        self._result: CredentialResult | None = None
        self._client: LeanApiClient | None = None
        self._checked = False

    @property
    def state(self) -> CredentialState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == CredentialState.READY

    # -- Acquisition -----------------------------------------------------------

    async def acquire(self) -> CredentialResult:
        """Run the state machine once; later calls return the cached outcome."""
        async with self._lock:
            if self._result is None:
                self._result = await self._advance()
            return self._result

    async def reset(self) -> None:
        """Forget stored credentials so the next ``acquire`` prompts again."""
        async with self._lock:
            await self._close_client()
            self._api_key = None
            self._user_id = None
            self._state = CredentialState.AWAITING_API_KEY
            self._result = None
            self._checked = False

    async def _advance(self) -> CredentialResult:
        entered = False
        while True:
            if self._state == CredentialState.AWAITING_API_KEY:
                if not self._api_key:
                    answer = await self._prompter.ask_text("Enter your QuantConnect API key", password=True)
                    if answer is None:
                        self._prompter.error(f"An API key is required to use QuantConnect. {_ACCOUNT_HINT}")
                        return Cancelled(self._state)
                    if not answer.strip():
                        return Invalid("The API key can not be empty")
                    self._api_key = answer.strip()
                    entered = True
                self._state = CredentialState.AWAITING_USER_ID

            elif self._state == CredentialState.AWAITING_USER_ID:
                if not self._user_id:
                    answer = await self._prompter.ask_text("Enter your QuantConnect user ID")
                    if answer is None:
                        self._prompter.error(f"A user ID is required to use QuantConnect. {_ACCOUNT_HINT}")
                        return Cancelled(self._state)
                    if not answer.strip():
                        return Invalid("The user ID can not be empty")
                    self._user_id = answer.strip()
                    entered = True
                self._state = CredentialState.READY

            else:
                credentials = Credentials(api_key=self._api_key or "", user_id=self._user_id or "")
                if entered:
                    self._persist(credentials.api_key, credentials.user_id)
                    logger.info("Stored credentials for user {}", credentials.user_id)
                return Ok(credentials)

    # -- Client ----------------------------------------------------------------

    def client(self) -> LeanApiClient:
        """The authenticated client.  Raises ``MissingCredentialsError`` unless ready."""
        if not self.is_ready or not isinstance(self._result, Ok):
            raise MissingCredentialsError
        if self._client is None:
            self._client = self._client_factory(self._result.credentials)
        return self._client

    async def ensure_client(self) -> LeanApiClient:
        """Acquire credentials if needed, then return the client.

        The first client handed out is checked against the API once and the
        outcome reported; a failed check is not retried and does not block
        the caller.
        """
        client = await self._ready_client()
        if not self._checked:
            self._checked = True
            await self._check(client)
        return client

    async def verify(self) -> bool:
        """Check the credentials against the API now and tell the user how it went."""
        client = await self._ready_client()
        self._checked = True
        return await self._check(client)

    async def _ready_client(self) -> LeanApiClient:
        result = await self.acquire()
        if isinstance(result, Invalid):
            raise MissingCredentialsError(result.reason)
        if isinstance(result, Cancelled):
            raise MissingCredentialsError("credential entry was cancelled")
        return self.client()

    async def _check(self, client: LeanApiClient) -> bool:
        try:
            ok = await client.authenticated()
        except RemoteRequestError as exc:
            self._prompter.error(exc.user_message)
            return False
        if ok:
            self._prompter.info("Connected to QuantConnect API")
        else:
            self._prompter.error("The API credentials you supplied are not valid")
        return ok

    async def aclose(self) -> None:
        await self._close_client()

    async def _close_client(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _default_client(self, credentials: Credentials) -> LeanApiClient:
        return LeanApiClient(
            self._settings.cloud_api_url,
            credentials.user_id,
            credentials.api_key,
            timeout=self._settings.request_timeout,
        )
