"""
API session with one-shot credential refresh.

Every management call goes through ApiSession.with_retry. When the API
reports a missing or rejected key, the newest active key is copied from the
local database into the settings file and the call is retried once.
"""

from pathlib import Path
from typing import Callable, Optional, TypeVar

from .client import ApiKeyInvalid, ApiKeyMissing, ManagementClient
from .config import CliConfig, Settings, load_settings
from .credentials import CredentialStoreError, refresh_api_key
from .utils import get_logger


T = TypeVar("T")

REFRESH_NOTICE = "Refreshed API key from local database."


class ApiSession:
    """Builds management clients from the current settings file."""

    def __init__(
        self,
        env_path: Path,
        config: Optional[CliConfig] = None,
        notify: Optional[Callable[[str], None]] = print,
        client_factory: Callable[[Settings, CliConfig], ManagementClient] = ManagementClient.from_settings,
        refresher: Callable[[Settings], str] = refresh_api_key,
    ):
        """
        Initialize the session.

        Args:
            env_path: Path to the stack's settings file
            config: Control tool configuration
            notify: Output sink for operator notices (None to only log)
            client_factory: Builds a client from settings
            refresher: Refreshes the key and returns it
        """
        self.env_path = env_path
        self.config = config or CliConfig()
        self.notify = notify
        self.client_factory = client_factory
        self.refresher = refresher
        self.logger = get_logger()

    def settings(self) -> Settings:
        """Re-read the settings file."""
        return load_settings(self.env_path)

    def client(self) -> ManagementClient:
        """A client built from the settings file as it is now."""
        return self.client_factory(self.settings(), self.config)

    def with_retry(self, op: Callable[[ManagementClient], T]) -> T:
        """
        Run op, refreshing the API key and retrying once on a key error.

        Raises:
            NoActiveCredential: The database has no key to offer (not retried)
            CredentialStoreError: The refresh itself failed
            ApiError: Any other failure, or the retry's own failure
        """
        settings = self.settings()
        try:
            return op(self.client_factory(settings, self.config))
        except (ApiKeyMissing, ApiKeyInvalid) as e:
            original = e

        self.logger.info(f"API key rejected ({original}), attempting refresh")
        try:
            self.refresher(settings)
        except CredentialStoreError as e:
            # Keep the refresh failure's type so callers can tell "nothing to
            # offer" apart from "store unreadable"
            raise type(e)(f"{original} (auto-refresh failed: {e})") from original

        self.logger.info(REFRESH_NOTICE)
        if self.notify is not None:
            self.notify(REFRESH_NOTICE)

        client = self.client()
        try:
            return op(client)
        except (ApiKeyMissing, ApiKeyInvalid):
            self.logger.warning("Refreshed key did not resolve the issue")
            raise
