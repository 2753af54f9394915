"""MSAL-based calendar permission for Microsoft 365."""

import asyncio
import logging
from typing import Any, Optional

import msal

from ..config import M365Config
from ..models.sync_status import PermissionStatus
from ..providers.base import PermissionProvider
from ..utils.exceptions import AuthenticationError, SyncAccessError
from .token_cache import TokenCacheManager

logger = logging.getLogger(__name__)

# Microsoft Graph PowerShell public client, usable without an app registration
DEFAULT_CLIENT_ID = "14d82eec-204b-4c2f-b7e8-296a70dab67e"

# Device flow outcomes where the user said no
DECLINED_ERRORS = {"authorization_declined", "access_denied"}
# Outcomes the user cannot fix by trying again (tenant policy, app setup)
RESTRICTED_ERRORS = {"consent_required", "unauthorized_client", "invalid_client"}


class M365AuthProvider(PermissionProvider):
    """Calendar permission backed by MSAL tokens."""

    def __init__(
        self,
        config: M365Config,
        cache_manager: TokenCacheManager,
    ):
        """
        Initialize M365 authentication provider.

        Args:
            config: Microsoft 365 configuration
            cache_manager: Token cache manager
        """
        client_id = config.client_id or DEFAULT_CLIENT_ID
        tenant_id = config.tenant_id or "common"
        authority = config.authority or f"https://login.microsoftonline.com/{tenant_id}"

        self.config = config
        self.cache_manager = cache_manager
        self.use_client_credentials = bool(config.client_id and config.client_secret)
        self._refusal: Optional[PermissionStatus] = None

        if self.use_client_credentials:
            # App-only access is granted by a tenant admin, not by the user
            logger.info("Initializing M365 auth with client credentials flow (app-only)")
            self.scopes = ["https://graph.microsoft.com/.default"]
            self.app = msal.ConfidentialClientApplication(
                client_id=client_id,
                client_credential=config.client_secret,
                authority=authority,
                token_cache=cache_manager.get_cache(),
            )
        else:
            logger.info(
                f"Initializing M365 auth with device code flow, client_id={'<default>' if not config.client_id else '<custom>'}"
            )
            self.scopes = [f"https://graph.microsoft.com/{scope}" for scope in config.scopes]
            self.app = msal.PublicClientApplication(
                client_id=client_id,
                authority=authority,
                token_cache=cache_manager.get_cache(),
            )

    def acquire_token_silent(self) -> Optional[str]:
        """
        Token from cache (or client credentials), without user interaction.

        Returns:
            Access token if available, None otherwise
        """
        if self.use_client_credentials:
            result = self.app.acquire_token_for_client(scopes=self.scopes)
        else:
            accounts = self.app.get_accounts()
            if not accounts:
                return None
            result = self.app.acquire_token_silent(scopes=self.scopes, account=accounts[0])

        if result and "access_token" in result:
            logger.debug("Token acquired without interaction")
            return result["access_token"]
        return None

    def get_access_token(self) -> str:
        """
        Access token for Graph calls. Never prompts.

        Raises:
            AuthenticationError: If no token can be obtained silently
        """
        token = self.acquire_token_silent()
        if not token:
            raise AuthenticationError("No valid Microsoft 365 token; request calendar access first")
        return token

    def get_permission_status(self) -> PermissionStatus:
        if self._refusal is not None:
            return self._refusal
        if self.use_client_credentials:
            return PermissionStatus.AUTHORIZED
        if self.app.get_accounts():
            return PermissionStatus.AUTHORIZED
        return PermissionStatus.NOT_DETERMINED

    def _run_device_flow(self) -> dict[str, Any]:
        flow = self.app.initiate_device_flow(scopes=self.scopes)
        if "user_code" not in flow:
            return flow

        print("\n" + "=" * 70)
        print("CALENDAR ACCESS REQUIRED")
        print("=" * 70)
        print(f"\n{flow['message']}\n")
        print("=" * 70 + "\n")

        return self.app.acquire_token_by_device_flow(flow)

    async def request_access(self) -> bool:
        """
        Run the interactive grant (device code flow).

        Returns:
            True if a token was granted, False if the user declined

        Raises:
            SyncAccessError: If access is restricted by tenant or app policy
            AuthenticationError: For any other authentication failure
        """
        if self.use_client_credentials:
            result = await asyncio.to_thread(
                self.app.acquire_token_for_client, scopes=self.scopes
            )
        else:
            logger.info("Starting device code authentication flow")
            result = await asyncio.to_thread(self._run_device_flow)

        if "access_token" in result:
            self._refusal = None
            logger.info("Calendar access granted")
            return True

        error = result.get("error", "")
        description = result.get("error_description", "Unknown error")
        if error in DECLINED_ERRORS:
            self._refusal = PermissionStatus.DENIED
            logger.warning(f"Calendar access declined: {description}")
            return False
        if error in RESTRICTED_ERRORS:
            self._refusal = PermissionStatus.RESTRICTED
            raise SyncAccessError(f"Calendar access restricted: {description}")
        raise AuthenticationError(f"Microsoft 365 authentication failed: {description}")

    def reset_refusal(self) -> None:
        """Forget a recorded refusal after the user changed permissions."""
        self._refusal = None

    def clear_cache(self) -> None:
        """Clear cached tokens."""
        self.cache_manager.clear_cache()
