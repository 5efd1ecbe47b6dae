"""Push notifications to Farcaster users via Neynar.

The notification is sent on behalf of the mini app and opens ``deep_link``
when tapped.  Delivery is best-effort: ``notify`` never raises.  When no
Neynar API key is configured the message is only logged, so the service
runs without push set up (e.g. in dev).

Configuration (add to .env):
    NEYNAR_API_KEY=...
    MINI_APP_FID=12345
"""

import logging
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

_notifier: "Notifier | None" = None

READY_TITLE = "Your PFP Animation is ready!"
READY_BODY = "Tap to view/share."


class Notifier(Protocol):
    async def notify(
        self, user_id: int, title: str, body: str, deep_link: str
    ) -> bool: ...


class NeynarNotifier:
    """Sends mini-app notifications through the Neynar REST API."""

    def __init__(
        self,
        api_key: str = "",
        sender_fid: int = 0,
        api_url: str = "https://api.neynar.com/v2/farcaster",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._transport = transport
        self._sender_fid = sender_fid
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._configured = bool(api_key)

        if not self._configured:
            logger.info(
                "Notifier: NEYNAR_API_KEY not configured, notifications will be logged only"
            )

    async def notify(self, user_id: int, title: str, body: str, deep_link: str) -> bool:
        """Send one notification.

        Returns:
            True if Neynar accepted it, False if not configured or on error.
        """
        if not self._configured:
            logger.warning(
                "NOTIFY (no Neynar configured) → fid %s | %s | %s", user_id, title, deep_link
            )
            return False

        payload = {
            "target_fids": [user_id],
            "notification": {
                "title": title,
                "body": body,
                "target_url": deep_link,
            },
        }
        if self._sender_fid:
            payload["sender_fid"] = self._sender_fid

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    f"{self._api_url}/frame/notifications",
                    json=payload,
                    headers={"x-api-key": self._api_key},
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Failed to notify fid %s: %s", user_id, exc, exc_info=True)
            return False

        logger.info("Notification sent → fid %s | %s", user_id, title)
        return True


def build_deep_link(public_base_url: str, job_id: str) -> str:
    """Link that opens the user's video list focused on ``job_id``."""
    return f"{public_base_url.rstrip('/')}/my-videos?job={job_id}"


def get_notifier() -> Notifier:
    """Return the module-level notifier, configured from settings on first call."""
    global _notifier
    if _notifier is None:
        from fora.config import settings

        _notifier = NeynarNotifier(
            api_key=settings.neynar_api_key,
            sender_fid=settings.mini_app_fid,
            api_url=settings.neynar_api_url,
        )
    return _notifier
