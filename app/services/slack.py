"""
Slack Web API client for closing reminders.

`SlackClient.post_message` is the raw send primitive (chat.postMessage). It
raises on every failure so the resilience stack can count and retry it:
- ConfigurationError when no bot token is configured
- SendError when Slack answers with a non-2xx status or `ok: false`
- httpx transport errors propagate as-is

`send_notification` is the direct send helper for callers outside the
scheduler. It honours the DISABLE_SLACK_NOTIFICATIONS kill switch and routes
the call through the `slack-api` circuit breaker.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from app.core.circuit_breaker import CircuitBreakerRegistry
from app.core.config import Settings, settings as default_settings
from app.core.errors import ConfigurationError, SendError
from app.core.logging_config import get_logger
from app.core.resilience import guarded_call

logger = get_logger(__name__)

SLACK_LABEL = "slack-api"


class SlackClient:
    def __init__(
        self,
        token: Optional[str] = None,
        api_base: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        request_timeout: float = 15.0,
    ):
        self.token = default_settings.SLACK_BOT_TOKEN if token is None else token
        self.api_base = (api_base or default_settings.SLACK_API_BASE).rstrip("/")
        self._http_client = http_client
        self.request_timeout = request_timeout

    @property
    def configured(self) -> bool:
        return bool(self.token)

    async def _request(self, method: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if not self.token:
            raise ConfigurationError("SLACK_BOT_TOKEN not configured")

        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json; charset=utf-8",
        }
        url = f"{self.api_base}/{method}"

        if self._http_client is not None:
            response = await self._http_client.post(url, json=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.request_timeout) as client:
                response = await client.post(url, json=body, headers=headers)

        if response.status_code >= 400:
            raise SendError(SLACK_LABEL, f"HTTP {response.status_code}", status_code=response.status_code)

        data = response.json()
        if not data.get("ok"):
            raise SendError(SLACK_LABEL, data.get("error") or "unknown_error", status_code=response.status_code)
        return data

    async def post_message(self, channel_id: str, text: str) -> Dict[str, Any]:
        """Post `text` to `channel_id`. Returns the Slack response (with `ts`)."""
        return await self._request(
            "chat.postMessage",
            {"channel": channel_id, "text": text, "mrkdwn": True},
        )


async def send_notification(
    registry: CircuitBreakerRegistry,
    channel_id: str,
    text: str,
    client: Optional[SlackClient] = None,
    config: Optional[Settings] = None,
) -> Optional[str]:
    """
    Send one message through the guarded Slack path.

    Returns the Slack message timestamp, or None when the kill switch turned
    the send into a no-op.
    """
    config = config or default_settings
    if config.DISABLE_SLACK_NOTIFICATIONS:
        logger.warning(
            "Slack notifications disabled, not sending",
            channel_id=channel_id,
            would_send=text,
        )
        return None

    client = client or SlackClient(token=config.SLACK_BOT_TOKEN, api_base=config.SLACK_API_BASE)
    if not client.configured:
        raise ConfigurationError("SLACK_BOT_TOKEN not configured")

    result = await guarded_call(
        registry.get(SLACK_LABEL),
        lambda: client.post_message(channel_id, text),
        timeout=config.SEND_TIMEOUT_SECONDS,
        max_retries=config.SEND_MAX_RETRIES,
        base_delay=config.SEND_BASE_DELAY_SECONDS,
    )
    return result.get("ts")


async def send_test_notification(
    registry: CircuitBreakerRegistry,
    channel_id: str,
    client: Optional[SlackClient] = None,
    config: Optional[Settings] = None,
) -> Dict[str, Any]:
    """Send a connectivity check message. Never raises; reports the outcome."""
    text = (
        "✅ *Test Notification*\n\nSlack bot is connected!\n\n"
        f"Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
    )
    try:
        ts = await send_notification(registry, channel_id, text, client=client, config=config)
    except Exception as e:
        logger.warning("Test notification failed", channel_id=channel_id, error=str(e))
        return {"success": False, "error": str(e)}
    if ts is None and (config or default_settings).DISABLE_SLACK_NOTIFICATIONS:
        return {"success": False, "error": "Notifications disabled via DISABLE_SLACK_NOTIFICATIONS"}
    return {"success": True, "ts": ts}
