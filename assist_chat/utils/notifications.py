import asyncio
import logging
import re
from typing import Dict, List, Optional

import httpx
from pyfcm import FCMNotification
from pyfcm.errors import FCMError, FCMNotRegisteredError

from assist_chat.config import Settings


logger = logging.getLogger(__name__)

EXPO_TOKEN_RE = re.compile(r"^Exponent(?:Push)?Token\[[A-Za-z0-9_\-]+\]$")


def chunked(items: List[str], size: int) -> List[List[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class NoopPush:

    enabled = False
    platform = "none"

    async def send(self, tokens: List[str], title: str, body: str, data: dict | None = None) -> List[str]:
        return []

    async def aclose(self) -> None:
        return


class ExpoPush:
    """Expo push API; returns the tokens Expo reports as no longer registered."""

    enabled = True
    platform = "expo"

    def __init__(self, client: httpx.AsyncClient, url: str, batch_size: int = 99, access_token: Optional[str] = None) -> None:
        self._client = client
        self._url = url
        self._batch_size = batch_size
        self._headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if access_token:
            self._headers["Authorization"] = f"Bearer {access_token}"

    async def send(self, tokens: List[str], title: str, body: str, data: dict | None = None) -> List[str]:
        valid = [t for t in tokens if EXPO_TOKEN_RE.match(t)]
        invalid: List[str] = []
        for chunk in chunked(valid, self._batch_size):
            messages = [
                {
                    "to": token,
                    "title": title,
                    "body": body,
                    "data": data or {},
                    "sound": "default",
                    "channelId": "default",
                    "priority": "high",
                }
                for token in chunk
            ]
            try:
                response = await self._client.post(self._url, json=messages, headers=self._headers)
                response.raise_for_status()
                tickets = response.json().get("data") or []
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Expo push batch of %d failed: %s", len(chunk), exc)
                continue
            for token, ticket in zip(chunk, tickets):
                if ticket.get("status") != "error":
                    continue
                if (ticket.get("details") or {}).get("error") == "DeviceNotRegistered":
                    invalid.append(token)
        return invalid

    async def aclose(self) -> None:
        await self._client.aclose()


class FcmPush:

    enabled = True
    platform = "fcm"

    def __init__(self, service_account_file: str, project_id: Optional[str] = None, batch_size: int = 99) -> None:
        self._client = FCMNotification(service_account_file=service_account_file, project_id=project_id)
        self._batch_size = batch_size

    async def send(self, tokens: List[str], title: str, body: str, data: dict | None = None) -> List[str]:
        # FCM data values must be strings
        payload = {str(k): str(v) for k, v in (data or {}).items()}
        invalid: List[str] = []
        for chunk in chunked(tokens, self._batch_size):
            results = await asyncio.gather(*(self._notify(t, title, body, payload) for t in chunk))
            invalid.extend(token for token, ok in zip(chunk, results) if not ok)
        return invalid

    async def _notify(self, token: str, title: str, body: str, payload: Dict[str, str]) -> bool:
        # pyfcm is sync
        try:
            await asyncio.to_thread(
                self._client.notify,
                fcm_token=token,
                notification_title=title,
                notification_body=body,
                data_payload=payload,
            )
        except FCMNotRegisteredError:
            return False
        except FCMError as exc:
            logger.warning("FCM delivery failed: %s", exc)
        return True

    async def aclose(self) -> None:
        return


def get_push_providers(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> Dict[str, object]:
    if not settings.push_enabled:
        return {"expo": NoopPush()}
    client = client or httpx.AsyncClient(timeout=settings.push_timeout)
    providers: Dict[str, object] = {
        "expo": ExpoPush(client, settings.expo_push_url, settings.push_batch_size, settings.expo_access_token),
    }
    if settings.fcm_service_account_file:
        providers["fcm"] = FcmPush(settings.fcm_service_account_file, settings.fcm_project_id, settings.push_batch_size)
    return providers
