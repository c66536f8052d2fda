"""Thin async client for the LINE Messaging API (push / reply / broadcast / profile).

Stateless apart from the bearer token. No retries here: every call is one
HTTP request, and any failure surfaces as :class:`DeliveryError` carrying
the raw response body. Retry policy belongs to the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence, Union

import httpx
from pydantic import TypeAdapter

from app.types.line_contract import OutboundMessage, TextMessage, UserProfile
from config import LINE_ACCESS_TOKEN_KEY, settings
import db

_LOGGER = logging.getLogger(__name__)

_MESSAGE_ADAPTER: TypeAdapter[OutboundMessage] = TypeAdapter(OutboundMessage)

MessageLike = Union[str, OutboundMessage, dict]


class DeliveryError(Exception):
    """An outbound call did not succeed.

    ``status_code`` is ``None`` for transport failures (DNS, timeout, reset);
    ``body`` is the opaque diagnostic text returned by the platform.
    """

    def __init__(self, message: str, *, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def _serialise(messages: Iterable[MessageLike]) -> list[dict[str, Any]]:
    out = []
    for m in messages:
        if isinstance(m, str):
            m = TextMessage(text=m)
        elif isinstance(m, dict):
            m = _MESSAGE_ADAPTER.validate_python(m)
        out.append(m.model_dump(by_alias=True))
    return out


class LineClient:
    def __init__(
        self,
        access_token: str,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not access_token:
            raise ValueError("access_token must be a non-empty string")
        self._http = httpx.AsyncClient(
            base_url=base_url or settings.LINE_API_BASE,
            timeout=timeout if timeout is not None else settings.HTTP_TIMEOUT,
            headers={"Authorization": f"Bearer {access_token}"},
            transport=transport,
        )

    @classmethod
    async def from_store(cls, transport: httpx.AsyncBaseTransport | None = None) -> "LineClient | None":
        """Build a client from the stored channel access token, or ``None`` if unset."""
        token = await db.get_setting(LINE_ACCESS_TOKEN_KEY)
        if not token:
            return None
        return cls(token, transport=transport)

    async def __aenter__(self) -> "LineClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------
    async def push(self, to: str, messages: Sequence[MessageLike]) -> None:
        await self._post("/v2/bot/message/push", {"to": to, "messages": _serialise(messages)})

    async def reply(self, reply_token: str, messages: Sequence[MessageLike]) -> None:
        await self._post(
            "/v2/bot/message/reply",
            {"replyToken": reply_token, "messages": _serialise(messages)},
        )

    async def broadcast(self, messages: Sequence[MessageLike]) -> None:
        await self._post("/v2/bot/message/broadcast", {"messages": _serialise(messages)})

    async def get_profile(self, user_id: str) -> UserProfile:
        resp = await self._send("GET", f"/v2/bot/profile/{user_id}")
        return UserProfile.model_validate(resp.json())

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    async def _post(self, path: str, payload: dict[str, Any]) -> None:
        await self._send("POST", path, json=payload)

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            _LOGGER.warning("LINE API %s %s transport error: %s", method, path, exc)
            raise DeliveryError(f"LINE API transport error: {exc}") from exc

        if not resp.is_success:
            body = resp.text
            _LOGGER.warning("LINE API %s %s returned %s", method, path, resp.status_code)
            raise DeliveryError(
                f"LINE API error: {body}", status_code=resp.status_code, body=body
            )
        return resp
