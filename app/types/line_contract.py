"""Pydantic models that define the wire contract with the LINE Messaging API.

Inbound webhook events and message contents are closed tagged unions keyed on
``type``; anything the platform adds later falls into the ``Other*`` variants
instead of failing validation. Outbound message objects serialise by alias
(``model_dump(by_alias=True)``) to the camelCase shape the API expects.

These classes are intentionally framework-agnostic so they can be reused by
workers, API handlers, and tests without pulling in FastAPI or database
layers.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union
from typing_extensions import Annotated

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter


class _LineModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def _type_of(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("type")
    return getattr(value, "type", None)


# ──────────────────────────────
# Inbound: message contents
# ──────────────────────────────


class TextContent(_LineModel):
    type: Literal["text"] = "text"
    id: str
    text: str


class ImageContent(_LineModel):
    type: Literal["image"] = "image"
    id: str


class VideoContent(_LineModel):
    type: Literal["video"] = "video"
    id: str


class AudioContent(_LineModel):
    type: Literal["audio"] = "audio"
    id: str


class LocationContent(_LineModel):
    type: Literal["location"] = "location"
    id: str
    title: Optional[str] = None
    address: Optional[str] = None
    latitude: float
    longitude: float


class StickerContent(_LineModel):
    type: Literal["sticker"] = "sticker"
    id: str
    package_id: str = Field(alias="packageId")
    sticker_id: str = Field(alias="stickerId")


class OtherContent(_LineModel):
    """Any message type not modelled above (file, imagemap, ...)."""

    model_config = ConfigDict(extra="allow")

    type: str = "other"


_CONTENT_TAGS = ("text", "image", "video", "audio", "location", "sticker")


def _content_tag(value: Any) -> str:
    t = _type_of(value)
    return t if t in _CONTENT_TAGS else "other"


MessageContent = Annotated[
    Union[
        Annotated[TextContent, Tag("text")],
        Annotated[ImageContent, Tag("image")],
        Annotated[VideoContent, Tag("video")],
        Annotated[AudioContent, Tag("audio")],
        Annotated[LocationContent, Tag("location")],
        Annotated[StickerContent, Tag("sticker")],
        Annotated[OtherContent, Tag("other")],
    ],
    Discriminator(_content_tag),
]


# ──────────────────────────────
# Inbound: events
# ──────────────────────────────


class EventSource(_LineModel):
    type: str = "user"
    user_id: str = Field(alias="userId")


class MessageEvent(_LineModel):
    type: Literal["message"] = "message"
    reply_token: str = Field(alias="replyToken")
    source: EventSource
    message: MessageContent
    timestamp: int


class FollowEvent(_LineModel):
    type: Literal["follow"] = "follow"
    reply_token: str = Field(alias="replyToken")
    source: EventSource
    timestamp: int


class UnfollowEvent(_LineModel):
    type: Literal["unfollow"] = "unfollow"
    source: EventSource
    timestamp: int


class OtherEvent(_LineModel):
    """Catch-all for event types not modelled yet (postback, join, beacon, ...)."""

    model_config = ConfigDict(extra="allow")

    type: str = "other"


_EVENT_TAGS = ("message", "follow", "unfollow")


def _event_tag(value: Any) -> str:
    t = _type_of(value)
    return t if t in _EVENT_TAGS else "other"


Event = Annotated[
    Union[
        Annotated[MessageEvent, Tag("message")],
        Annotated[FollowEvent, Tag("follow")],
        Annotated[UnfollowEvent, Tag("unfollow")],
        Annotated[OtherEvent, Tag("other")],
    ],
    Discriminator(_event_tag),
]

_EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(raw: Any) -> Event:
    """Validate one raw webhook event into its variant."""
    return _EVENT_ADAPTER.validate_python(raw)


class WebhookEnvelope(_LineModel):
    """Top-level webhook body.

    ``events`` stays raw here: each one is validated on its own by
    :func:`parse_event` so a single malformed event cannot sink its siblings.
    """

    destination: str = ""
    events: List[Any] = Field(default_factory=list)


# ──────────────────────────────
# Outbound: message objects
# ──────────────────────────────


class TextMessage(_LineModel):
    type: Literal["text"] = "text"
    text: str


class ImageMessage(_LineModel):
    type: Literal["image"] = "image"
    original_content_url: str = Field(alias="originalContentUrl")
    preview_image_url: str = Field(alias="previewImageUrl")


class VideoMessage(_LineModel):
    type: Literal["video"] = "video"
    original_content_url: str = Field(alias="originalContentUrl")
    preview_image_url: str = Field(alias="previewImageUrl")


class FlexMessage(_LineModel):
    type: Literal["flex"] = "flex"
    alt_text: str = Field(alias="altText")
    contents: Dict[str, Any]


OutboundMessage = Annotated[
    Union[TextMessage, ImageMessage, VideoMessage, FlexMessage],
    Field(discriminator="type"),
]


class UserProfile(_LineModel):
    user_id: str = Field(alias="userId")
    display_name: str = Field(alias="displayName")
    picture_url: Optional[str] = Field(default=None, alias="pictureUrl")
    status_message: Optional[str] = Field(default=None, alias="statusMessage")
