"""Chat transport seam.

The router and the backup scheduler only speak in these message objects;
`bot.telegram_handler` turns them into Telegram API calls.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence, Union


@dataclass(frozen=True, slots=True)
class Button:
    label: str
    data: str


@dataclass(slots=True)
class TextMessage:
    text: str
    # inline keyboard rows; mutually exclusive with main_menu
    buttons: Sequence[Sequence[Button]] = field(default_factory=tuple)
    main_menu: bool = False


@dataclass(slots=True)
class DocumentMessage:
    file_name: str
    content: bytes
    caption: Optional[str] = None


OutboundMessage = Union[TextMessage, DocumentMessage]


class Transport(Protocol):
    async def deliver(self, owner_key: str, message: OutboundMessage) -> None:
        """Send one message to the user's chat. Raises on delivery failure."""
        ...


@dataclass(frozen=True, slots=True)
class InboundEvent:
    owner_key: str
    kind: str  # "command" | "text" | "callback"
    data: str
    username: Optional[str] = None
    first_name: Optional[str] = None

    @classmethod
    def command(cls, owner_key: str, name: str, **profile) -> "InboundEvent":
        return cls(owner_key=owner_key, kind="command", data=name.lstrip("/").lower(), **profile)

    @classmethod
    def text(cls, owner_key: str, text: str, **profile) -> "InboundEvent":
        return cls(owner_key=owner_key, kind="text", data=text, **profile)

    @classmethod
    def callback(cls, owner_key: str, data: str, **profile) -> "InboundEvent":
        return cls(owner_key=owner_key, kind="callback", data=data, **profile)
