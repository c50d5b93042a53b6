"""Decoded Feishu events.

The transport hands over the schema 2.0 envelope as a plain dict::

    {"schema": "2.0",
     "header": {"event_id": "...", "event_type": "im.message.receive_v1", ...},
     "event": {...}}

``decode_event`` turns it into one frozen dataclass per recognized event
type.  Field access is lenient: anything missing or of the wrong shape
decodes to ``None`` / empty and the handlers decide what is required.
Unknown types decode to :class:`UnrecognizedEvent` instead of failing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Union

MESSAGE_RECEIVE = "im.message.receive_v1"
USER_ENTERED_CHAT = "im.chat.access_event.bot_p2p_chat_entered_v1"
USER_ADDED_TO_GROUP = "im.chat.member.user.added_v1"
FILE_CREATED = "drive.file.created_in_folder_v1"
FILE_DELETED = "drive.file.deleted_v1"
FILE_EDITED = "drive.file.edit_v1"
CALENDAR_CHANGED = "calendar.calendar.changed_v4"
CALENDAR_EVENT_CHANGED = "calendar.calendar.event.changed_v4"

EVENT_TYPES: tuple[str, ...] = (
    MESSAGE_RECEIVE,
    USER_ENTERED_CHAT,
    USER_ADDED_TO_GROUP,
    FILE_CREATED,
    FILE_DELETED,
    FILE_EDITED,
    CALENDAR_CHANGED,
    CALENDAR_EVENT_CHANGED,
)

FileAction = Literal["created", "deleted", "edited"]

_FILE_ACTIONS: dict[str, FileAction] = {
    FILE_CREATED: "created",
    FILE_DELETED: "deleted",
    FILE_EDITED: "edited",
}


@dataclass(frozen=True)
class UserId:
    open_id: str | None = None
    user_id: str | None = None
    union_id: str | None = None

    @property
    def preferred(self) -> str | None:
        return self.open_id or self.user_id


@dataclass(frozen=True)
class Mention:
    key: str | None = None
    open_id: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class MessageSender:
    sender_id: UserId | None = None
    sender_type: str | None = None


@dataclass(frozen=True)
class Message:
    message_id: str | None = None
    chat_id: str | None = None
    chat_type: str | None = None
    message_type: str | None = None
    content: str | None = None
    mentions: tuple[Mention, ...] = ()


@dataclass(frozen=True)
class GroupUser:
    user_id: UserId | None = None
    name: str | None = None


@dataclass(frozen=True)
class MessageReceived:
    event_id: str | None
    sender: MessageSender | None = None
    message: Message | None = None
    event_type: str = MESSAGE_RECEIVE


@dataclass(frozen=True)
class UserEnteredChat:
    event_id: str | None
    chat_id: str | None = None
    operator: UserId | None = None
    event_type: str = USER_ENTERED_CHAT


@dataclass(frozen=True)
class UserAddedToGroup:
    event_id: str | None
    chat_id: str | None = None
    operator: UserId | None = None
    users: tuple[GroupUser, ...] = ()
    event_type: str = USER_ADDED_TO_GROUP


@dataclass(frozen=True)
class FileChanged:
    event_id: str | None
    action: FileAction = "edited"
    file_token: str | None = None
    file_type: str | None = None
    folder_token: str | None = None
    operator: UserId | None = None
    event_type: str = FILE_EDITED


@dataclass(frozen=True)
class CalendarChanged:
    event_id: str | None
    users: tuple[UserId, ...] = ()
    event_type: str = CALENDAR_CHANGED


@dataclass(frozen=True)
class CalendarEventChanged:
    event_id: str | None
    calendar_id: str | None = None
    users: tuple[UserId, ...] = ()
    event_type: str = CALENDAR_EVENT_CHANGED


@dataclass(frozen=True)
class UnrecognizedEvent:
    event_id: str | None
    event_type: str = ""


LarkEvent = Union[
    MessageReceived,
    UserEnteredChat,
    UserAddedToGroup,
    FileChanged,
    CalendarChanged,
    CalendarEventChanged,
    UnrecognizedEvent,
]


# -- field helpers ---------------------------------------------------------


def _obj(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _user_id(value: Any) -> UserId | None:
    data = _obj(value)
    if not data:
        return None
    return UserId(
        open_id=_str(data.get("open_id")),
        user_id=_str(data.get("user_id")),
        union_id=_str(data.get("union_id")),
    )


def _mention(value: Any) -> Mention:
    data = _obj(value)
    return Mention(
        key=_str(data.get("key")),
        open_id=_str(_obj(data.get("id")).get("open_id")),
        name=_str(data.get("name")),
    )


# -- per-type decoders -----------------------------------------------------


def _decode_message(event_id: str | None, body: dict[str, Any]) -> MessageReceived:
    sender_raw = body.get("sender")
    message_raw = body.get("message")
    sender = None
    if isinstance(sender_raw, dict):
        sender = MessageSender(
            sender_id=_user_id(sender_raw.get("sender_id")),
            sender_type=_str(sender_raw.get("sender_type")),
        )
    message = None
    if isinstance(message_raw, dict):
        content = message_raw.get("content")
        message = Message(
            message_id=_str(message_raw.get("message_id")),
            chat_id=_str(message_raw.get("chat_id")),
            chat_type=_str(message_raw.get("chat_type")),
            message_type=_str(message_raw.get("message_type")),
            content=content if isinstance(content, str) else None,
            mentions=tuple(_mention(m) for m in _list(message_raw.get("mentions"))),
        )
    return MessageReceived(event_id=event_id, sender=sender, message=message)


def _decode_user_entered(event_id: str | None, body: dict[str, Any]) -> UserEnteredChat:
    return UserEnteredChat(
        event_id=event_id,
        chat_id=_str(body.get("chat_id")),
        operator=_user_id(body.get("operator_id")),
    )


def _decode_user_added(event_id: str | None, body: dict[str, Any]) -> UserAddedToGroup:
    users = tuple(
        GroupUser(user_id=_user_id(_obj(u).get("user_id")), name=_str(_obj(u).get("name")))
        for u in _list(body.get("users"))
    )
    return UserAddedToGroup(
        event_id=event_id,
        chat_id=_str(body.get("chat_id")),
        operator=_user_id(body.get("operator_id")),
        users=users,
    )


def _decode_file(event_id: str | None, event_type: str, body: dict[str, Any]) -> FileChanged:
    return FileChanged(
        event_id=event_id,
        action=_FILE_ACTIONS[event_type],
        file_token=_str(body.get("file_token")),
        file_type=_str(body.get("file_type")),
        folder_token=_str(body.get("folder_token")),
        operator=_user_id(body.get("operator_id")),
        event_type=event_type,
    )


def _decode_users(body: dict[str, Any]) -> tuple[UserId, ...]:
    users = (_user_id(u) for u in _list(body.get("user_id_list")))
    return tuple(u for u in users if u is not None)


def decode_event(envelope: dict[str, Any]) -> LarkEvent:
    """Decode a transport envelope into its event dataclass."""
    envelope = _obj(envelope)
    header = _obj(envelope.get("header"))
    event_id = _str(header.get("event_id")) or _str(envelope.get("event_id"))
    event_type = _str(header.get("event_type")) or _str(envelope.get("event_type")) or ""
    body = _obj(envelope.get("event"))

    if event_type == MESSAGE_RECEIVE:
        return _decode_message(event_id, body)
    if event_type == USER_ENTERED_CHAT:
        return _decode_user_entered(event_id, body)
    if event_type == USER_ADDED_TO_GROUP:
        return _decode_user_added(event_id, body)
    if event_type in _FILE_ACTIONS:
        return _decode_file(event_id, event_type, body)
    if event_type == CALENDAR_CHANGED:
        return CalendarChanged(event_id=event_id, users=_decode_users(body))
    if event_type == CALENDAR_EVENT_CHANGED:
        return CalendarEventChanged(
            event_id=event_id,
            calendar_id=_str(body.get("calendar_id")),
            users=_decode_users(body),
        )
    return UnrecognizedEvent(event_id=event_id, event_type=event_type)
