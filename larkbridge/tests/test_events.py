"""Tests for envelope decoding."""

from __future__ import annotations

import json

from larkbridge.channel.events import (
    CALENDAR_EVENT_CHANGED,
    FILE_CREATED,
    FILE_DELETED,
    CalendarChanged,
    CalendarEventChanged,
    FileChanged,
    MessageReceived,
    UnrecognizedEvent,
    UserAddedToGroup,
    UserEnteredChat,
    decode_event,
)
from larkbridge.tests.factories import message_envelope


def _envelope(event_type: str, body: dict, event_id: str = "ev_9") -> dict:
    return {"schema": "2.0", "header": {"event_id": event_id, "event_type": event_type}, "event": body}


class TestDecodeMessage:
    def test_text_message(self) -> None:
        mentions = [{"key": "@_user_1", "id": {"open_id": "ou_bot"}, "name": "bot"}]
        event = decode_event(message_envelope("hi", mentions=mentions, chat_type="group"))
        assert isinstance(event, MessageReceived)
        assert event.event_id == "ev_1"
        assert event.sender.sender_id.preferred == "ou_user"
        assert event.message.chat_type == "group"
        assert json.loads(event.message.content) == {"text": "hi"}
        assert event.message.mentions[0].key == "@_user_1"
        assert event.message.mentions[0].open_id == "ou_bot"

    def test_user_id_fallback(self) -> None:
        event = decode_event(message_envelope("hi", sender_open_id=None))
        assert event.sender.sender_id.preferred == "u_1"

    def test_missing_parts_decode_to_none(self) -> None:
        event = decode_event(_envelope("im.message.receive_v1", {}))
        assert isinstance(event, MessageReceived)
        assert event.sender is None
        assert event.message is None

    def test_event_id_from_top_level(self) -> None:
        envelope = {"event_id": "legacy", "event_type": "im.message.receive_v1", "event": {}}
        assert decode_event(envelope).event_id == "legacy"


class TestDecodeOtherEvents:
    def test_user_entered(self) -> None:
        event = decode_event(_envelope(
            "im.chat.access_event.bot_p2p_chat_entered_v1",
            {"chat_id": "oc_1", "operator_id": {"open_id": "ou_1"}},
        ))
        assert isinstance(event, UserEnteredChat)
        assert event.chat_id == "oc_1"
        assert event.operator.open_id == "ou_1"

    def test_user_added(self) -> None:
        event = decode_event(_envelope(
            "im.chat.member.user.added_v1",
            {"chat_id": "oc_1", "users": [
                {"name": "Ann", "user_id": {"open_id": "ou_a"}},
                {"name": "Bo", "user_id": {"open_id": "ou_b"}},
            ]},
        ))
        assert isinstance(event, UserAddedToGroup)
        assert [u.user_id.open_id for u in event.users] == ["ou_a", "ou_b"]
        assert event.users[0].name == "Ann"

    def test_file_events_carry_action(self) -> None:
        created = decode_event(_envelope(FILE_CREATED, {"file_token": "tok", "file_type": "doc"}))
        deleted = decode_event(_envelope(FILE_DELETED, {"file_token": "tok"}))
        assert isinstance(created, FileChanged)
        assert created.action == "created"
        assert created.event_type == FILE_CREATED
        assert deleted.action == "deleted"

    def test_calendar_events(self) -> None:
        users = {"user_id_list": [{"open_id": "ou_a"}, "junk", {"open_id": "ou_b"}]}
        changed = decode_event(_envelope("calendar.calendar.changed_v4", users))
        assert isinstance(changed, CalendarChanged)
        assert [u.open_id for u in changed.users] == ["ou_a", "ou_b"]

        event_changed = decode_event(_envelope(CALENDAR_EVENT_CHANGED, {**users, "calendar_id": "cal"}))
        assert isinstance(event_changed, CalendarEventChanged)
        assert event_changed.calendar_id == "cal"

    def test_unrecognized(self) -> None:
        event = decode_event(_envelope("contact.user.updated_v3", {}))
        assert isinstance(event, UnrecognizedEvent)
        assert event.event_type == "contact.user.updated_v3"

    def test_garbage_envelope(self) -> None:
        event = decode_event("not a dict")  # type: ignore[arg-type]
        assert isinstance(event, UnrecognizedEvent)
        assert event.event_id is None
