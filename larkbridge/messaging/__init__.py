"""Messaging -- group commands, reply dispatch and outbound formatting."""

from __future__ import annotations

from .commands import CommandContext, CommandExecutor, ParsedCommand, parse_command, requires_admin_permission
from .dispatch import ReplyPayload, ReplyRuntime, ReplyTurn, ResponderReplyRuntime, echo_responder, load_responder
from .formatting import TEXT_CHUNK_LIMIT, split_message

__all__ = [
    "TEXT_CHUNK_LIMIT",
    "CommandContext",
    "CommandExecutor",
    "ParsedCommand",
    "ReplyPayload",
    "ReplyRuntime",
    "ReplyTurn",
    "ResponderReplyRuntime",
    "echo_responder",
    "load_responder",
    "parse_command",
    "requires_admin_permission",
    "split_message",
]
