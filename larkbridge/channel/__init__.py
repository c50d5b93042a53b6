"""Feishu channel -- connection lifecycle, event routing and platform API."""

from __future__ import annotations

from .api import LarkApi
from .broadcast import BroadcastResult, broadcast
from .connection import ConnectionHandle, ConnectionManager, ConnectionState, LarkConnection
from .dedup import EVENT_DEDUP_TTL, DedupCache
from .gateway import AccountStatus, LarkGateway
from .ingest import InboundContext, MessagePipeline, is_sender_allowed
from .router import EventRouter, TaskSpawner

__all__ = [
    "EVENT_DEDUP_TTL",
    "AccountStatus",
    "BroadcastResult",
    "ConnectionHandle",
    "ConnectionManager",
    "ConnectionState",
    "DedupCache",
    "EventRouter",
    "InboundContext",
    "LarkApi",
    "LarkConnection",
    "LarkGateway",
    "MessagePipeline",
    "TaskSpawner",
    "broadcast",
    "is_sender_allowed",
]
