"""Outcome type shared by platform API calls and chat commands."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class Result:
    """Outcome of one platform call or command.

    Successful platform calls carry their payload in *value*; failures carry
    the user- or log-facing explanation in *message*.  A ``Result`` is never
    raised, callers branch on its truthiness instead.

    Examples::

        sent = await api.reply_text(account, message_id, "pong")
        if not sent:
            logger.error("reply failed: %s", sent.error)

        ok, msg = await executor.execute(account, command, ctx)
    """

    success: bool
    message: str = ""
    value: Any = field(default=None, repr=False)

    # -- constructors ------------------------------------------------------

    @classmethod
    def ok(cls, message: str = "", *, value: Any = None) -> Result:
        return cls(success=True, message=message, value=value)

    @classmethod
    def fail(cls, message: str = "") -> Result:
        return cls(success=False, message=message)

    # -- accessors ---------------------------------------------------------

    @property
    def error(self) -> str | None:
        return None if self.success else (self.message or "Unknown error")

    # -- protocols ---------------------------------------------------------

    def __bool__(self) -> bool:
        return self.success

    def __iter__(self):
        yield self.success
        yield self.message
