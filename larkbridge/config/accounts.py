"""Feishu account resolution -- config schema, listing and per-account merge.

The raw configuration is the ``channels.feishu`` block of the host config::

    {"channels": {"feishu": {"appId": "cli_x", "appSecret": "...",
                             "accounts": {"ops": {"appId": "cli_y", ...}}}}}

Top-level credentials form the ``default`` account; entries under
``accounts`` are addressed by their key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_ID = "default"

DmPolicy = Literal["open", "pairing", "allowlist"]


class MissingCredentialsError(ValueError):
    """Raised when an account is started without an app id / app secret."""

    def __init__(self, account_id: str = "") -> None:
        suffix = f" (account {account_id})" if account_id else ""
        super().__init__(f"Feishu appId and appSecret are required{suffix}")
        self.account_id = account_id


class LarkAccountConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    enabled: bool | None = None
    name: str | None = None
    app_id: str | None = Field(default=None, alias="appId")
    app_secret: str | None = Field(default=None, alias="appSecret")
    domain: Literal["feishu", "lark"] | None = None
    dm_policy: DmPolicy | None = Field(default=None, alias="dmPolicy")
    allow_from: list[str] | None = Field(default=None, alias="allowFrom")
    groups: dict[str, Any] | None = None


class LarkChannelConfig(LarkAccountConfig):
    accounts: dict[str, LarkAccountConfig] | None = None


@dataclass(frozen=True)
class ResolvedAccount:
    account_id: str
    enabled: bool = True
    app_id: str | None = None
    app_secret: str | None = None
    name: str | None = None
    domain: str = "feishu"
    dm_policy: str = "open"
    allow_from: tuple[str, ...] = ()
    config: LarkAccountConfig = field(default_factory=LarkAccountConfig, repr=False)

    @property
    def handle_key(self) -> str:
        return f"{self.account_id}:{self.app_id}"

    @property
    def log_prefix(self) -> str:
        return f"[feishu:{self.account_id}]"


def load_channel_config(raw: dict[str, Any] | None) -> LarkChannelConfig | None:
    """Validate ``raw["channels"]["feishu"]``; ``None`` when absent or invalid."""
    block = ((raw or {}).get("channels") or {}).get("feishu")
    if not block:
        return None
    try:
        return LarkChannelConfig.model_validate(block)
    except ValidationError as exc:
        logger.error("Invalid channels.feishu config: %s", exc)
        return None


def list_account_ids(raw: dict[str, Any] | None) -> list[str]:
    feishu = load_channel_config(raw)
    if feishu is None:
        return []
    ids: list[str] = []
    if feishu.app_id:
        ids.append(DEFAULT_ACCOUNT_ID)
    for account_id in (feishu.accounts or {}):
        if account_id not in ids:
            ids.append(account_id)
    return ids


def resolve_default_account_id(raw: dict[str, Any] | None) -> str:
    ids = list_account_ids(raw)
    if DEFAULT_ACCOUNT_ID in ids:
        return DEFAULT_ACCOUNT_ID
    return ids[0] if ids else DEFAULT_ACCOUNT_ID


def resolve_account(raw: dict[str, Any] | None, account_id: str | None = None) -> ResolvedAccount:
    """Resolve one account; unknown ids fall back to the top-level block."""
    feishu = load_channel_config(raw)
    resolved_id = account_id or DEFAULT_ACCOUNT_ID

    account_cfg = (feishu.accounts or {}).get(resolved_id) if feishu else None
    use_top_level = resolved_id == DEFAULT_ACCOUNT_ID or account_cfg is None
    base: LarkAccountConfig = (feishu if use_top_level else account_cfg) or LarkAccountConfig()

    app_id = (base.app_id or "").strip() or None
    app_secret = (base.app_secret or "").strip() or None
    domain = base.domain or (feishu.domain if feishu else None) or "feishu"

    return ResolvedAccount(
        account_id=resolved_id,
        enabled=base.enabled is not False,
        app_id=app_id,
        app_secret=app_secret,
        name=base.name,
        domain=domain,
        dm_policy=base.dm_policy or "open",
        allow_from=tuple(base.allow_from or ()),
        config=LarkAccountConfig(
            enabled=base.enabled,
            name=base.name,
            app_id=app_id,
            app_secret=app_secret,
            domain=base.domain,
            dm_policy=base.dm_policy,
            allow_from=base.allow_from,
            groups=base.groups,
        ),
    )


def is_account_configured(account: ResolvedAccount) -> bool:
    return bool(account.app_id and account.app_secret)


def require_credentials(account: ResolvedAccount) -> None:
    if not is_account_configured(account):
        raise MissingCredentialsError(account.account_id)
