"""Settings and Feishu account resolution."""

from .accounts import (
    DEFAULT_ACCOUNT_ID,
    LarkAccountConfig,
    LarkChannelConfig,
    MissingCredentialsError,
    ResolvedAccount,
    is_account_configured,
    list_account_ids,
    resolve_account,
    resolve_default_account_id,
)

__all__ = [
    "DEFAULT_ACCOUNT_ID",
    "LarkAccountConfig",
    "LarkChannelConfig",
    "MissingCredentialsError",
    "ResolvedAccount",
    "is_account_configured",
    "list_account_ids",
    "resolve_account",
    "resolve_default_account_id",
]
