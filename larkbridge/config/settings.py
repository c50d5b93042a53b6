"""Application settings -- reads from environment and ``.env`` file.

All process configuration is consolidated here.  The Feishu channel block
(``channels.feishu``) may additionally come from a JSON file so several
accounts can be configured side by side; environment credentials override
the top-level (default) account.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, ClassVar

from ..util.env_file import EnvFile
from ..util.singletons import register_singleton

logger = logging.getLogger(__name__)

DEFAULT_RESPONDER = "larkbridge.messaging.dispatch:echo_responder"


class Settings:
    """Runtime configuration sourced from environment variables and ``.env``."""

    _DATA_DIR_ENV: ClassVar[str] = "LARKBRIDGE_DATA_DIR"

    def __init__(self) -> None:
        # Resolve .env path: explicit DOTENV_PATH > data_dir/.env > CWD/.env
        dotenv = os.getenv("DOTENV_PATH")
        if not dotenv:
            data_dir = os.getenv(self._DATA_DIR_ENV)
            dotenv = str(Path(data_dir) / ".env") if data_dir else ".env"
        self.env = EnvFile(dotenv)
        self.reload()

    def reload(self) -> None:
        """Re-read the ``.env`` file and environment variables."""
        e = self._read

        self.lark_app_id: str = e("LARK_APP_ID")
        self.lark_app_secret: str = e("LARK_APP_SECRET")
        self.lark_domain: str = (e("LARK_DOMAIN") or "feishu").lower()
        self.lark_dm_policy: str = e("LARK_DM_POLICY")

        raw_allow = e("LARK_ALLOW_FROM")
        self.lark_allow_from: list[str] = [
            uid.strip() for uid in raw_allow.split(",") if uid.strip()
        ] if raw_allow else []

        self.config_path_override: str = e("LARKBRIDGE_CONFIG")
        self.responder: str = e("LARKBRIDGE_RESPONDER") or DEFAULT_RESPONDER
        self.port: int = int(e("LARKBRIDGE_PORT") or "8080")
        self.log_level: str = (e("LOG_LEVEL") or "INFO").upper()
        self.dedup_ttl: float = float(e("EVENT_DEDUP_TTL") or "60")

    # -- derived paths -----------------------------------------------------

    @property
    def data_dir(self) -> Path:
        return Path(os.getenv(self._DATA_DIR_ENV, str(Path.home() / ".larkbridge")))

    @property
    def config_path(self) -> Path:
        if self.config_path_override:
            return Path(self.config_path_override)
        return self.data_dir / "config.json"

    @property
    def cli_history_path(self) -> Path:
        return self.data_dir / ".cli_history"

    # -- channel config ----------------------------------------------------

    def channel_config(self) -> dict[str, Any]:
        """Return the raw ``{"channels": {"feishu": {...}}}`` config block.

        The JSON file supplies the base; ``LARK_*`` variables fill in the
        top-level account when set.
        """
        raw: dict[str, Any] = {}
        path = self.config_path
        if path.is_file():
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Failed to load channel config %s: %s", path, exc)
                raw = {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring channel config %s: top level is not an object", path)
            raw = {}

        feishu = dict((raw.get("channels") or {}).get("feishu") or {})
        overrides = {
            "appId": self.lark_app_id,
            "appSecret": self.lark_app_secret,
            "dmPolicy": self.lark_dm_policy,
            "allowFrom": self.lark_allow_from,
        }
        for key, value in overrides.items():
            if value:
                feishu[key] = value
        if "domain" not in feishu and self.lark_domain:
            feishu["domain"] = self.lark_domain

        channels = dict(raw.get("channels") or {})
        channels["feishu"] = feishu
        return {**raw, "channels": channels}

    # -- helpers -----------------------------------------------------------

    def _read(self, key: str) -> str:
        return self.env.read(key) or os.getenv(key, "")

    def ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)


# Module-level singleton
cfg = Settings()


def _reset_cfg() -> None:
    global cfg
    cfg = Settings()


register_singleton(_reset_cfg)
