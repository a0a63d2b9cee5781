"""
Settings and on-disk config for the Careena client.

Config lives in ~/.careena/config.json (or $CAREENA_HOME/config.json).
"""

import json
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel

DEFAULT_BASE_URL = "https://loanbot.carepay.money/api/v1/agent"
DEFAULT_POST_APPROVAL_BASE_URL = "https://backend.carepay.money"


def config_dir() -> Path:
    home = os.environ.get("CAREENA_HOME")
    return Path(home) if home else Path.home() / ".careena"


def config_file() -> Path:
    return config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    try:
        return json.loads(config_file().read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return {}


def save_config(cfg: dict[str, Any]) -> None:
    path = config_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(cfg, indent=2))


class Settings(BaseModel):
    base_url: str = DEFAULT_BASE_URL
    post_approval_base_url: str = DEFAULT_POST_APPROVAL_BASE_URL
    timeout_s: float = 120.0
    post_approval_timeout_s: float = 30.0
    session_ttl_days: int = 30
    history_limit: int = 30
    session_limit: Optional[int] = 10
    token_check_interval_s: float = 30.0
    token_grace_s: float = 5.0
    reauth_interval_s: float = 600.0
    search_debounce_s: float = 0.3
    restart_delay_s: float = 2.0

    @classmethod
    def load(cls, cfg: Optional[dict[str, Any]] = None) -> "Settings":
        """Build settings from the config file's "settings" block, then env overrides."""
        if cfg is None:
            cfg = load_config()
        values: dict[str, Any] = dict(cfg.get("settings") or {})
        if cfg.get("base_url"):
            values["base_url"] = cfg["base_url"]
        env_url = os.environ.get("CAREENA_BASE_URL")
        if env_url:
            values["base_url"] = env_url
        return cls.model_validate(values)
