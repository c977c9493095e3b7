#!/usr/bin/env python3
"""
Configuration Manager for Iron-Term

Handles loading and saving the control core's settings from a local JSON
file. Environment variables (optionally loaded from a .env file) take
precedence over values stored on disk.
"""

import json
import os
import logging
import shutil
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URL = "https://nls-meta.cn-shanghai.aliyuncs.com/"
DEFAULT_WS_URL = "wss://nls-gateway.cn-shanghai.aliyuncs.com/ws/v1"
DEFAULT_SYSTEM_PATH = "/usr/bin:/bin:/usr/sbin:/sbin"


def default_tmux_path() -> str:
    """Prefer the Homebrew-style install location, else rely on PATH."""
    if os.path.exists("/usr/local/bin/tmux"):
        return "/usr/local/bin/tmux"
    return shutil.which("tmux") or "tmux"


class ConfigManager:
    """Manages control-core configuration and provider credentials."""

    # env var -> (section, key)
    ENV_OVERRIDES = {
        "TMUX_SESSION": ("tmux", "session"),
        "TMUX_PATH": ("tmux", "path"),
        "ALIYUN_NLS_TOKEN_URL": ("transcription", "token_url"),
        "ALIYUN_NLS_WS_URL": ("transcription", "ws_url"),
        "ALIYUN_ACCESS_KEY_ID": ("api_keys", "aliyun_access_key_id"),
        "ALIYUN_ACCESS_KEY_SECRET": ("api_keys", "aliyun_access_key_secret"),
        "ALIYUN_APP_KEY": ("api_keys", "aliyun_app_key"),
        "ALIYUN_NLS_TOKEN": ("api_keys", "aliyun_nls_token"),
        "IRONTERM_DATA_DIR": ("app_settings", "data_dir"),
        "HUD_DISPLAY_INDEX": ("app_settings", "hud_display_index"),
    }

    def __init__(self, config_dir: Optional[str] = None):
        """Initialize the configuration manager.

        Args:
            config_dir: Directory to store config files. Defaults to
                $IRONTERM_CONFIG_DIR or ~/.config/ironterm/
        """
        if config_dir is None:
            config_dir = os.getenv("IRONTERM_CONFIG_DIR") or os.path.expanduser("~/.config/ironterm/")

        self.config_dir = Path(config_dir).expanduser()
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.config_file = self.config_dir / "ironterm_config.json"

        self._ensure_default_config()

    def _default_config(self) -> Dict[str, Any]:
        return {
            "tmux": {
                "enabled": True,
                "session": "",
                "window": "0",
                "pane": "0",
                "poll_ms": 1500,
                "path": default_tmux_path(),
            },
            "transcription": {
                "token_url": DEFAULT_TOKEN_URL,
                "ws_url": DEFAULT_WS_URL,
                "region": "cn-shanghai",
            },
            "api_keys": {},
            "app_settings": {
                "data_dir": "~/.local/share/ironterm",
                "hud_display_index": None,
                "telemetry_ms": 1000,
                "cards_cap": 20,
            },
            "created_at": datetime.now().isoformat(),
            "updated_at": datetime.now().isoformat(),
        }

    def _ensure_default_config(self):
        """Ensure default configuration exists."""
        if not self.config_file.exists():
            self._save_config(self._default_config())

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file."""
        try:
            with open(self.config_file, 'r') as f:
                return json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            # Corrupted or deleted underneath us: rewrite the defaults
            logger.warning(f"Config file {self.config_file} unreadable, restoring defaults")
            self._save_config(self._default_config())
            with open(self.config_file, 'r') as f:
                return json.load(f)

    def _save_config(self, config: Dict[str, Any]) -> None:
        """Save configuration to file."""
        config["updated_at"] = datetime.now().isoformat()
        with open(self.config_file, 'w') as f:
            json.dump(config, f, indent=2)

    def _section(self, name: str) -> Dict[str, Any]:
        """Return one config section with defaults filled in and env overrides applied."""
        merged = dict(self._default_config().get(name, {}))
        merged.update(self._load_config().get(name, {}))
        for env_name, (section, key) in self.ENV_OVERRIDES.items():
            if section != name:
                continue
            value = os.getenv(env_name)
            if value:
                merged[key] = value
        return merged

    def get_api_key(self, key_name: str) -> Optional[str]:
        """Get a credential by name.

        Args:
            key_name: Name of the credential (e.g., 'aliyun_app_key')

        Returns:
            Credential value or None if not found
        """
        return self._section("api_keys").get(key_name) or None

    def set_api_key(self, key_name: str, value: str) -> None:
        config = self._load_config()
        config.setdefault("api_keys", {})[key_name] = value
        self._save_config(config)

    def get_tmux_settings(self) -> Dict[str, Any]:
        settings = self._section("tmux")
        settings["poll_ms"] = int(settings.get("poll_ms") or 1500)
        settings["enabled"] = bool(settings.get("enabled", True))
        return settings

    def update_tmux_settings(self, settings: Dict[str, Any]) -> None:
        """Persist tmux settings (used by the setup wizard).

        Args:
            settings: Keys to merge into the tmux section
        """
        config = self._load_config()
        config.setdefault("tmux", {}).update(settings)
        self._save_config(config)

    def get_transcription_settings(self) -> Dict[str, Any]:
        """Endpoints plus the credentials the transcription session needs."""
        settings = self._section("transcription")
        keys = self._section("api_keys")
        settings.update({
            "access_key_id": keys.get("aliyun_access_key_id") or "",
            "access_key_secret": keys.get("aliyun_access_key_secret") or "",
            "app_key": keys.get("aliyun_app_key") or "",
            "token": keys.get("aliyun_nls_token") or "",
        })
        return settings

    def get_app_settings(self) -> Dict[str, Any]:
        settings = self._section("app_settings")
        hud = settings.get("hud_display_index")
        settings["hud_display_index"] = int(hud) if hud not in (None, "") else None
        settings["telemetry_ms"] = int(settings.get("telemetry_ms") or 1000)
        settings["cards_cap"] = int(settings.get("cards_cap") or 20)
        return settings

    @property
    def data_dir(self) -> Path:
        return Path(self.get_app_settings()["data_dir"]).expanduser()

    @property
    def cards_dir(self) -> Path:
        return self.data_dir / "cards"

    @property
    def app_cards_dir(self) -> Path:
        return self.data_dir / "app_cards"

    def is_configured(self) -> bool:
        """Check if transcription credentials are present.

        Returns:
            True if either a token or an access key pair is available, plus an app key
        """
        return not self.get_missing_config()

    def get_missing_config(self) -> list:
        """Get list of missing configuration items.

        Returns:
            List of missing configuration keys
        """
        settings = self.get_transcription_settings()
        missing = []
        if not settings["app_key"]:
            missing.append("aliyun_app_key")
        if not settings["token"] and not (settings["access_key_id"] and settings["access_key_secret"]):
            missing.append("aliyun_nls_token or aliyun_access_key_id/aliyun_access_key_secret")
        return missing


_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get the global configuration manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager
