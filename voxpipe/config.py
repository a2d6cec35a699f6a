"""
Configuration management with immutable snapshots.

Loads from: environment variables > .env files > settings.json > defaults
Provides immutable snapshots so every pipeline stage reads one consistent view.
"""

from pathlib import Path
from typing import Dict, List
import json
import os

from .types import ConfigSnapshot


# Defaults (settings.json keys)
DEFAULT_CONFIG = {
    # Microphone
    "prefer_builtin_mic": True,
    "selected_mic_device": "",
    "capture_sample_rate": 0,

    # Local engines
    "use_local_engine": False,
    "local_provider": "whisper",
    "whisper_model": "base",
    "parakeet_model": "parakeet-tdt-0.6b-v3",
    "preferred_language": "auto",

    # Fallback
    "allow_cloud_fallback": False,
    "allow_local_fallback": False,
    "fallback_whisper_model": "base",

    # Cloud
    "cloud_provider": "openai",
    "cloud_model": "",
    "cloud_base_url": "",
    "request_timeout": 120.0,

    # Reasoning
    "reasoning_model": "",
    "reasoning_provider": "auto",
    "use_reasoning_model": False,
    "agent_name": "",

    # Dictionary
    "custom_dictionary": [],
}

# Environment variable per provider key
ENV_KEYS = {
    "openai": "OPENAI_API_KEY",
    "groq": "GROQ_API_KEY",
    "custom": "CUSTOM_TRANSCRIPTION_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

# settings.json field per provider key
STORED_KEYS = {
    "openai": "openai_api_key",
    "groq": "groq_api_key",
    "custom": "custom_transcription_api_key",
    "openrouter": "openrouter_api_key",
}


def _to_bool(value) -> bool:
    """Accept real booleans and the "true"/"false" strings older settings files hold."""
    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "0", "no", "off")
    return bool(value)


class Config:
    """
    Single source of truth for all settings.

    Usage:
        config = Config.load()
        snapshot = config.snapshot()  # Immutable copy for one operation
    """

    def __init__(self):
        for key, default in DEFAULT_CONFIG.items():
            setattr(self, key, list(default) if isinstance(default, list) else default)

        # API keys
        self.env_api_keys: Dict[str, str] = {}
        self.stored_api_keys: Dict[str, str] = {}

        # Paths
        self.data_dir: Path = Path.home() / ".voxpipe"
        self.metrics_file: Path = self.data_dir / "metrics.jsonl"
        self.history_file: Path = self.data_dir / "history.jsonl"
        self.settings_file: Path = self.data_dir / "settings.json"
        self.env_file: Path = self.data_dir / ".env"

    @classmethod
    def load(cls, data_dir: Path = None) -> "Config":
        """Load configuration from all sources."""
        config = cls()
        if data_dir is not None:
            config._set_data_dir(Path(data_dir))
        config._ensure_data_dir()
        config._load_env()
        config._load_settings()
        return config

    def _set_data_dir(self, data_dir: Path) -> None:
        self.data_dir = data_dir
        self.metrics_file = data_dir / "metrics.jsonl"
        self.history_file = data_dir / "history.jsonl"
        self.settings_file = data_dir / "settings.json"
        self.env_file = data_dir / ".env"

    def _ensure_data_dir(self) -> None:
        """Create data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _load_env(self) -> None:
        """Load API keys from .env files and environment."""
        env_file = Path(".env")
        if env_file.exists():
            self._parse_env_file(env_file)

        if self.env_file.exists():
            self._parse_env_file(self.env_file)

        # Environment variables override file values
        for provider, var in ENV_KEYS.items():
            value = os.getenv(var)
            if value:
                self.env_api_keys[provider] = value

    def _parse_env_file(self, env_file: Path) -> None:
        """Parse a .env file and extract API keys."""
        by_var = {var: provider for provider, var in ENV_KEYS.items()}
        try:
            with open(env_file) as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = value.strip().strip("'\"")

                    provider = by_var.get(key)
                    if provider and value:
                        self.env_api_keys[provider] = value
        except Exception as e:
            print(f"[Config] Error loading {env_file}: {e}")

    def _load_settings(self) -> None:
        """Load settings from settings.json."""
        project_settings = Path("settings.json")
        if project_settings.exists():
            self._apply_settings_file(project_settings)

        # ~/.voxpipe/settings.json overrides
        if self.settings_file.exists():
            self._apply_settings_file(self.settings_file)

    def _apply_settings_file(self, settings_file: Path) -> None:
        """Apply settings from a JSON file."""
        try:
            with open(settings_file) as f:
                data = json.load(f)

            # Convert everything first so a bad value leaves no partial state
            values = {}
            for key, default in DEFAULT_CONFIG.items():
                if key not in data:
                    continue
                value = data[key]
                if isinstance(default, bool):
                    value = _to_bool(value)
                elif isinstance(default, list):
                    value = [str(v) for v in value] if isinstance(value, list) else []
                else:
                    value = type(default)(value)
                values[key] = value

            keys = {}
            for provider, field_name in STORED_KEYS.items():
                value = data.get(field_name)
                if value:
                    keys[provider] = str(value)

            for key, value in values.items():
                setattr(self, key, value)
            self.stored_api_keys.update(keys)

        except Exception as e:
            print(f"[Config] Error loading {settings_file}: {e}")

    def save_settings(self) -> None:
        """Save current settings to settings.json."""
        data = {key: getattr(self, key) for key in DEFAULT_CONFIG}
        for provider, field_name in STORED_KEYS.items():
            if provider in self.stored_api_keys:
                data[field_name] = self.stored_api_keys[provider]

        self._ensure_data_dir()
        with open(self.settings_file, "w") as f:
            json.dump(data, f, indent=2)

    def snapshot(self) -> ConfigSnapshot:
        """Return immutable copy for one operation."""
        values = {key: getattr(self, key) for key in DEFAULT_CONFIG}
        values["custom_dictionary"] = list(self.custom_dictionary)
        return ConfigSnapshot(
            env_api_keys=dict(self.env_api_keys),
            stored_api_keys=dict(self.stored_api_keys),
            **values,
        )

    @property
    def dictionary(self) -> List[str]:
        return list(self.custom_dictionary)
