"""Configuration unifiee du client."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


DeletePolicy = Literal["cascade", "reject", "none"]


class Settings(BaseSettings):
    """Parametres globaux du client de dictee."""

    model_config = SettingsConfigDict(
        env_prefix="VOICE_CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Hote natif
    host_base_url: str = "http://127.0.0.1:1420"
    host_events_url: str = "ws://127.0.0.1:1420/events"
    host_timeout_sec: float = 30.0

    # Signaux transitoires
    wake_word_decay_ms: int = 500
    audio_level_interval_ms: int = 50

    # Modeles
    model_types: list[str] = ["tdt", "eou"]

    # Suppression d'une entite encore referencee par un contexte
    entity_delete_policy: DeletePolicy = "cascade"

    # Ecoute automatique au lancement
    auto_start_listening: bool = False
    selected_device: Optional[str] = None

    # Logs
    log_dir: str = "logs"
    log_rotate_mb: int = 5
    log_retention_days: int = 7
    log_level: str = "INFO"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls.json_config_settings_source,
            file_secret_settings,
        )

    @staticmethod
    def json_config_settings_source() -> dict[str, object]:
        """Charge config.json depuis le repertoire courant si present."""
        config_path = Path.cwd() / "config.json"
        if config_path.is_file():
            try:
                return json.loads(config_path.read_text(encoding="utf-8"))
            except ValueError:
                return {}
        return {}


@lru_cache()
def get_settings() -> Settings:
    """Retourne une instance de Settings mise en cache."""
    return Settings()
