# consultflow: configuration
# Override defaults via config.yaml, CLI args or CONSULTFLOW_* environment variables.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Optional

CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"


class ConfigError(Exception):
    """Raised when configuration is invalid."""
    pass


@dataclass
class Config:
    """Runtime configuration for the sync service."""

    # Storage
    db_path: str = "~/.local/share/consultflow/consultflow.db"

    # HTTP API
    api_secret: str = ""
    host: str = "127.0.0.1"
    port: int = 3000

    # Webhook delivery
    webhook_batch_size: int = 10
    webhook_timeout: float = 10.0
    response_body_limit: int = 1000
    user_agent: str = "consultflow-webhook/1.0"

    # Behavior: drain right after project/stage actions
    auto_process_webhooks: bool = True
    # Behavior: enqueue a consolidated project webhook on every board move
    notify_on_status_change: bool = False
    # Behavior: background drain loop (0 disables)
    drain_interval_secs: float = 5.0

    log_level: str = "INFO"

    def resolve_paths(self):
        """Expand ~ and apply environment overrides."""
        env_db = os.environ.get("CONSULTFLOW_DB")
        if env_db:
            self.db_path = env_db
        env_secret = os.environ.get("CONSULTFLOW_API_SECRET")
        if env_secret:
            self.api_secret = env_secret
        if self.db_path != ":memory:":
            self.db_path = str(Path(self.db_path).expanduser())

    def validate(self):
        if self.webhook_batch_size < 1:
            raise ConfigError(f"webhook_batch_size must be >= 1, got {self.webhook_batch_size}")
        if self.webhook_timeout <= 0:
            raise ConfigError(f"webhook_timeout must be > 0, got {self.webhook_timeout}")
        if self.drain_interval_secs < 0:
            raise ConfigError(f"drain_interval_secs must be >= 0, got {self.drain_interval_secs}")

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        cfg_path = Path(path) if path else CONFIG_PATH
        known = {f.name for f in fields(cls)}
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if k in known})
            except (OSError, yaml.YAMLError, TypeError):
                cfg = cls()
        else:
            cfg = cls()
        cfg.resolve_paths()
        cfg.validate()
        return cfg
