"""Configuration loading

YAML file -> pydantic sections, then environment overrides.
"""
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel


class DatabaseConfig(BaseModel):
    """SQLite database"""
    # None -> repositories.get_default_db_path()
    path: Optional[str] = None


class EmailConfig(BaseModel):
    """Outgoing mail. SMTP is off when host is empty."""
    smtp_host: Optional[str] = None
    smtp_port: int = 25
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    use_tls: bool = False
    sender: str = "helpdesk@localhost"
    timeout_seconds: float = 30.0
    portal_base_url: Optional[str] = None

    @property
    def smtp_enabled(self) -> bool:
        return bool(self.smtp_host)


class EngineConfig(BaseModel):
    """Update engine behaviour"""
    # UPDATE only matches if updated_at is unchanged since the snapshot
    optimistic_locking: bool = False
    # Closing a ticket without resolution notes is rejected
    require_resolution_to_close: bool = False


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ServerConfig(BaseModel):
    """HTTP server"""
    host: str = "127.0.0.1"
    port: int = 8000


class Config(BaseModel):
    """Global configuration"""
    database: DatabaseConfig = DatabaseConfig()
    email: EmailConfig = EmailConfig()
    engine: EngineConfig = EngineConfig()
    logging: LoggingConfig = LoggingConfig()
    server: ServerConfig = ServerConfig()


# (environment variable, section, key)
ENV_OVERRIDES = [
    ("HELPDESK_DB_PATH", "database", "path"),
    ("SMTP_HOST", "email", "smtp_host"),
    ("SMTP_PORT", "email", "smtp_port"),
    ("SMTP_USER", "email", "smtp_user"),
    ("SMTP_PASSWORD", "email", "smtp_password"),
    ("EMAIL_FROM", "email", "sender"),
    ("PORTAL_BASE_URL", "email", "portal_base_url"),
    ("LOG_LEVEL", "logging", "level"),
]


def apply_env_overrides(
    config_dict: Dict[str, Any],
    environ: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """Overlay set, non-empty environment variables onto a raw config dict."""
    if environ is None:
        environ = dict(os.environ)
    for env_name, section, key in ENV_OVERRIDES:
        value = environ.get(env_name)
        if value:
            # "section:" with no body loads as None
            if not isinstance(config_dict.get(section), dict):
                config_dict[section] = {}
            config_dict[section][key] = value
    return config_dict


def load_config(
    config_path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None
) -> Config:
    """
    Load configuration.

    Args:
        config_path: YAML file; defaults to HELPDESK_CONFIG, then
                     config.yaml in the project root. A missing file
                     means built-in defaults.
        environ: environment to read overrides from (default os.environ)

    Returns:
        Config: validated configuration
    """
    env = dict(os.environ) if environ is None else environ

    if config_path is None:
        config_path = env.get("HELPDESK_CONFIG")

    if config_path is None:
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    config_path = Path(config_path)

    config_dict: Dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f) or {}
    # Empty sections fall back to their defaults
    config_dict = {k: v for k, v in config_dict.items() if v is not None}

    return Config(**apply_env_overrides(config_dict, env))
