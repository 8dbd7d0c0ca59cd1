import os
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

import yaml
from dotenv import load_dotenv

# -----------------------------------------------------------------------------
# Load environment variables
# -----------------------------------------------------------------------------
load_dotenv()

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "config.yaml"


def load_config(path: str | None = None) -> dict:
    """Read the YAML config file, exiting the process if it is missing or broken."""
    config_path = path or os.getenv("CONFIG_PATH") or str(DEFAULT_CONFIG_PATH)
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f)
            if not cfg:
                raise ValueError("Config file is empty or invalid.")
            return cfg
    except FileNotFoundError:
        logging.error(f"❌ Config not found at {config_path}")
        raise SystemExit(f"Config not found: {config_path}")
    except yaml.YAMLError as e:
        logging.error(f"❌ Error parsing {config_path}: {e}")
        raise SystemExit(f"Error parsing config: {e}")
    except Exception as e:
        logging.error(f"❌ Unexpected error loading config: {e}")
        raise SystemExit(f"Failed to load config: {e}")


@dataclass(frozen=True)
class Settings:
    mongodb_uri: str
    gemini_api_key: str
    environment: str = "development"
    app_name: str = "NutriBot"
    app_version: str = "1.0.0"
    logging: dict = field(default_factory=dict)
    rate_limit: dict = field(default_factory=dict)
    mongo: dict = field(default_factory=dict)
    gemini: dict = field(default_factory=dict)
    upload: dict = field(default_factory=dict)
    allowed_origins: tuple = ()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def _require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        logging.error(f"❌ {name} not set in environment")
        raise SystemExit(f"{name} not set in environment")
    return value


def _resolve_origins(cfg: dict, environment: str) -> tuple:
    override = os.getenv("ALLOWED_ORIGINS")
    if override:
        return tuple(o.strip() for o in override.split(",") if o.strip())
    origins = cfg.get("cors", {}).get("allowed_origins", {})
    key = "production" if environment == "production" else "development"
    return tuple(origins.get(key) or [])


def build_settings(cfg: dict) -> Settings:
    environment = os.getenv("APP_ENV", "development").strip().lower() or "development"
    app_cfg = cfg.get("app", {})
    return Settings(
        mongodb_uri=_require_env("MONGODB_URI"),
        gemini_api_key=_require_env("GEMINI_API_KEY"),
        environment=environment,
        app_name=app_cfg.get("name", "NutriBot"),
        app_version=str(app_cfg.get("version", "1.0.0")),
        logging=cfg.get("logging", {}),
        rate_limit=cfg.get("rate_limit", {}),
        mongo=cfg.get("mongo", {}),
        gemini=cfg.get("gemini", {}),
        upload=cfg.get("upload", {}),
        allowed_origins=_resolve_origins(cfg, environment),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Single settings instance for the application."""
    return build_settings(load_config())
