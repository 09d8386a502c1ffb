import json
from pathlib import Path

CONFIG_DIR = Path.home() / ".config" / "tally"
SETTINGS_PATH = CONFIG_DIR / "settings.json"

DB_NAME = "tally.db"

DEFAULTS = {
    "data_dir": str(Path.home() / "Documents" / "tally"),
    # Classifications scoring below this are flagged for review.
    "review_threshold": 0.5,
    # Append the built-in vendor keyword rules after stored rules.
    "use_default_rules": True,
    # Bulk paste fallbacks when the command line gives none.
    "default_category": "",
    "default_vendor": "",
}


def is_configured() -> bool:
    """True once settings have been written, normally by ``tally init``."""
    return SETTINGS_PATH.exists()


def load_settings() -> dict:
    """Saved settings layered over ``DEFAULTS``; keys missing from the file keep their defaults."""
    if not is_configured():
        return dict(DEFAULTS)
    saved = json.loads(SETTINGS_PATH.read_text())
    return {**DEFAULTS, **saved}


def save_settings(settings: dict) -> None:
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(json.dumps(settings, indent=2) + "\n")


def resolve_data_dir(path: str) -> str:
    return str(Path(path).expanduser().resolve())


def get_data_dir() -> Path:
    return Path(load_settings()["data_dir"])


def get_db_path() -> Path:
    return get_data_dir() / DB_NAME
