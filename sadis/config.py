"""Single source of truth for runtime settings.

All modules import from here, never from os.environ directly.

Settings come from the process environment first, then from a plain
.env file (``secrets/internal.env`` or the path in ``SADIS_ENV_FILE``).
The server and folder list live in a JSON file at APP_CONFIG_PATH.
"""

import json
import os
from pathlib import Path

from dotenv import dotenv_values

from sadis.schemas.ingest import AppConfig

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _load_env_file(path: str | Path) -> dict[str, str | None]:
    """Load a plain .env file; a missing file yields no values."""
    path = Path(path)
    if not path.exists():
        return {}
    return dict(dotenv_values(path))


_env_file = _load_env_file(
    os.environ.get("SADIS_ENV_FILE", str(PROJECT_ROOT / "secrets" / "internal.env"))
)


def _get(key: str, default: str) -> str:
    value = os.environ.get(key)
    if value is None:
        value = _env_file.get(key)
    return default if value is None else value


APP_CONFIG_PATH: str = _get("SADIS_CONFIG_PATH", str(PROJECT_ROOT / "data" / "config.json"))
FTP_PASSWORD: str = _get("SADIS_FTP_PASSWORD", "")
CONNECT_TIMEOUT: float = float(_get("SADIS_CONNECT_TIMEOUT", "15"))
LOG_CAPACITY: int = int(_get("SADIS_LOG_CAPACITY", "200"))
OUTCOME_AUDIT_PATH: str = _get(
    "SADIS_OUTCOME_AUDIT_PATH", str(PROJECT_ROOT / "data" / "outcomes.jsonl")
)


def load_app_config(path: str | Path, *, password: str | None = None) -> AppConfig:
    """Read and validate an AppConfig JSON file.

    Args:
        path: JSON file with ``server`` and ``folders`` keys.
        password: If given, replaces the server password from the file.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        pydantic.ValidationError: If the contents are invalid.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    raw = json.loads(path.read_text())
    if password and isinstance(raw, dict) and isinstance(raw.get("server"), dict):
        raw["server"]["password"] = password
    return AppConfig.model_validate(raw)
