import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel


CONFIG_PATH = Path("config.json")
ENV_OVERRIDE_KEY = "LOCALINFER_ENV_OVERRIDES_CONFIG"
ENV_OVERRIDE_TRUE = {"1", "true", "yes", "on"}
DEFAULT_DIAG_LOG = str(Path.home() / ".localinfer" / "inference-diag.log")


class AppSettings(BaseModel):
    database_path: str = "localinfer.db"
    root_folder: str = "."
    orc_base_url: str = "https://orc.localinfer.dev"
    models_manifest_path: str = "/api/models/required"
    register_path: str = "/api/hosts/register"
    diag_log_path: str = DEFAULT_DIAG_LOG
    request_timeout_s: float = 60.0
    download_timeout_s: float = 600.0
    inference_base_url: str = "http://127.0.0.1:8080/v1"
    host: str = "127.0.0.1"
    port: int = 8100


def _load_from_env() -> dict:
    load_dotenv()
    env_map = {
        "database_path": os.getenv("LOCALINFER_DATABASE_PATH"),
        "root_folder": os.getenv("LOCALINFER_ROOT_FOLDER"),
        "orc_base_url": os.getenv("LOCALINFER_ORC_BASE_URL"),
        "inference_base_url": os.getenv("LOCALINFER_INFERENCE_BASE_URL"),
        "diag_log_path": os.getenv("LOCALINFER_DIAG_LOG"),
        "request_timeout_s": os.getenv("LOCALINFER_REQUEST_TIMEOUT_S"),
        "download_timeout_s": os.getenv("LOCALINFER_DOWNLOAD_TIMEOUT_S"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
    }
    cleaned = {k: v for k, v in env_map.items() if v not in (None, "")}
    if "port" in cleaned:
        cleaned["port"] = int(cleaned["port"])
    for key in ("request_timeout_s", "download_timeout_s"):
        if key in cleaned:
            cleaned[key] = float(cleaned[key])
    return cleaned


def _env_overrides_config() -> bool:
    return str(os.getenv(ENV_OVERRIDE_KEY, "")).strip().lower() in ENV_OVERRIDE_TRUE


def load_settings(config_path: Optional[Path] = None) -> AppSettings:
    env_data = _load_from_env()
    path = config_path or CONFIG_PATH
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            file_data = json.loads(path.read_text())
        except Exception:
            file_data = {}
    # Config wins by default; allow env overrides only when explicitly enabled.
    if _env_overrides_config():
        merged = {**file_data, **env_data}
    else:
        merged = {**env_data, **file_data}
    return AppSettings(**merged)


def save_settings(settings: AppSettings, config_path: Optional[Path] = None) -> None:
    path = config_path or CONFIG_PATH
    path.write_text(settings.model_dump_json(indent=2))
