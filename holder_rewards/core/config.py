import json
import os
from pathlib import Path
from typing import Any

from loguru import logger

_CONFIG_ENV_KEYS = ("HOLDER_REWARDS_CONFIG_PATH", "HOLDER_REWARDS_CONFIG")
_DEFAULT_CONFIG_FILENAME = "config.json"
_PROGRAM_KEY = "program"


def _find_project_root(start: Path) -> Path | None:
    cur = start.resolve()
    for parent in [cur, *cur.parents]:
        if (parent / "pyproject.toml").exists():
            return parent
    return None


def _project_root() -> Path | None:
    return _find_project_root(Path.cwd()) or _find_project_root(Path(__file__).parent)


def resolve_config_path(path: str | Path | None = None) -> Path:
    if path is not None:
        return Path(path).expanduser()

    env_path = next(
        (os.getenv(k, "").strip() for k in _CONFIG_ENV_KEYS if os.getenv(k)), ""
    )
    if env_path:
        p = Path(env_path).expanduser()
        if p.is_absolute():
            return p
        root = _project_root()
        return (root / p) if root else p

    root = _project_root()
    return (root / _DEFAULT_CONFIG_FILENAME) if root else Path(_DEFAULT_CONFIG_FILENAME)


def load_config_json(
    path: str | Path | None = None, *, require_exists: bool = False
) -> dict[str, Any]:
    cfg_path = resolve_config_path(path)
    if not cfg_path.exists():
        if require_exists:
            raise FileNotFoundError(f"Config file not found: {cfg_path}")
        return {}
    try:
        data = json.loads(cfg_path.read_text())
    except json.JSONDecodeError as exc:
        logger.warning(f"Ignoring unreadable config {cfg_path}: {exc}")
        return {}
    return data if isinstance(data, dict) else {}


CONFIG: dict[str, Any] = load_config_json()


def set_config(config: dict[str, Any]) -> None:
    """Replace the global CONFIG dict in-place.

    This allows code that imported CONFIG at module import time to see updates.
    """
    CONFIG.clear()
    CONFIG.update(config)


def load_config(
    path: str | Path | None = None, *, require_exists: bool = False
) -> None:
    """Load config from disk into the global CONFIG dict."""
    set_config(load_config_json(path, require_exists=require_exists))


def get_program_config() -> dict[str, Any]:
    program = CONFIG.get(_PROGRAM_KEY, {})
    return program if isinstance(program, dict) else {}


def get_rpc_urls() -> list[str]:
    rpcs = get_program_config().get("rpc_urls")
    if rpcs is None:
        single = os.environ.get("HOLDER_REWARDS_RPC_URL")
        return [single] if single else []
    if isinstance(rpcs, str):
        return [rpcs]
    return [str(r) for r in rpcs]


def get_data_dir() -> Path:
    configured = get_program_config().get("data_dir") or os.environ.get(
        "HOLDER_REWARDS_DATA_DIR"
    )
    if configured:
        return Path(str(configured)).expanduser()
    root = _project_root()
    return (root / ".holder_rewards") if root else Path(".holder_rewards")
