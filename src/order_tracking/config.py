from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import dotenv_values

from .logging import get_logger
from .paths import expand_abs, find_project_root, var_dir

log = get_logger("config")


DEFAULT_OCR_LANG = "tha+eng"
DEFAULT_OCR_TIMEOUT = 60
DEFAULT_DB_FOLDER = "orders"
DEFAULT_DB_FILENAME = "orders.sqlite3"


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running tools from subdirectories (e.g., `src/`) still find
    the repository-level `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Return key/value pairs from the nearest .env; does not mutate os.environ."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    values = {k: (v or "").strip() for k, v in dotenv_values(path).items()}
    log.debug(f"Loaded {len(values)} key(s) from .env at {path}")
    return values


def _lookup(key: str, dotenv_dir: str) -> Optional[str]:
    v = os.environ.get(key)
    if v:
        return v.strip()
    v = _read_dotenv(dotenv_dir).get(key)
    return v or None


def load_tesseract_cmd(dotenv_dir: str) -> Optional[str]:
    """Return an explicit tesseract binary path, or None to use PATH."""
    return _lookup("TESSERACT_CMD", dotenv_dir)


def load_ocr_language(dotenv_dir: str, fallback: str = DEFAULT_OCR_LANG) -> str:
    return _lookup("OCR_LANG", dotenv_dir) or fallback


def load_ocr_timeout(dotenv_dir: str, fallback: int = DEFAULT_OCR_TIMEOUT) -> int:
    raw = _lookup("OCR_TIMEOUT", dotenv_dir)
    if not raw:
        return fallback
    try:
        return max(1, int(raw))
    except ValueError:
        log.warning(f"Ignoring invalid OCR_TIMEOUT={raw!r}; using {fallback}s")
        return fallback


def load_db_path(dotenv_dir: str) -> str:
    """Return the order DB path (ORDER_DB_PATH or var/orders/orders.sqlite3)."""
    explicit = _lookup("ORDER_DB_PATH", dotenv_dir)
    if explicit:
        return expand_abs(explicit)
    root = find_project_root(dotenv_dir)
    return os.path.join(var_dir(root), DEFAULT_DB_FOLDER, DEFAULT_DB_FILENAME)


@dataclass
class TrackingConfig:
    db_path: str
    ocr_language: str
    ocr_timeout: int
    tesseract_cmd: Optional[str]
    script_dir: str


def build_tracking_config(args, *, script_dir: str) -> TrackingConfig:
    """Create a TrackingConfig from CLI args over env/.env and log it."""
    db_path = getattr(args, "db_path", None)
    db_path = expand_abs(db_path) if db_path else load_db_path(script_dir)
    language = getattr(args, "lang", None) or load_ocr_language(script_dir)
    timeout = getattr(args, "ocr_timeout", None) or load_ocr_timeout(script_dir)
    tesseract_cmd = getattr(args, "tesseract_cmd", None) or load_tesseract_cmd(script_dir)

    cfg = TrackingConfig(
        db_path=db_path,
        ocr_language=language,
        ocr_timeout=int(timeout),
        tesseract_cmd=tesseract_cmd,
        script_dir=script_dir,
    )
    log_environment_banner(cfg)
    return cfg


def log_environment_banner(cfg: TrackingConfig) -> None:
    log.info("Tracking import configuration prepared")
    log.info(f"Order database     : {cfg.db_path}")
    log.info(f"OCR language       : {cfg.ocr_language}")
    log.info(f"OCR timeout        : {cfg.ocr_timeout}s")
    log.info(f"Tesseract binary   : {cfg.tesseract_cmd or '(from PATH)'}")
