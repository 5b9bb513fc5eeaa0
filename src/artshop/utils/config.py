# resolves process-wide settings from the environment, once
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Optional

MAX_IMAGE_BYTES = 5 * 1024 * 1024


@dataclass(frozen=True)
class Settings:
    """
    Read-only configuration for one process.

    Fields:
      - db_path: sqlite file backing the store
      - admin_email: the single back-office identity
      - admin_password: password seeded for admin_email on first start
      - image_store: "local" writes under upload_dir, "gcs" uploads to gcs_bucket
      - upload_timeout: seconds allowed for a single image put/delete
    """

    db_path: str = "data/artshop.sqlite"
    admin_email: str = "admin@artshop.local"
    admin_password: str = "adminpass"
    image_store: Literal["local", "gcs"] = "local"
    upload_dir: str = "uploads"
    gcs_bucket: Optional[str] = None
    image_folder: str = "artworks"
    upload_timeout: float = 20.0
    bcrypt_rounds: int = 12


def _to_float(val: Optional[str], default: float) -> float:
    try:
        return float(val)
    except (TypeError, ValueError):
        return default


def _to_int(val: Optional[str], default: int) -> int:
    try:
        return int(val)
    except (TypeError, ValueError):
        return default


def load_settings() -> Settings:
    """Build Settings from environment variables, falling back to defaults."""
    defaults = Settings()
    image_store = os.getenv("ARTSHOP_IMAGE_STORE", defaults.image_store).lower()
    if image_store not in ("local", "gcs"):
        raise ValueError(f"Unknown image store {image_store!r}, use 'local' or 'gcs'.")
    return Settings(
        db_path=os.getenv("ARTSHOP_DB_PATH", defaults.db_path),
        admin_email=os.getenv("ARTSHOP_ADMIN_EMAIL", defaults.admin_email),
        admin_password=os.getenv("ADMIN_PASS", defaults.admin_password),
        image_store=image_store,
        upload_dir=os.getenv("ARTSHOP_UPLOAD_DIR", defaults.upload_dir),
        gcs_bucket=os.getenv("ARTSHOP_GCS_BUCKET") or None,
        image_folder=os.getenv("ARTSHOP_IMAGE_FOLDER", defaults.image_folder),
        upload_timeout=_to_float(
            os.getenv("ARTSHOP_UPLOAD_TIMEOUT"), defaults.upload_timeout
        ),
        bcrypt_rounds=_to_int(
            os.getenv("ARTSHOP_BCRYPT_ROUNDS"), defaults.bcrypt_rounds
        ),
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the settings of this process, loading them on first call."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
