import os
from pathlib import Path

from dotenv import load_dotenv

# Basic settings helper to read environment configuration.
# backend/.env is optional; real environment variables win.
load_dotenv(Path(__file__).resolve().parent / ".env")

BACKEND_ROOT = Path(__file__).resolve().parent


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_int(val: str | None, default: int) -> int:
    if val is None or not val.strip():
        return default
    return int(val)


class Settings:
    def __init__(self) -> None:
        self.OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY") or None
        self.IMAGE_EDIT_MODEL: str = os.getenv("IMAGE_EDIT_MODEL", "gpt-image-1.5")
        self.IMAGE_EDIT_QUALITY: str = os.getenv("IMAGE_EDIT_QUALITY", "high")
        self.IMAGE_EDIT_INPUT_FIDELITY: str = os.getenv("IMAGE_EDIT_INPUT_FIDELITY", "high")
        self.IMAGE_EDIT_TIMEOUT_SECONDS: int = _as_int(os.getenv("IMAGE_EDIT_TIMEOUT_SECONDS"), 300)

        # Every special template is edited at this resolution.
        self.WORKING_WIDTH: int = _as_int(os.getenv("WORKING_WIDTH"), 1536)
        self.WORKING_HEIGHT: int = _as_int(os.getenv("WORKING_HEIGHT"), 1024)
        self.GLYPH_TEXT_MASK: bool = _as_bool(os.getenv("GLYPH_TEXT_MASK"), False)

        self.STORAGE_ROOT: str = os.getenv("STORAGE_ROOT", "storage")
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", f"sqlite:///{BACKEND_ROOT / 'app.db'}")

        self.USER_NOTES_MAX_CHARS: int = _as_int(os.getenv("USER_NOTES_MAX_CHARS"), 500)
        self.SUBJECT_MIN_DIMENSION: int = _as_int(os.getenv("SUBJECT_MIN_DIMENSION"), 1024)

    @property
    def working_size(self) -> tuple[int, int]:
        return (self.WORKING_WIDTH, self.WORKING_HEIGHT)


settings = Settings()
