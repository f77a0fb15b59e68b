"""
File storage abstraction.

Provides a simple interface for storing and retrieving files.
Currently uses local filesystem, can be extended to S3 or other backends.
"""
import logging
import shutil
from pathlib import Path
from typing import Optional
import uuid

from settings import settings

logger = logging.getLogger(__name__)

OUTPUT_EXTENSIONS = {"png": ".png", "jpeg": ".jpg", "webp": ".webp"}
MEDIA_TYPES = {".png": "image/png", ".jpg": "image/jpeg", ".webp": "image/webp"}


class FileStorage:
    """
    Local file storage implementation.

    Files are organized as:
    - storage/templates/{template_id}{ext}  - Template images
    - storage/generations/{generation_id}.{png,jpg,webp}  - Final generation outputs
    - storage/generations/{generation_id}/subjects/  - Uploaded subject images
    - storage/generations/{generation_id}/intermediate/  - Masks, prompts and pass outputs
    """

    def __init__(self, media_root: Optional[str] = None):
        self.media_root = Path(media_root or settings.STORAGE_ROOT)
        self.media_root.mkdir(parents=True, exist_ok=True)

    def get_templates_dir(self) -> Path:
        path = self.media_root / "templates"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_generations_dir(self) -> Path:
        path = self.media_root / "generations"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_subjects_dir(self, generation_id: str) -> Path:
        path = self.get_generations_dir() / generation_id / "subjects"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_intermediate_dir(self, generation_id: str) -> Path:
        path = self.get_generations_dir() / generation_id / "intermediate"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _write(self, path: Path, data: bytes) -> str:
        path.write_bytes(data)
        return str(path.relative_to(self.media_root))

    def save_template_image(self, template_id: str, filename: str, data: bytes) -> str:
        """
        Save a template image.

        Returns:
            Relative path to the saved file
        """
        ext = Path(filename).suffix.lower() or ".png"
        return self._write(self.get_templates_dir() / f"{template_id}{ext}", data)

    def save_generation_image(self, generation_id: str, data: bytes, output_format: str = "png") -> str:
        """Save the final output of a generation; the extension follows the requested format."""
        ext = OUTPUT_EXTENSIONS.get(output_format, ".png")
        return self._write(self.get_generations_dir() / f"{generation_id}{ext}", data)

    def save_subject_image(self, generation_id: str, slot_id: str, data: bytes, filename: str = "subject.png") -> str:
        ext = Path(filename).suffix.lower() or ".png"
        return self._write(self.get_subjects_dir(generation_id) / f"{slot_id or uuid.uuid4()}{ext}", data)

    def save_intermediate_image(self, generation_id: str, step_name: str, data: bytes) -> str:
        """Save a mask or pass output for later inspection."""
        return self._write(self.get_intermediate_dir(generation_id) / f"{step_name}.png", data)

    def save_intermediate_text(self, generation_id: str, step_name: str, text: str) -> str:
        """Save a prompt (or other text) used by a pass."""
        return self._write(self.get_intermediate_dir(generation_id) / f"{step_name}.txt", text.encode("utf-8"))

    def list_intermediate(self, generation_id: str) -> list:
        """Names of the intermediate artifacts written so far, sorted."""
        path = self.get_generations_dir() / generation_id / "intermediate"
        if not path.exists():
            return []
        return sorted(p.name for p in path.iterdir())

    def read_bytes(self, relative_path: str) -> bytes:
        return self.get_absolute_path(relative_path).read_bytes()

    def get_absolute_path(self, relative_path: str) -> Path:
        """Convert a relative path to absolute."""
        return self.media_root / relative_path

    def file_exists(self, relative_path: str) -> bool:
        """Check if a file exists."""
        return (self.media_root / relative_path).exists()

    def media_type(self, relative_path: str) -> str:
        return MEDIA_TYPES.get(Path(relative_path).suffix.lower(), "application/octet-stream")

    def delete_file(self, relative_path: str) -> bool:
        """Delete a file. Returns True if deleted."""
        path = self.media_root / relative_path
        if path.exists():
            path.unlink()
            return True
        return False

    def delete_generation_files(self, generation_id: str) -> bool:
        """Delete all files for a generation (output, subjects, intermediates)."""
        deleted = False
        gen_dir = self.get_generations_dir() / generation_id
        if gen_dir.exists():
            shutil.rmtree(gen_dir)
            deleted = True
        for output in self.get_generations_dir().glob(f"{generation_id}.*"):
            output.unlink()
            deleted = True
        return deleted
