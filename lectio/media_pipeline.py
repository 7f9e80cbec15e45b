import os
import mimetypes
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from tempfile import NamedTemporaryFile
from typing import Optional

from lectio.background import run_sync
from lectio.settings.config import settings


class AssetStoreError(RuntimeError):
    pass


# ---- Strategy for bucketed paths ----
class LessonAudioStrategy:
    """
    Places narration under:
      <prefix>/<lesson_key>/page-<index>.mp3
    lesson_key is the lesson's share slug, known before the lesson row exists.
    """
    def __init__(self, prefix: Optional[str] = None):
        self.prefix = (prefix or settings.AUDIO_PREFIX).strip("/")

    def lesson_dir(self, lesson_key: str) -> PurePosixPath:
        return PurePosixPath(self.prefix) / str(lesson_key)

    def page_audio_path(self, lesson_key: str, page_index: int) -> str:
        return str(self.lesson_dir(lesson_key) / f"page-{page_index}.mp3")


# ---- Stored asset payload ----
@dataclass
class StoredAsset:
    path: str
    url: str
    size_bytes: int
    mime_type: str


# ---- Store ----
class LocalAssetStore:
    """Filesystem store served by the app's /static mount. put() overwrites in place."""

    def __init__(self, root: Optional[Path] = None, base_url: Optional[str] = None):
        self.root = Path(root or settings.ASSET_ROOT)
        self.base_url = (base_url if base_url is not None else settings.ASSET_BASE_URL).rstrip("/")

    def _abspath(self, rel: str) -> Path:
        rel_path = PurePosixPath(rel)
        if rel_path.is_absolute() or ".." in rel_path.parts:
            raise AssetStoreError(f"Refusing to write outside the asset root: {rel}")
        return self.root.joinpath(*rel_path.parts)

    def public_url(self, rel: str) -> str:
        return f"{self.base_url}/{str(PurePosixPath(rel)).lstrip('/')}"

    def _write(self, dst: Path, data: bytes) -> None:
        dst.parent.mkdir(parents=True, exist_ok=True)
        # write-then-rename so readers never see a half-written file
        tmp = NamedTemporaryFile(dir=dst.parent, prefix=".tmp-", delete=False)
        try:
            with tmp:
                tmp.write(data)
            os.replace(tmp.name, dst)
        except OSError:
            os.unlink(tmp.name)
            raise

    async def put(self, path: str, data: bytes) -> StoredAsset:
        dst = self._abspath(path)
        try:
            await run_sync(self._write, dst, data)
        except OSError as e:
            raise AssetStoreError(f"Failed to store asset {path}: {e}") from e
        mime = mimetypes.guess_type(dst.name)[0] or "application/octet-stream"
        return StoredAsset(path=path, url=self.public_url(path), size_bytes=len(data), mime_type=mime)

    def exists(self, path: str) -> bool:
        return self._abspath(path).exists()


__all__ = ["AssetStoreError", "LessonAudioStrategy", "StoredAsset", "LocalAssetStore"]
