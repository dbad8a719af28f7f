from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable

from exiftool import ExifToolHelper
from exiftool.exceptions import ExifToolException

from .config import ScannerConfig
from .errors import ConfigurationError, MetadataUnreadable, MetadataWriteFailed
from .models import Description, MetadataState
from .utils import single_line

logger = logging.getLogger(__name__)

CONFIG_FILE = Path(__file__).with_name("exiftool_photoscan.config")

TAG_DESCRIPTION = "XMP-dc:Description"
TAG_MODEL = "XMP-photoscan:DescriptionModel"
TAG_DURATION = "XMP-photoscan:DescriptionDuration"
TAG_CREATED = "XMP-photoscan:DescriptionCreated"
TAG_INDEXED = "XMP-photoscan:IndexedVectorId"
TAG_PERSONS = "XMP-mwg-rs:RegionName"
TAG_LATITUDE = "Composite:GPSLatitude"
TAG_LONGITUDE = "Composite:GPSLongitude"
TAG_THUMBNAIL = "EXIF:ThumbnailImage"
TAG_EXIF_WIDTH = "EXIF:ExifImageWidth"
TAG_EXIF_HEIGHT = "EXIF:ExifImageHeight"

READ_TAGS = [
    TAG_DESCRIPTION,
    TAG_MODEL,
    TAG_DURATION,
    TAG_CREATED,
    TAG_INDEXED,
    TAG_PERSONS,
    TAG_LATITUDE,
    TAG_LONGITUDE,
    TAG_THUMBNAIL,
]


def _key(tag: str) -> str:
    """exiftool -G reports family-0 groups: XMP-dc:Description -> XMP:Description."""
    group, name = tag.split(":", 1)
    return f"{group.split('-', 1)[0]}:{name}"


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    text = str(value).strip()
    return [text] if text else []


class ExifToolMetadataStore:
    """Reads and writes scanner tags inside the image file via exiftool.

    Writes happen on a sibling copy that is verified and then renamed over the
    original, so a failed write never leaves the photo half-updated. Each worker
    thread keeps one exiftool process open until close().
    """

    def __init__(self, executable: str | None = None, config_file: Path = CONFIG_FILE):
        self.executable = executable
        self.config_file = config_file
        self._local = threading.local()
        self._helpers: list[ExifToolHelper] = []
        self._helpers_lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg: ScannerConfig) -> "ExifToolMetadataStore":
        return cls(executable=cfg.exiftool_path)

    def check_available(self) -> None:
        binary = self.executable or "exiftool"
        if shutil.which(binary) is None:
            raise ConfigurationError(f"exiftool executable not found: {binary}")

    def __enter__(self) -> "ExifToolMetadataStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        with self._helpers_lock:
            helpers, self._helpers = self._helpers, []
        for et in helpers:
            if et.running:
                et.terminate()

    def _exiftool(self) -> ExifToolHelper:
        et = getattr(self._local, "et", None)
        if et is not None and et.running:
            return et

        kwargs: dict[str, Any] = {"config_file": str(self.config_file)}
        if self.executable:
            kwargs["executable"] = self.executable
        et = ExifToolHelper(**kwargs)
        et.run()
        self._local.et = et
        with self._helpers_lock:
            self._helpers.append(et)
        logger.debug("Started exiftool for thread %s", threading.current_thread().name)
        return et

    def _read(self, path: Path, tags: list[str]) -> dict[str, Any]:
        try:
            rows = self._exiftool().get_tags([str(path)], tags=tags)
        except (ExifToolException, OSError, ValueError) as exc:
            raise MetadataUnreadable(f"Cannot read metadata: {exc}", path) from exc
        if not rows:
            raise MetadataUnreadable("exiftool returned no metadata", path)
        row = rows[0]
        if row.get("ExifTool:Error"):
            raise MetadataUnreadable(f"exiftool: {row['ExifTool:Error']}", path)
        return row

    def read_state(self, path: Path) -> MetadataState:
        row = self._read(path, READ_TAGS)

        description = None
        text = str(row.get(_key(TAG_DESCRIPTION)) or "").strip()
        if text:
            try:
                duration = float(row.get(_key(TAG_DURATION)) or 0.0)
            except (TypeError, ValueError):
                duration = 0.0
            description = Description(
                text=text,
                model=str(row.get(_key(TAG_MODEL)) or ""),
                duration_seconds=duration,
                created_at=str(row.get(_key(TAG_CREATED)) or ""),
            )

        location = None
        lat, lon = row.get(TAG_LATITUDE), row.get(TAG_LONGITUDE)
        if lat not in (None, "") and lon not in (None, ""):
            location = f"{lat},{lon}"

        return MetadataState(
            description=description,
            indexed_id=str(row.get(_key(TAG_INDEXED)) or "") or None,
            persons=_as_list(row.get(_key(TAG_PERSONS))),
            location=location,
            has_preview=bool(row.get(TAG_THUMBNAIL)),
        )

    def read_description(self, path: Path) -> Description | None:
        return self.read_state(path).description

    def has_preview(self, path: Path) -> bool:
        return self.read_state(path).has_preview

    def write_description(self, path: Path, description: Description) -> None:
        text = single_line(description.text)
        tags = {
            TAG_DESCRIPTION: text,
            TAG_MODEL: description.model,
            TAG_DURATION: f"{description.duration_seconds:.3f}",
            TAG_CREATED: description.created_at,
            # A new description invalidates any earlier index marker.
            TAG_INDEXED: "",
        }

        def apply(et: ExifToolHelper, target: Path) -> None:
            et.set_tags([str(target)], tags=tags, params=["-overwrite_original"])

        def verify(row: dict[str, Any]) -> bool:
            return str(row.get(_key(TAG_DESCRIPTION)) or "").strip() == text

        self._atomic_update(path, apply, [TAG_DESCRIPTION], verify)
        logger.debug("Stored description for %s", path)

    def mark_indexed(self, path: Path, vector_id: str) -> None:
        def apply(et: ExifToolHelper, target: Path) -> None:
            et.set_tags([str(target)], tags={TAG_INDEXED: vector_id}, params=["-overwrite_original"])

        def verify(row: dict[str, Any]) -> bool:
            return str(row.get(_key(TAG_INDEXED)) or "") == vector_id

        self._atomic_update(path, apply, [TAG_INDEXED], verify)

    def write_preview(self, path: Path, preview_jpeg: bytes, *, width: int, height: int) -> None:
        """Embed a preview and reset dimension tags to the image's real size."""
        fd, thumb_name = tempfile.mkstemp(prefix=".preview-", suffix=".jpg", dir=path.parent)
        thumb = Path(thumb_name)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(preview_jpeg)

            def apply(et: ExifToolHelper, target: Path) -> None:
                et.execute(
                    "-overwrite_original",
                    "-IFD1:ImageWidth=",
                    "-IFD1:ImageHeight=",
                    "-IFD0:ImageWidth=",
                    "-IFD0:ImageHeight=",
                    f"-ExifImageWidth#={width}",
                    f"-ExifImageHeight#={height}",
                    f"-ThumbnailImage<={thumb}",
                    str(target),
                )

            def verify(row: dict[str, Any]) -> bool:
                return (
                    bool(row.get(TAG_THUMBNAIL))
                    and str(row.get(TAG_EXIF_WIDTH)) == str(width)
                    and str(row.get(TAG_EXIF_HEIGHT)) == str(height)
                )

            self._atomic_update(path, apply, [TAG_THUMBNAIL, TAG_EXIF_WIDTH, TAG_EXIF_HEIGHT], verify)
        finally:
            thumb.unlink(missing_ok=True)

    def read_dimensions(self, path: Path) -> tuple[int | None, int | None]:
        row = self._read(path, [TAG_EXIF_WIDTH, TAG_EXIF_HEIGHT])
        width, height = row.get(TAG_EXIF_WIDTH), row.get(TAG_EXIF_HEIGHT)
        return (
            int(width) if width not in (None, "") else None,
            int(height) if height not in (None, "") else None,
        )

    def _atomic_update(
        self,
        path: Path,
        apply: Callable[[ExifToolHelper, Path], None],
        verify_tags: list[str],
        verify: Callable[[dict[str, Any]], bool],
    ) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}-", suffix=path.suffix, dir=path.parent)
        os.close(fd)
        tmp = Path(tmp_name)
        try:
            shutil.copy2(path, tmp)
            apply(self._exiftool(), tmp)
            row = self._read(tmp, verify_tags)
            if not verify(row):
                raise MetadataWriteFailed("written tags did not read back as expected", path)
            os.replace(tmp, path)
        except MetadataWriteFailed:
            raise
        except (ExifToolException, MetadataUnreadable, OSError, ValueError) as exc:
            raise MetadataWriteFailed(f"Cannot write metadata: {exc}", path) from exc
        finally:
            tmp.unlink(missing_ok=True)
