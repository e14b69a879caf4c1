"""
File-system comic storage.

Layout under the configured base path:

    comics/<id>/comic.json   full comic record
    metadata/<id>.json       lightweight index entry used for listing/statistics
    images/<file>.png        panel images (shared cache, see PanelImageRenderer)

Writes go through a temp file + os.replace so readers never see a partial
record, and are serialized per comic id. Blocking file I/O runs in worker
threads via asyncio.to_thread.
"""

import asyncio
import io
import json
import logging
import os
import re
import shutil
import tempfile
import weakref
import zipfile
from collections import Counter
from datetime import timedelta
from typing import Optional, Union

from src.core.config import StorageConfig
from src.core.errors import ComicNotFoundError, StorageFailure
from src.core.models import (
    ComicMetadata,
    ComicStatistics,
    ExportFormat,
    MultiPanelComic,
    utc_now,
)
from src.core.pdf_generator import ComicPDFGenerator

logger = logging.getLogger(__name__)

_VALID_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
TOP_CONCEPTS_LIMIT = 10


def _write_json_atomic(path: str, data: dict) -> int:
    """Write JSON via temp file + rename. Returns the number of bytes written."""
    payload = json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8")
    directory = os.path.dirname(path)
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    return len(payload)


def _read_json(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def coerce_export_format(value: Union[ExportFormat, str]) -> ExportFormat:
    """Parse an export format. Unknown formats are a caller error (ValueError)."""
    if isinstance(value, ExportFormat):
        return value
    try:
        return ExportFormat(str(value).strip().lower())
    except ValueError:
        supported = ", ".join(f.value for f in ExportFormat)
        raise ValueError(f"Unsupported export format '{value}'. Supported: {supported}") from None


class ComicStorage:
    """Keyed comic storage with a separate metadata index."""

    def __init__(self, config: Optional[StorageConfig] = None):
        self.config = config or StorageConfig()
        self.base_path = self.config.base_path
        self.comics_dir = os.path.join(self.base_path, "comics")
        self.metadata_dir = os.path.join(self.base_path, "metadata")
        self.images_dir = self.config.images_dir
        # A lock lives while a writer holds or awaits it
        self._locks = weakref.WeakValueDictionary()

    def _lock_for(self, comic_id: str) -> asyncio.Lock:
        lock = self._locks.get(comic_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[comic_id] = lock
        return lock

    @staticmethod
    def is_valid_id(comic_id: str) -> bool:
        return bool(comic_id) and bool(_VALID_ID.match(comic_id))

    def _comic_path(self, comic_id: str) -> str:
        return os.path.join(self.comics_dir, comic_id, "comic.json")

    def _metadata_path(self, comic_id: str) -> str:
        return os.path.join(self.metadata_dir, f"{comic_id}.json")

    def _images_size(self, comic: MultiPanelComic) -> int:
        total = 0
        for panel in comic.panels:
            path = os.path.join(self.images_dir, panel.image_file)
            if os.path.exists(path):
                total += os.stat(path).st_size
        return total

    @staticmethod
    def check_persistable(comic: MultiPanelComic) -> None:
        """Raise ValueError if the comic breaks the persistence invariants."""
        if len(comic.panels) != comic.options.panel_count:
            raise ValueError(
                f"Comic {comic.id} has {len(comic.panels)} panels, expected {comic.options.panel_count}"
            )
        for panel in comic.panels:
            if not panel.content.has_content():
                raise ValueError(f"Comic {comic.id} panel {panel.order} has no content")

    # -------------------------------------------------------------------------
    # Save / load / delete
    # -------------------------------------------------------------------------

    def _write_comic(self, comic: MultiPanelComic) -> None:
        record_size = _write_json_atomic(self._comic_path(comic.id), comic.to_dict())
        metadata = ComicMetadata.from_comic(comic, file_size=record_size + self._images_size(comic))
        _write_json_atomic(self._metadata_path(comic.id), metadata.to_dict())

    async def save_comic(self, comic: MultiPanelComic) -> str:
        """Persist a comic. Re-saving the same id overwrites it (last writer wins)."""
        if not self.is_valid_id(comic.id):
            raise ValueError(f"Invalid comic id: {comic.id!r}")
        self.check_persistable(comic)

        async with self._lock_for(comic.id):
            try:
                await asyncio.to_thread(self._write_comic, comic)
            except OSError as e:
                logger.error(f"Failed to save comic {comic.id}: {e}")
                raise StorageFailure(f"保存漫画失败: {e}") from e

        logger.info(f"Saved comic {comic.id} ({len(comic.panels)} panels)")
        return comic.id

    def _read_comic(self, comic_id: str) -> Optional[MultiPanelComic]:
        try:
            data = _read_json(self._comic_path(comic_id))
        except FileNotFoundError:
            return None
        return MultiPanelComic.from_dict(data)

    async def load_comic(self, comic_id: str) -> Optional[MultiPanelComic]:
        """Load a comic, or None when no comic has this id."""
        if not self.is_valid_id(comic_id):
            return None
        try:
            return await asyncio.to_thread(self._read_comic, comic_id)
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            logger.error(f"Comic {comic_id} record is corrupt: {e}")
            raise StorageFailure(f"漫画数据已损坏: {comic_id}") from e
        except OSError as e:
            raise StorageFailure(f"读取漫画失败: {e}") from e

    def _remove_comic(self, comic_id: str) -> bool:
        existed = False
        comic_dir = os.path.join(self.comics_dir, comic_id)
        if os.path.isdir(comic_dir):
            shutil.rmtree(comic_dir)
            existed = True
        metadata_path = self._metadata_path(comic_id)
        if os.path.exists(metadata_path):
            os.remove(metadata_path)
            existed = True
        return existed

    async def delete_comic(self, comic_id: str) -> bool:
        """Delete a comic and its index entry. Returns False if it did not exist.

        Panel images are kept: they are content-addressed and may be shared.
        """
        if not self.is_valid_id(comic_id):
            return False
        async with self._lock_for(comic_id):
            try:
                deleted = await asyncio.to_thread(self._remove_comic, comic_id)
            except OSError as e:
                raise StorageFailure(f"删除漫画失败: {e}") from e
        if deleted:
            logger.info(f"Deleted comic {comic_id}")
        return deleted

    # -------------------------------------------------------------------------
    # Listing / statistics (metadata index only)
    # -------------------------------------------------------------------------

    def _read_all_metadata(self) -> list[ComicMetadata]:
        if not os.path.isdir(self.metadata_dir):
            return []
        entries = []
        for name in os.listdir(self.metadata_dir):
            if not name.endswith(".json"):
                continue
            path = os.path.join(self.metadata_dir, name)
            try:
                entries.append(ComicMetadata.from_dict(_read_json(path)))
            except FileNotFoundError:
                continue  # deleted while listing
            except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping corrupt metadata entry {name}: {e}")
        return entries

    async def list_comics(self) -> list[ComicMetadata]:
        """All stored comics, newest first."""
        try:
            entries = await asyncio.to_thread(self._read_all_metadata)
        except OSError as e:
            raise StorageFailure(f"读取漫画列表失败: {e}") from e
        return sorted(entries, key=lambda m: m.created_at, reverse=True)

    async def get_statistics(self) -> ComicStatistics:
        entries = await self.list_comics()
        now = utc_now()
        week_ago = now - timedelta(days=7)
        month_ago = now - timedelta(days=30)

        by_age = Counter(m.age_group for m in entries)
        by_style = Counter(m.style for m in entries)
        concepts = Counter(m.math_concept for m in entries if m.math_concept)

        return ComicStatistics(
            total_comics=len(entries),
            comics_this_week=sum(1 for m in entries if m.created_at >= week_ago),
            comics_this_month=sum(1 for m in entries if m.created_at >= month_ago),
            total_panels=sum(m.panel_count for m in entries),
            comics_by_age_group=dict(by_age),
            comics_by_style=dict(by_style),
            total_storage_size=sum(m.file_size for m in entries),
            most_popular_concepts=[c for c, _ in concepts.most_common(TOP_CONCEPTS_LIMIT)],
        )

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    def _build_zip(self, comic: MultiPanelComic) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(
                "comic.json",
                json.dumps(comic.to_dict(), ensure_ascii=False, indent=2),
            )
            for panel in comic.panels:
                path = os.path.join(self.images_dir, panel.image_file)
                if os.path.exists(path):
                    archive.write(path, arcname=f"images/{panel.image_file}")
                else:
                    logger.warning(f"Comic {comic.id}: image {panel.image_file} missing from export")
        return buffer.getvalue()

    async def export_comic(self, comic_id: str, export_format: Union[ExportFormat, str]) -> bytes:
        """
        Export a stored comic.

        Raises:
            ValueError: unsupported format.
            ComicNotFoundError: no comic with this id.
            StorageFailure: the export could not be produced.
        """
        fmt = coerce_export_format(export_format)
        comic = await self.load_comic(comic_id)
        if comic is None:
            raise ComicNotFoundError(comic_id)

        try:
            if fmt == ExportFormat.JSON:
                return json.dumps(comic.to_dict(), ensure_ascii=False, indent=2).encode("utf-8")
            if fmt == ExportFormat.PDF:
                generator = ComicPDFGenerator(self.images_dir)
                return await asyncio.to_thread(generator.generate, comic)
            return await asyncio.to_thread(self._build_zip, comic)
        except OSError as e:
            logger.error(f"Export of comic {comic_id} as {fmt.value} failed: {e}")
            raise StorageFailure(f"导出漫画失败: {e}") from e
