import asyncio
import logging
import os
import uuid
from pathlib import Path

from .errors import ConversionError, StoreError
from .interfaces import ConverterGateway, Record, RecordGateway

logger = logging.getLogger(__name__)


class TifService:
    """Core domain service resolving records and serving converted images.

    This service is framework-agnostic. Store queries, filesystem probes and
    conversions go through gateways that block, so each one is offloaded to a
    thread while the event loop keeps serving other requests.
    """

    def __init__(
        self,
        records: RecordGateway,
        converter: ConverterGateway,
        *,
        cache_dir: str = ".cache",
    ) -> None:
        self._records = records
        self._converter = converter
        self._cache_dir = Path(cache_dir)
        self._inflight: dict[tuple[str, str], asyncio.Task[Path]] = {}

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def cache_path(self, record_id: str, type_: str) -> Path:
        return self._cache_dir / f"{record_id}.{type_}"

    async def find_record(self, record_id: str) -> Record | None:
        try:
            return await asyncio.to_thread(self._records.find_record, record_id)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"record lookup failed: {e}") from e

    async def original_path(self, record: Record) -> Path | None:
        """Return the record's source file, or None when it cannot be read."""
        path = Path(record.source_path)
        readable = await asyncio.to_thread(os.access, path, os.R_OK)
        return path if readable else None

    async def ensure_cached(self, record: Record, type_: str) -> Path:
        """Return the cache file for (record, type_), converting it on a miss.

        The file is keyed on the record's canonical id (lowercase hex as the
        store returns it), so requests that differ only in id case share one
        artifact. Concurrent misses for the same pair share one conversion.
        """
        path = self.cache_path(record.id, type_)
        if await asyncio.to_thread(os.access, path, os.R_OK):
            logger.debug("cache hit %s", path.name)
            return path

        key = (record.id, type_)
        task = self._inflight.get(key)
        if task is None:
            logger.info("cache miss %s", path.name)
            task = asyncio.create_task(self._populate(record, type_, path))
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._forget(key, t))
        else:
            logger.debug("joining conversion of %s", path.name)
        return await asyncio.shield(task)

    def _forget(self, key: tuple[str, str], task: asyncio.Task[Path]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # mark the exception retrieved when every waiter went away
        if not task.cancelled():
            task.exception()

    async def _populate(self, record: Record, type_: str, path: Path) -> Path:
        await asyncio.to_thread(self._convert_atomic, record.source_path, path, type_)
        logger.info("cached %s", path.name)
        return path

    def _convert_atomic(self, source_path: str, path: Path, type_: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            self._converter.convert(source_path, str(tmp_path), type_)
            os.replace(tmp_path, path)
        except Exception as e:
            tmp_path.unlink(missing_ok=True)
            if isinstance(e, ConversionError):
                raise
            raise ConversionError(f"failed to convert {source_path} to {type_}: {e}") from e
