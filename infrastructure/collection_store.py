# infrastructure/collection_store.py
"""
Durable save/load of a JSON collection on top of a key-value store.

Save protocol:
    1. sanitize every item (image externalization), per item, never fatal
    2. serialize the whole collection to one document
    3. write the document to the staging key (write-ahead record)
    4. small document -> primary key
       large document -> metadata key + <base>_chunk_<i> keys, primary removed
    5. commit: remove the staging key
    6. remove chunk/metadata keys the new layout no longer uses

A failure before the commit raises StorageWriteError and removes the staging
key (best effort). A cancelled save removes it too before propagating.
The staging record is never read back: a leftover one only means a save
never committed.

Load protocol: primary key, else chunks listed by the metadata key (all
present and matching the checksum), else an empty collection. Loading
never raises.
"""

import asyncio
import hashlib
import json
import time
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

from infrastructure.chunking import encoded_length, join_chunks, split_string_by_bytes
from infrastructure.errors import StorageWriteError
from infrastructure.key_value_store import KeyValueStore
from infrastructure.logging_service import get_module_logger
from infrastructure.persistence import PersistenceService

logger = get_module_logger("CollectionStore", "collection_store.log")

T = TypeVar("T")

CHUNK_FORMAT_VERSION = "2.0"
DEFAULT_CHUNK_BYTES = 500 * 1024


def document_checksum(document: str) -> str:
    return hashlib.sha1(document.encode("utf-8", errors="surrogatepass")).hexdigest()


class DurableCollectionStore(Generic[T]):
    """Persists a list of items under one base key, chunking when needed."""

    def __init__(self, store: KeyValueStore, base_key: str,
                 to_dict: Callable[[T], Dict[str, Any]],
                 from_dict: Callable[[Dict[str, Any]], T],
                 sanitizer: Optional[Callable[[T], Awaitable[T]]] = None,
                 chunk_threshold_bytes: int = DEFAULT_CHUNK_BYTES,
                 chunk_size_bytes: int = DEFAULT_CHUNK_BYTES):
        if chunk_threshold_bytes <= 0 or chunk_size_bytes <= 0:
            raise ValueError("Chunk sizes must be positive")
        self.store = store
        self.base_key = base_key
        self.to_dict = to_dict
        self.from_dict = from_dict
        self.sanitizer = sanitizer
        self.chunk_threshold_bytes = chunk_threshold_bytes
        self.chunk_size_bytes = chunk_size_bytes

        self.last_document_bytes = 0
        self.last_chunk_count = 0

    # ------------------------------------------------------------------ #
    #  Keys
    # ------------------------------------------------------------------ #

    @property
    def staging_key(self) -> str:
        return f"{self.base_key}_TMP"

    @property
    def meta_key(self) -> str:
        return f"{self.base_key}_META"

    @property
    def chunk_prefix(self) -> str:
        return f"{self.base_key}_chunk_"

    def chunk_key(self, index: int) -> str:
        return f"{self.chunk_prefix}{index}"

    def _chunk_index(self, key: str) -> Optional[int]:
        if not key.startswith(self.chunk_prefix):
            return None
        suffix = key[len(self.chunk_prefix):]
        return int(suffix) if suffix.isdigit() else None

    async def keys(self) -> List[str]:
        """Every key currently held by this collection."""
        all_keys = await self.store.get_all_keys()
        own = {self.base_key, self.staging_key, self.meta_key}
        return [k for k in all_keys if k in own or self._chunk_index(k) is not None]

    # ------------------------------------------------------------------ #
    #  Save
    # ------------------------------------------------------------------ #

    async def save(self, items: List[T]) -> List[T]:
        """Durably write items. Returns the sanitized items actually stored."""
        try:
            sanitized = await self._sanitize(items)
            document = PersistenceService.dumps([self.to_dict(item) for item in sanitized])
            size = encoded_length(document)
            logger.info(f"[{self.base_key}] saving {len(sanitized)} items ({size / 1024:.2f} KB)")

            # Write-ahead record
            await self.store.set(self.staging_key, document)

            if size < self.chunk_threshold_bytes:
                await self.store.set(self.base_key, document)
                chunk_count = 0
                logger.debug(f"[{self.base_key}] direct write done")
            else:
                chunk_count = await self._write_chunks(document)

            # Commit
            await self.store.remove(self.staging_key)
        except asyncio.CancelledError:
            logger.warning(f"[{self.base_key}] save cancelled before commit")
            await self._discard_staging()
            raise
        except Exception as e:
            logger.error(f"[{self.base_key}] save failed: {e}")
            await self._discard_staging()
            raise StorageWriteError(self.base_key, str(e)) from e

        self.last_document_bytes = size
        self.last_chunk_count = chunk_count
        await self._cleanup_stale_chunks(chunk_count)
        return sanitized

    async def _sanitize(self, items: List[T]) -> List[T]:
        if self.sanitizer is None:
            return list(items)

        sanitized = []
        for item in items:
            try:
                sanitized.append(await self.sanitizer(item))
            except Exception as e:
                logger.warning(f"[{self.base_key}] sanitize failed, item kept as is: {e}")
                sanitized.append(item)
        return sanitized

    async def _write_chunks(self, document: str) -> int:
        chunks = split_string_by_bytes(document, self.chunk_size_bytes)
        logger.info(f"[{self.base_key}] splitting into {len(chunks)} UTF-8 chunks")

        metadata = {
            "totalChunks": len(chunks),
            "timestamp": int(time.time() * 1000),
            "version": CHUNK_FORMAT_VERSION,
            "checksum": document_checksum(document),
        }
        await self.store.set(self.meta_key, json.dumps(metadata))

        for i, chunk in enumerate(chunks):
            await self.store.set(self.chunk_key(i), chunk)
            logger.detail(f"[{self.base_key}] chunk {i} written ({encoded_length(chunk)} bytes)")

        # Absence of the primary key means "read the chunks"
        await self.store.remove(self.base_key)
        return len(chunks)

    async def _discard_staging(self):
        try:
            await self.store.remove(self.staging_key)
        except Exception as e:
            logger.warning(f"[{self.base_key}] could not remove staging record: {e}")

    async def _cleanup_stale_chunks(self, chunk_count: int):
        """Remove chunk keys beyond chunk_count, and the metadata when unchunked.

        Runs after the commit, so failures are logged and not raised.
        """
        try:
            all_keys = await self.store.get_all_keys()
            stale = [k for k in all_keys
                     if (self._chunk_index(k) is not None and self._chunk_index(k) >= chunk_count)]
            if chunk_count == 0 and self.meta_key in all_keys:
                stale.append(self.meta_key)
            if stale:
                await self.store.multi_remove(stale)
                logger.info(f"[{self.base_key}] {len(stale)} stale chunk keys removed")
        except Exception as e:
            logger.warning(f"[{self.base_key}] stale chunk cleanup failed: {e}")

    # ------------------------------------------------------------------ #
    #  Load
    # ------------------------------------------------------------------ #

    async def load(self) -> List[T]:
        """Load the collection. Never raises; unreadable data yields []."""
        records = await self._load_records()
        items = []
        for record in records:
            if not isinstance(record, dict):
                continue
            try:
                items.append(self.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[{self.base_key}] malformed record skipped: {e}")
        logger.info(f"[{self.base_key}] {len(items)} items loaded")
        return items

    async def _load_records(self) -> List[Any]:
        records = self._parse(await self._safe_get(self.base_key), "primary key")
        if records is not None:
            logger.debug(f"[{self.base_key}] loaded from primary key")
            return records

        records = self._parse(await self._load_from_chunks(), "chunks")
        if records is not None:
            logger.debug(f"[{self.base_key}] loaded from chunks")
            return records

        return []

    async def _safe_get(self, key: str) -> Optional[str]:
        try:
            return await self.store.get(key)
        except Exception as e:
            logger.warning(f"Error reading {key}: {e}")
            return None

    def _parse(self, document: Optional[str], source: str) -> Optional[List[Any]]:
        if document is None:
            return None
        try:
            data = json.loads(document)
        except ValueError as e:
            logger.warning(f"[{self.base_key}] invalid JSON in {source}: {e}")
            return None
        if not isinstance(data, list):
            logger.warning(f"[{self.base_key}] {source} does not hold a list")
            return None
        return data

    async def _load_from_chunks(self) -> Optional[str]:
        """Reassemble the chunked document, or None if any part is missing."""
        raw_metadata = await self._safe_get(self.meta_key)
        if raw_metadata is None:
            return None

        try:
            metadata = json.loads(raw_metadata)
            total = int(metadata["totalChunks"])
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"[{self.base_key}] invalid chunk metadata: {e}")
            return None

        logger.debug(f"[{self.base_key}] loading {total} chunks")
        chunks = []
        for i in range(total):
            chunk = await self._safe_get(self.chunk_key(i))
            if chunk is None:
                # Jamais de données partielles
                logger.error(f"[{self.base_key}] chunk {i} missing, chunked load aborted")
                return None
            chunks.append(chunk)

        document = join_chunks(chunks)
        expected = metadata.get("checksum")
        if expected and document_checksum(document) != expected:
            logger.error(f"[{self.base_key}] chunk checksum mismatch, chunked load aborted")
            return None
        return document

    # ------------------------------------------------------------------ #
    #  Clear
    # ------------------------------------------------------------------ #

    async def clear(self):
        """Remove every key of the collection."""
        keys = await self.keys()
        if keys:
            await self.store.multi_remove(keys)
        self.last_document_bytes = 0
        self.last_chunk_count = 0
