# infrastructure/blob_storage.py
"""
Async filesystem primitive for image blobs.

Bytes cross this boundary base64-encoded, the same form inline images use,
so callers never hold decoded buffers longer than a single write.
"""

import base64
import os
from typing import List

import aiofiles
import aiofiles.os


class BlobFileSystem:
    """Directory-rooted blob storage. Paths are absolute once resolved."""

    def __init__(self, root_dir: str):
        self.root_dir = os.path.abspath(root_dir)

    def resolve(self, *parts: str) -> str:
        return os.path.join(self.root_dir, *parts)

    async def exists(self, path: str) -> bool:
        return await aiofiles.os.path.exists(path)

    async def make_directory(self, path: str) -> None:
        await aiofiles.os.makedirs(path, exist_ok=True)

    async def write_base64(self, path: str, data: str) -> int:
        """Decode base64 data and write it. Returns the number of bytes written.

        Raises binascii.Error on malformed data, before touching the disk.
        """
        raw = base64.b64decode(data, validate=True)
        async with aiofiles.open(path, "wb") as f:
            await f.write(raw)
        return len(raw)

    async def read_base64(self, path: str) -> str:
        async with aiofiles.open(path, "rb") as f:
            raw = await f.read()
        return base64.b64encode(raw).decode("ascii")

    async def delete(self, path: str) -> None:
        await aiofiles.os.remove(path)

    async def list_directory(self, path: str) -> List[str]:
        return sorted(await aiofiles.os.listdir(path))

