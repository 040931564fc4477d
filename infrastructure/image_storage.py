# infrastructure/image_storage.py
"""
Image storage for notes.

On mobile, inline base64 images (data:image/...;base64,...) are written to
individual files and replaced by file:// references so the notes document
stays small. On web, images stay inline and every operation is a no-op.
"""

import binascii
import os
import time
import uuid
from typing import Dict, Iterable, List, Optional

from infrastructure.blob_storage import BlobFileSystem
from infrastructure.configuration import Platform
from infrastructure.logging_service import get_module_logger

logger = get_module_logger("ImageStorage", "image_storage.log")

INLINE_PREFIX = "data:image/"
EXTERNAL_PREFIX = "file://"

_EXTENSION_BY_MIME = {
    "jpeg": "jpg",
    "jpg": "jpg",
    "png": "png",
    "webp": "webp",
    "gif": "gif",
}

_MIME_BY_EXTENSION = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
}


def is_inline(image: str) -> bool:
    return image.startswith(INLINE_PREFIX)


def is_external(image: str) -> bool:
    return image.startswith(EXTERNAL_PREFIX)


def image_extension(inline_image: str) -> str:
    """File extension from the MIME type of an inline image. Defaults to jpg."""
    subtype = inline_image[len(INLINE_PREFIX):].split(";", 1)[0].split(",", 1)[0].lower()
    return _EXTENSION_BY_MIME.get(subtype, "jpg")


def mime_type(extension: str) -> str:
    return _MIME_BY_EXTENSION.get(extension.lower(), "image/jpeg")


def reference_to_path(reference: str) -> str:
    return reference[len(EXTERNAL_PREFIX):]


def path_to_reference(path: str) -> str:
    return f"{EXTERNAL_PREFIX}{path}"


class ImageStore:
    """Externalizes note images to blobs and back."""

    def __init__(self, file_system: Optional[BlobFileSystem], platform: Platform = Platform.MOBILE,
                 images_dir_name: str = "notes"):
        self.file_system = file_system
        self.platform = platform
        self.images_dir = file_system.resolve(images_dir_name) if file_system else None

    @property
    def externalization_enabled(self) -> bool:
        return self.platform == Platform.MOBILE and self.file_system is not None

    def _new_blob_name(self, index: int, extension: str) -> str:
        image_id = f"img_{int(time.time() * 1000)}_{index}_{uuid.uuid4().hex[:9]}"
        return f"{image_id}.{extension}"

    async def _ensure_directory(self):
        try:
            if not await self.file_system.exists(self.images_dir):
                await self.file_system.make_directory(self.images_dir)
                logger.info(f"Images directory created: {self.images_dir}")
        except OSError as e:
            # Les écritures individuelles échoueront et seront ignorées
            logger.error(f"Error creating images directory {self.images_dir}: {e}")

    async def persist_images(self, images: Optional[List[str]],
                             keep_inline_on_failure: bool = False) -> Optional[List[str]]:
        """
        Write inline images to blobs and return the list of references.

        External references pass through unchanged. An image that cannot be
        written is dropped (or kept inline with keep_inline_on_failure), the
        rest of the batch continues. Returns None when nothing is left.
        """
        if not images:
            return None

        if not self.externalization_enabled:
            return list(images)

        logger.info(f"Persisting {len(images)} images...")
        await self._ensure_directory()

        persisted: List[str] = []
        for i, image in enumerate(images):
            if not isinstance(image, str):
                logger.warning(f"Image {i} is not a string, ignored")
                continue

            if is_external(image):
                persisted.append(image)
                continue

            if not is_inline(image):
                logger.warning(f"Image {i} has unknown format, ignored: {image[:50]}")
                continue

            _, _, base64_data = image.partition(",")
            if not base64_data:
                logger.warning(f"Image {i} invalid (no base64 data), ignored")
                continue

            file_name = self._new_blob_name(i, image_extension(image))
            file_path = os.path.join(self.images_dir, file_name)
            try:
                size = await self.file_system.write_base64(file_path, base64_data)
            except (OSError, binascii.Error, ValueError) as e:
                logger.error(f"Error persisting image {i}: {e}")
                await self._discard_partial(file_path)
                if keep_inline_on_failure:
                    persisted.append(image)
                continue

            persisted.append(path_to_reference(file_path))
            logger.detail(f"Image {i} persisted: {file_name} ({size} bytes)")

        logger.info(f"Persistence done: {len(persisted)}/{len(images)} images saved")
        return persisted or None

    async def _discard_partial(self, file_path: str):
        try:
            if await self.file_system.exists(file_path):
                await self.file_system.delete(file_path)
        except OSError as e:
            logger.warning(f"Could not discard partial image file {file_path}: {e}")

    async def remove_images(self, references: Optional[Iterable[str]]) -> int:
        """Best-effort delete of referenced blobs. Returns the number removed."""
        if not references or not self.externalization_enabled:
            return 0

        references = [r for r in references if isinstance(r, str) and is_external(r)]
        if not references:
            return 0

        logger.info(f"Removing {len(references)} image files...")
        removed = 0
        for reference in references:
            file_path = reference_to_path(reference)
            try:
                if await self.file_system.exists(file_path):
                    await self.file_system.delete(file_path)
                    removed += 1
                    logger.debug(f"Image file removed: {file_path}")
            except OSError as e:
                logger.warning(f"Error removing image file {reference}: {e}")

        return removed

    async def load_image_for_display(self, reference: str) -> str:
        """Turn a file:// reference back into an inline data URI."""
        if not self.externalization_enabled or not is_external(reference):
            return reference

        file_path = reference_to_path(reference)
        data = await self.file_system.read_base64(file_path)
        extension = os.path.splitext(file_path)[1].lstrip(".") or "jpg"
        return f"data:{mime_type(extension)};base64,{data}"

    async def load_images_for_display(self, references: Optional[List[str]]) -> List[str]:
        """Load every image of a note, skipping those that cannot be read."""
        if not references:
            return []

        loaded = []
        for reference in references:
            try:
                loaded.append(await self.load_image_for_display(reference))
            except OSError as e:
                logger.error(f"Error loading image {reference}: {e}")
        return loaded

    async def cleanup_orphan_images(self, referenced_images: Iterable[str]) -> int:
        """
        Delete every blob of the images directory that no image references.

        Matching is done on file names. Returns the number of files deleted.
        """
        if not self.externalization_enabled:
            return 0

        try:
            if not await self.file_system.exists(self.images_dir):
                return 0
            files = await self.file_system.list_directory(self.images_dir)
        except OSError as e:
            logger.error(f"Error listing images directory: {e}")
            return 0

        referenced_files = {
            os.path.basename(reference_to_path(image))
            for image in referenced_images
            if isinstance(image, str) and is_external(image)
        }

        cleaned = 0
        for file_name in files:
            if file_name in referenced_files:
                continue
            try:
                await self.file_system.delete(os.path.join(self.images_dir, file_name))
                cleaned += 1
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Error deleting orphan image file {file_name}: {e}")

        if cleaned > 0:
            logger.info(f"{cleaned} orphan image files deleted")
        return cleaned

    async def storage_report(self, images: Iterable[str]) -> Dict[str, int]:
        """Counts of inline and external images plus blobs on disk."""
        report = {
            "total_images": 0,
            "inline_images": 0,
            "external_images": 0,
            "inline_bytes_estimate": 0,
            "files_on_disk": 0,
        }
        for image in images:
            report["total_images"] += 1
            if is_inline(image):
                report["inline_images"] += 1
                report["inline_bytes_estimate"] += round(len(image) * 3 / 4)
            elif is_external(image):
                report["external_images"] += 1

        if self.externalization_enabled:
            try:
                if await self.file_system.exists(self.images_dir):
                    report["files_on_disk"] = len(await self.file_system.list_directory(self.images_dir))
            except OSError as e:
                logger.warning(f"Error reading images directory: {e}")

        return report
