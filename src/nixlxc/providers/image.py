"""Image provider for the local NixOS image cache."""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Optional

import httpx

from nixlxc.exceptions import DownloadFailed, PlacementFailed
from nixlxc.models.image import ImageReference
from nixlxc.providers.base import BaseProvider, ProviderStatus


logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


class ImageProvider(BaseProvider):
    """Ensures a NixOS LXC image for a given release is available locally."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        """Initialize image provider."""
        self.cache_dir: Optional[Path] = None
        self.platform_dir: Optional[Path] = None
        self.template_storage = "local"
        self.url_template = ""
        self.filename_template = ""
        self.timeout = 600.0
        self._transport = transport

    async def initialize(self, config, registry=None):
        """Initialize provider with configuration."""
        self.cache_dir = Path(config.paths.image_cache_dir)
        self.platform_dir = Path(config.paths.platform_template_dir)
        self.template_storage = config.paths.template_storage
        self.url_template = config.image.url_template
        self.filename_template = config.image.filename_template
        self.timeout = config.image.timeout

    def filename(self, version: str) -> str:
        return self.filename_template.format(version=version)

    def cache_path(self, version: str) -> Path:
        """Canonical cache location for a release."""
        return self.cache_dir / self.filename(version)

    def platform_path(self, version: str) -> Path:
        return self.platform_dir / self.filename(version)

    def source_url(self, version: str) -> str:
        return self.url_template.format(version=version)

    def locator(self, version: str) -> str:
        """Platform locator for the image, e.g. ``local:vztmpl/<file>``."""
        return f"{self.template_storage}:vztmpl/{self.filename(version)}"

    async def status(self, version: str) -> ProviderStatus:
        """Check whether the image is cached and placed."""
        cached = await asyncio.to_thread(self.cache_path(version).is_file)
        placed = await asyncio.to_thread(self.platform_path(version).is_file)
        if cached and placed:
            return ProviderStatus.PRESENT
        return ProviderStatus.ABSENT

    async def ensure_image(self, version: str) -> ImageReference:
        """Return a reference to the image, downloading it when absent.

        A warm cache costs only presence checks.
        """
        cache_path = self.cache_path(version)

        if await asyncio.to_thread(cache_path.is_file):
            logger.info(f"NixOS image already exists: {cache_path}")
        else:
            await self._download(version, cache_path)

        placed_path = await self._place(version, cache_path)

        return ImageReference(
            version=version,
            path=str(placed_path),
            locator=self.locator(version),
            exists=True,
        )

    async def _download(self, version: str, cache_path: Path) -> None:
        """Stream the image into the cache, exposing it only once complete."""
        url = self.source_url(version)
        partial_path = cache_path.with_name(cache_path.name + ".part")
        logger.info(f"Downloading NixOS image from {url}")

        try:
            await asyncio.to_thread(lambda: cache_path.parent.mkdir(parents=True, exist_ok=True))
            async with httpx.AsyncClient(
                transport=self._transport,
                follow_redirects=True,
                timeout=self.timeout,
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    handle = await asyncio.to_thread(open, partial_path, "wb")
                    try:
                        async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                            await asyncio.to_thread(handle.write, chunk)
                    finally:
                        handle.close()

            await asyncio.to_thread(os.replace, partial_path, cache_path)

        except (httpx.HTTPError, OSError) as e:
            logger.error(f"Failed to download NixOS image {version}: {e}")
            raise DownloadFailed(version, e) from e
        finally:
            if partial_path.exists():
                partial_path.unlink()

        logger.info(f"Image {cache_path.name} downloaded successfully")

    async def _place(self, version: str, cache_path: Path) -> Path:
        """Make the cached artifact visible where the platform expects it."""
        target = self.platform_path(version)
        if target == cache_path or await asyncio.to_thread(target.is_file):
            return target

        logger.info(f"Copying image to platform template directory {target.parent}")
        partial_target = target.with_name(target.name + ".part")
        try:
            await asyncio.to_thread(lambda: target.parent.mkdir(parents=True, exist_ok=True))
            await asyncio.to_thread(shutil.copyfile, cache_path, partial_target)
            await asyncio.to_thread(os.replace, partial_target, target)
        except OSError as e:
            logger.error(f"Failed to place image at {target}: {e}")
            raise PlacementFailed(str(target), e) from e
        finally:
            if partial_target.exists():
                partial_target.unlink()

        return target
