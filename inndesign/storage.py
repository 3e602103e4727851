"""Persist generated images to Supabase Storage over its REST API."""

import asyncio
import logging
import time
from collections.abc import Sequence
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from inndesign.config import DEFAULT_STORAGE_BUCKET
from inndesign.errors import StorageError

logger = logging.getLogger("inndesign.storage")


class DesignStorage:
    def __init__(
        self,
        supabase_url: str,
        service_key: str,
        bucket: str = DEFAULT_STORAGE_BUCKET,
        timeout: float = 60.0,
    ) -> None:
        self.supabase_url = supabase_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.service_key}", "apikey": self.service_key}

    def _object_url(self, path: str = "") -> str:
        base = f"{self.supabase_url}/storage/v1/object/{self.bucket}"
        return f"{base}/{path}" if path else base

    def public_url(self, path: str) -> str:
        return f"{self.supabase_url}/storage/v1/object/public/{self.bucket}/{path}"

    @staticmethod
    def design_image_path(design_id: str, index: int, is_regeneration: bool = False) -> str:
        prefix = "regenerated" if is_regeneration else "output"
        timestamp = int(time.time() * 1000)
        return f"designs/{design_id}/{prefix}_{index + 1}_{timestamp}.jpg"

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.status_code < 400:
            return
        try:
            payload = response.json()
        except ValueError:
            payload = None
        message = response.text
        if isinstance(payload, dict):
            message = payload.get("message") or payload.get("error") or message
        raise StorageError(f"{action} failed ({response.status_code}): {message}")

    async def upload_design_image(
        self,
        design_id: str,
        image_url: str,
        index: int,
        is_regeneration: bool = False,
    ) -> str:
        """Copy one provider image into the bucket and return its public URL."""
        path = self.design_image_path(design_id, index, is_regeneration)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                image = await client.get(image_url)
                if image.status_code >= 400:
                    raise StorageError(f"Failed to fetch image ({image.status_code}): {image_url}")
                response = await client.post(
                    self._object_url(path),
                    headers={**self._headers(), "Content-Type": "image/jpeg", "x-upsert": "false"},
                    content=image.content,
                )
        except httpx.HTTPError as exc:
            raise StorageError(f"Storage upload failed: {exc}") from exc

        self._raise_for_status(response, "Storage upload")
        logger.info("Stored design image %s", path)
        return self.public_url(path)

    async def upload_design_images(
        self,
        design_id: str,
        image_urls: Sequence[str],
        is_regeneration: bool = False,
    ) -> list[str]:
        """Store every image or none: a failed batch removes what it uploaded."""
        results = await asyncio.gather(
            *(self.upload_design_image(design_id, url, i, is_regeneration) for i, url in enumerate(image_urls)),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if not failures:
            return list(results)

        stored = [self.extract_file_path_from_url(r) for r in results if not isinstance(r, BaseException)]
        stored = [path for path in stored if path]
        if stored:
            try:
                await self._remove(stored)
            except StorageError as exc:
                logger.error("Could not remove %d partial upload(s) for design %s: %s", len(stored), design_id, exc)
        raise failures[0]

    async def delete_design_image(self, path: str) -> None:
        await self._remove([path])

    async def delete_all_design_images(self, design_id: str) -> int:
        """Remove every stored image for a design. Returns the number removed."""
        prefix = f"designs/{design_id}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.supabase_url}/storage/v1/object/list/{self.bucket}",
                    headers=self._headers(),
                    json={"prefix": prefix, "limit": 1000, "offset": 0},
                )
        except httpx.HTTPError as exc:
            raise StorageError(f"Storage list failed: {exc}") from exc
        self._raise_for_status(response, "Storage list")

        paths = [f"{prefix}/{item['name']}" for item in response.json() if item.get("name")]
        if paths:
            await self._remove(paths)
        return len(paths)

    async def _remove(self, paths: list[str]) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    "DELETE",
                    self._object_url(),
                    headers=self._headers(),
                    json={"prefixes": paths},
                )
        except httpx.HTTPError as exc:
            raise StorageError(f"Storage delete failed: {exc}") from exc
        self._raise_for_status(response, "Storage delete")
        logger.info("Removed %d stored image(s) from %s", len(paths), self.bucket)

    def extract_file_path_from_url(self, public_url: str) -> str | None:
        segments = urlsplit(public_url).path.split("/")
        if self.bucket not in segments:
            return None
        index = segments.index(self.bucket)
        rest = [s for s in segments[index + 1:] if s]
        return "/".join(rest) or None

    @staticmethod
    def get_optimized_image_url(
        public_url: str,
        width: int | None = None,
        height: int | None = None,
        quality: int | None = None,
        format: str | None = None,
    ) -> str:
        params = {
            key: value
            for key, value in (("width", width), ("height", height), ("quality", quality), ("format", format))
            if value
        }
        if not params:
            return public_url
        parts = urlsplit(public_url)
        return urlunsplit(parts._replace(query=urlencode(params)))
