"""Object storage on Supabase Storage (REST API over httpx).

Layout:
- recordings: `<call_id>.mp3` in RECORDINGS_BUCKET
- videos:     `<call_id>.mp4` in VIDEOS_BUCKET
- voice notes: `<uuid>.<ext>` in VOICE_NOTES_BUCKET
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx

from app.config import config
from app.logging_config import get_logger

logger = get_logger(__name__)


class StorageError(RuntimeError):
    """An object storage operation failed."""


def recording_key(call_id: str) -> str:
    return f"{call_id}.mp3"


def video_key(call_id: str) -> str:
    return f"{call_id}.mp4"


class SupabaseStorage:
    """Upload objects and mint public / signed URLs."""

    def __init__(
        self,
        url: str,
        service_key: str,
        http_client: Optional[httpx.Client] = None,
        timeout_s: float = 120.0,
    ):
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.timeout_s = timeout_s
        self._http_client = http_client

    @classmethod
    def from_config(cls, http_client: Optional[httpx.Client] = None) -> "SupabaseStorage":
        return cls(
            url=config.SUPABASE_URL,
            service_key=config.SUPABASE_SERVICE_ROLE_KEY,
            http_client=http_client,
            timeout_s=max(config.HTTP_TIMEOUT_SECONDS, 120.0),
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
        }

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._http_client is not None:
            return self._http_client.request(method, url, **kwargs)
        with httpx.Client(timeout=self.timeout_s, follow_redirects=True) as client:
            return client.request(method, url, **kwargs)

    @staticmethod
    def _object_path(bucket: str, key: str) -> str:
        return f"{quote(bucket)}/{quote(key)}"

    def upload(self, bucket: str, key: str, content: bytes, content_type: str, upsert: bool = True) -> None:
        if not self.url or not self.service_key:
            raise StorageError("Supabase storage is not configured")

        headers = {
            **self._headers(),
            "Content-Type": content_type,
            "x-upsert": "true" if upsert else "false",
        }
        try:
            resp = self._request(
                "POST",
                f"{self.url}/storage/v1/object/{self._object_path(bucket, key)}",
                content=content,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to upload {bucket}/{key}: {e}") from e

        if not resp.is_success:
            raise StorageError(f"Failed to upload {bucket}/{key}: {resp.status_code} - {resp.text}")

        logger.info("storage_object_uploaded", bucket=bucket, key=key, size_bytes=len(content))

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self._object_path(bucket, key)}"

    def create_signed_url(self, bucket: str, key: str, expires_in: int = 3600) -> str:
        """Time-limited read URL for a private object."""
        if not self.url or not self.service_key:
            raise StorageError("Supabase storage is not configured")

        try:
            resp = self._request(
                "POST",
                f"{self.url}/storage/v1/object/sign/{self._object_path(bucket, key)}",
                json={"expiresIn": expires_in},
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to sign {bucket}/{key}: {e}") from e

        if not resp.is_success:
            raise StorageError(f"Failed to sign {bucket}/{key}: {resp.status_code} - {resp.text}")

        try:
            body = resp.json()
        except ValueError as e:
            raise StorageError(f"Unreadable sign response for {bucket}/{key}: {resp.text[:200]}") from e

        if not isinstance(body, dict):
            body = {}
        signed_path = body.get("signedURL") or body.get("signedUrl")
        if not signed_path:
            raise StorageError(f"No signed URL returned for {bucket}/{key}")
        if signed_path.startswith("http"):
            return signed_path
        return f"{self.url}/storage/v1{signed_path}"

    def download_to_file(self, url: str, dest_path: str) -> int:
        """Stream `url` into `dest_path`; returns the number of bytes written."""
        try:
            if self._http_client is not None:
                return self._stream_to_file(self._http_client, url, dest_path)
            with httpx.Client(timeout=self.timeout_s, follow_redirects=True) as client:
                return self._stream_to_file(client, url, dest_path)
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to download audio: {e}") from e

    @staticmethod
    def _stream_to_file(client: httpx.Client, url: str, dest_path: str) -> int:
        written = 0
        with client.stream("GET", url) as resp:
            resp.raise_for_status()
            with open(dest_path, "wb") as f:
                for chunk in resp.iter_bytes():
                    f.write(chunk)
                    written += len(chunk)
        return written
