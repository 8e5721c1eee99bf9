"""Supabase Storage client for uploaded audio and images."""

import logging
import uuid

import httpx

from config import StorageConfig
from errors import UpstreamError


logger = logging.getLogger(__name__)


class SupabaseStorage:
	def __init__(self, config: StorageConfig, http: httpx.AsyncClient | None = None):
		self.config = config
		self.http = http or httpx.AsyncClient(timeout=60.0)

	def _object_url(self, path: str = "") -> str:
		base = f"{self.config.supabase_url.rstrip('/')}/storage/v1/object/{self.config.bucket}"
		return f"{base}/{path}" if path else base

	def _headers(self, **extra) -> dict:
		return {
			"Authorization": f"Bearer {self.config.supabase_key}",
			"apikey": self.config.supabase_key,
			**extra,
		}

	def _require_config(self) -> None:
		if not self.config.configured:
			raise UpstreamError("Storage provider not configured")

	def public_url(self, path: str) -> str:
		return f"{self.config.supabase_url.rstrip('/')}/storage/v1/object/public/{self.config.bucket}/{path}"

	async def store(self, data: bytes, folder: str, content_type: str, filename: str = "") -> dict:
		"""Uploads bytes under a fresh unique name in `folder`; returns the path and public URL."""
		self._require_config()
		ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
		path = f"{folder}/{uuid.uuid4()}" + (f".{ext}" if ext else "")
		try:
			response = await self.http.post(
				self._object_url(path),
				content=data,
				headers=self._headers(**{
					"Content-Type": content_type,
					"cache-control": "3600",
					"x-upsert": "false",
				}),
			)
			response.raise_for_status()
		except httpx.HTTPError as e:
			logger.error(f"Upload of {path} failed: {e}")
			raise UpstreamError("Upload failed") from e
		logger.info(f"Stored {len(data)} bytes at {path}")
		return {"path": path, "publicUrl": self.public_url(path), "fileName": path}

	async def remove(self, path: str) -> bool:
		self._require_config()
		try:
			response = await self.http.request(
				"DELETE", self._object_url(), json={"prefixes": [path]}, headers=self._headers()
			)
			response.raise_for_status()
		except httpx.HTTPError as e:
			logger.error(f"Delete of {path} failed: {e}")
			raise UpstreamError("Delete failed") from e
		logger.info(f"Removed {path}")
		return True

	async def close(self) -> None:
		await self.http.aclose()
