"""Spotify Web API client used for catalog search and imports."""

import asyncio
import logging
import time
from typing import Awaitable, Callable

import httpx

from config import SpotifyConfig
from errors import NotFoundError, UpstreamError
from helpers import format_duration


logger = logging.getLogger(__name__)


class TokenCache:
	"""
	Holds a single access token and keeps it fresh.

	``ensure_fresh()`` is awaited before every API call and fetches a new
	token when none is held or the current one is within ``margin`` seconds
	of expiry. After each fetch a background task is scheduled to refresh
	ahead of expiry; ``close()`` cancels it.
	"""

	def __init__(
		self,
		fetch: Callable[[], Awaitable[tuple[str, int]]],
		margin: int = 60,
		clock: Callable[[], float] = time.monotonic,
	):
		self._fetch = fetch
		self._margin = margin
		self._clock = clock
		self._token: str | None = None
		self._expires_at = 0.0
		self._lock = asyncio.Lock()
		self._timer: asyncio.Task | None = None

	def is_fresh(self) -> bool:
		return self._token is not None and self._clock() < self._expires_at - self._margin

	async def ensure_fresh(self) -> str:
		if self.is_fresh():
			return self._token
		async with self._lock:
			if not self.is_fresh():
				await self._refresh()
		return self._token

	def invalidate(self) -> None:
		self._token = None
		self._expires_at = 0.0

	def close(self) -> None:
		self._cancel_timer()
		self.invalidate()

	async def _refresh(self) -> None:
		token, expires_in = await self._fetch()
		self._token = token
		self._expires_at = self._clock() + expires_in
		logger.info(f"Access token refreshed, valid for {expires_in}s")
		self._schedule(expires_in - self._margin)

	def _schedule(self, delay: float) -> None:
		self._cancel_timer()
		if delay <= 0:
			return
		self._timer = asyncio.get_running_loop().create_task(self._refresh_later(delay))

	def _cancel_timer(self) -> None:
		if self._timer is not None and not self._timer.done():
			self._timer.cancel()
		self._timer = None

	async def _refresh_later(self, delay: float) -> None:
		await asyncio.sleep(delay)
		# detach first so _refresh() does not cancel the running task
		self._timer = None
		try:
			async with self._lock:
				await self._refresh()
		except UpstreamError as e:
			# next ensure_fresh() retries in the request path
			logger.warning(f"Background token refresh failed: {e.message}")


def track_summary(track: dict) -> dict:
	duration_ms = track.get("duration_ms") or 0
	images = (track.get("album") or {}).get("images") or []
	return {
		"spotifyId": track["id"],
		"title": track["name"],
		"artist": ", ".join(a["name"] for a in track.get("artists", [])),
		"album": (track.get("album") or {}).get("name"),
		"coverImage": images[0]["url"] if images else None,
		"duration": format_duration(duration_ms // 1000),
		"durationInSeconds": duration_ms // 1000,
		"previewUrl": track.get("preview_url"),
		"externalUrl": (track.get("external_urls") or {}).get("spotify"),
		"popularity": track.get("popularity"),
		"explicit": track.get("explicit"),
		"audioUrl": track.get("preview_url"),
	}


def _summaries(items: Callable[[], list]) -> list[dict]:
	"""Maps provider track objects to summaries; a payload of the wrong shape is an upstream fault."""
	try:
		# unknown ids come back as null
		return [track_summary(t) for t in items() if t]
	except (KeyError, TypeError, AttributeError) as e:
		logger.error(f"Spotify payload has an unexpected shape: {e!r}")
		raise UpstreamError("Spotify returned an unexpected response") from e


class SpotifyClient:
	TOKEN_URL = "https://accounts.spotify.com/api/token"
	API_URL = "https://api.spotify.com/v1"

	def __init__(
		self,
		config: SpotifyConfig,
		http: httpx.AsyncClient | None = None,
		tokens: TokenCache | None = None,
	):
		self.config = config
		self.http = http or httpx.AsyncClient(timeout=10.0)
		self.tokens = tokens or TokenCache(self._request_token)

	async def _request_token(self) -> tuple[str, int]:
		if not self.config.configured:
			raise UpstreamError("Spotify API credentials not configured")
		try:
			response = await self.http.post(
				self.TOKEN_URL,
				data={"grant_type": "client_credentials"},
				auth=(self.config.client_id, self.config.client_secret),
			)
			response.raise_for_status()
		except httpx.HTTPError as e:
			logger.error(f"Spotify token request failed: {e}")
			raise UpstreamError("Spotify authentication failed") from e
		try:
			body = response.json()
			return body["access_token"], int(body.get("expires_in", 3600))
		except (ValueError, KeyError, TypeError, AttributeError) as e:
			logger.error(f"Spotify token response unreadable: {e!r}")
			raise UpstreamError("Spotify authentication failed") from e

	async def _get(self, path: str, params: dict | None = None) -> dict:
		token = await self.tokens.ensure_fresh()
		try:
			response = await self.http.get(
				f"{self.API_URL}{path}",
				params=params,
				headers={"Authorization": f"Bearer {token}"},
			)
		except httpx.HTTPError as e:
			logger.error(f"Spotify request {path} failed: {e}")
			raise UpstreamError("Spotify request failed") from e

		if response.status_code == 401:
			self.tokens.invalidate()
		if response.status_code == 404:
			raise NotFoundError("Spotify track not found")
		if response.is_error:
			logger.error(f"Spotify request {path} returned {response.status_code}")
			raise UpstreamError("Spotify request failed")
		try:
			return response.json()
		except ValueError as e:
			logger.error(f"Spotify request {path} returned a non-JSON body")
			raise UpstreamError("Spotify returned an unreadable response") from e

	async def search(self, query: str, limit: int = 20) -> list[dict]:
		data = await self._get(
			"/search", {"q": query, "type": "track", "limit": limit, "market": self.config.market}
		)
		return _summaries(lambda: data["tracks"]["items"])

	async def fetch_by_ids(self, ids: list[str]) -> list[dict]:
		data = await self._get("/tracks", {"ids": ",".join(ids), "market": self.config.market})
		return _summaries(lambda: data["tracks"])

	async def fetch_one(self, spotify_id: str) -> dict:
		data = await self._get(f"/tracks/{spotify_id}", {"market": self.config.market})
		summaries = _summaries(lambda: [data])
		if not summaries:
			raise UpstreamError("Spotify returned an unexpected response")
		return summaries[0]

	async def close(self) -> None:
		self.tokens.close()
		await self.http.aclose()
