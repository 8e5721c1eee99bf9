import asyncio
import json
import unittest

import httpx

from catalog_client import SpotifyClient, TokenCache, track_summary
from config import SpotifyConfig, StorageConfig
from errors import NotFoundError, UpstreamError
from storage_client import SupabaseStorage


SPOTIFY_TRACK = {
	"id": "4uLU6hMCjMI75M1A2tKUQC",
	"name": "Never Gonna Give You Up",
	"artists": [{"name": "Rick Astley"}],
	"album": {"name": "Whenever You Need Somebody", "images": [{"url": "https://i.scdn.co/image/cover"}]},
	"duration_ms": 213573,
	"preview_url": None,
	"external_urls": {"spotify": "https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC"},
	"popularity": 77,
	"explicit": False,
}


class FakeClock:
	def __init__(self):
		self.now = 1000.0

	def __call__(self):
		return self.now


class TestTokenCache(unittest.IsolatedAsyncioTestCase):
	async def asyncSetUp(self):
		self.clock = FakeClock()
		self.fetches = 0

		async def fetch():
			self.fetches += 1
			return f"token-{self.fetches}", 3600

		self.cache = TokenCache(fetch, margin=60, clock=self.clock)

	async def asyncTearDown(self):
		self.cache.close()

	async def test_fetches_once_and_reuses(self):
		self.assertEqual(await self.cache.ensure_fresh(), "token-1")
		self.clock.now += 3000
		self.assertEqual(await self.cache.ensure_fresh(), "token-1")
		self.assertEqual(self.fetches, 1)

	async def test_refreshes_inside_margin(self):
		await self.cache.ensure_fresh()
		self.clock.now += 3541
		self.assertEqual(await self.cache.ensure_fresh(), "token-2")

	async def test_concurrent_callers_share_one_fetch(self):
		tokens = await asyncio.gather(*(self.cache.ensure_fresh() for _ in range(5)))
		self.assertEqual(set(tokens), {"token-1"})
		self.assertEqual(self.fetches, 1)

	async def test_invalidate_forces_refetch(self):
		await self.cache.ensure_fresh()
		self.cache.invalidate()
		self.assertFalse(self.cache.is_fresh())
		self.assertEqual(await self.cache.ensure_fresh(), "token-2")

	async def test_close_cancels_timer(self):
		await self.cache.ensure_fresh()
		timer = self.cache._timer
		self.assertIsNotNone(timer)
		self.cache.close()
		await asyncio.sleep(0)
		self.assertTrue(timer.cancelled())
		self.assertFalse(self.cache.is_fresh())

	async def test_background_refresh(self):
		fetches = []

		async def fetch():
			fetches.append(1)
			return f"short-{len(fetches)}", 0.05

		cache = TokenCache(fetch, margin=0)
		try:
			await cache.ensure_fresh()
			await asyncio.sleep(0.2)
			self.assertGreaterEqual(len(fetches), 2)
		finally:
			cache.close()


class TestSpotifyClient(unittest.IsolatedAsyncioTestCase):
	async def asyncSetUp(self):
		self.token_requests = 0
		self.api_requests = []
		self.expire_next = False

		def handler(request: httpx.Request) -> httpx.Response:
			if request.url.host == "accounts.spotify.com":
				self.token_requests += 1
				return httpx.Response(200, json={"access_token": f"abc{self.token_requests}", "expires_in": 3600})
			self.api_requests.append(request)
			if self.expire_next:
				self.expire_next = False
				return httpx.Response(401, json={"error": {"status": 401}})
			if request.url.path == "/v1/search":
				return httpx.Response(200, json={"tracks": {"items": [SPOTIFY_TRACK]}})
			if request.url.path == "/v1/tracks":
				return httpx.Response(200, json={"tracks": [SPOTIFY_TRACK, None]})
			if request.url.path == "/v1/tracks/missing":
				return httpx.Response(404, json={"error": {"status": 404}})
			return httpx.Response(500)

		self.http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
		self.client = SpotifyClient(SpotifyConfig(client_id="id", client_secret="secret"), http=self.http)

	async def asyncTearDown(self):
		await self.client.close()

	async def test_search_maps_tracks(self):
		tracks = await self.client.search("rick", limit=5)
		self.assertEqual(len(tracks), 1)
		self.assertEqual(tracks[0]["artist"], "Rick Astley")
		self.assertEqual(tracks[0]["duration"], "3:33")
		request = self.api_requests[0]
		self.assertEqual(request.headers["Authorization"], "Bearer abc1")
		self.assertEqual(request.url.params["limit"], "5")

	async def test_token_reused_across_calls(self):
		await self.client.search("a")
		await self.client.fetch_by_ids(["4uLU6hMCjMI75M1A2tKUQC", "unknown"])
		self.assertEqual(self.token_requests, 1)

	async def test_fetch_by_ids_skips_unknown(self):
		tracks = await self.client.fetch_by_ids(["4uLU6hMCjMI75M1A2tKUQC", "unknown"])
		self.assertEqual([t["spotifyId"] for t in tracks], ["4uLU6hMCjMI75M1A2tKUQC"])

	async def test_not_found(self):
		with self.assertRaises(NotFoundError):
			await self.client.fetch_one("missing")

	async def test_rejected_token_is_dropped(self):
		await self.client.search("a")
		self.expire_next = True
		with self.assertRaises(UpstreamError):
			await self.client.search("a")
		await self.client.search("a")
		self.assertEqual(self.token_requests, 2)
		self.assertEqual(self.api_requests[-1].headers["Authorization"], "Bearer abc2")

	async def test_unconfigured(self):
		client = SpotifyClient(SpotifyConfig(), http=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))))
		try:
			with self.assertRaises(UpstreamError):
				await client.search("a")
		finally:
			await client.close()

	def test_track_summary_without_album_art(self):
		summary = track_summary({**SPOTIFY_TRACK, "album": {"name": "X", "images": []}})
		self.assertIsNone(summary["coverImage"])
		self.assertEqual(summary["durationInSeconds"], 213)



class TestSpotifyClientMalformedResponses(unittest.IsolatedAsyncioTestCase):
	def make_client(self, token_response: httpx.Response, api_response: httpx.Response | None = None) -> SpotifyClient:
		def handler(request: httpx.Request) -> httpx.Response:
			if request.url.host == "accounts.spotify.com":
				return token_response
			return api_response or httpx.Response(200, json={"tracks": {"items": []}})

		client = SpotifyClient(
			SpotifyConfig(client_id="id", client_secret="secret"),
			http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
		)
		self.addAsyncCleanup(client.close)
		return client

	def good_token(self) -> httpx.Response:
		return httpx.Response(200, json={"access_token": "abc", "expires_in": 3600})

	async def test_token_body_without_access_token(self):
		client = self.make_client(httpx.Response(200, json={"error": "weird"}))
		with self.assertRaises(UpstreamError) as ctx:
			await client.search("a")
		self.assertEqual(ctx.exception.message, "Spotify authentication failed")
		self.assertFalse(client.tokens.is_fresh())

	async def test_token_body_not_json(self):
		client = self.make_client(httpx.Response(200, text="<html>maintenance</html>"))
		with self.assertRaises(UpstreamError):
			await client.search("a")

	async def test_api_body_is_html(self):
		html = httpx.Response(200, text="<html>oops</html>", headers={"Content-Type": "text/html"})
		client = self.make_client(self.good_token(), html)
		with self.assertRaises(UpstreamError) as ctx:
			await client.search("a")
		self.assertEqual(ctx.exception.message, "Spotify returned an unreadable response")

	async def test_search_payload_without_tracks(self):
		client = self.make_client(self.good_token(), httpx.Response(200, json={"error": "weird"}))
		with self.assertRaises(UpstreamError):
			await client.search("a")

	async def test_track_without_name(self):
		broken = {k: v for k, v in SPOTIFY_TRACK.items() if k != "name"}
		client = self.make_client(self.good_token(), httpx.Response(200, json={"tracks": [broken]}))
		with self.assertRaises(UpstreamError):
			await client.fetch_by_ids([broken["id"]])

	async def test_single_track_payload_is_null(self):
		client = self.make_client(self.good_token(), httpx.Response(200, content=b"null", headers={"Content-Type": "application/json"}))
		with self.assertRaises(UpstreamError):
			await client.fetch_one("4uLU6hMCjMI75M1A2tKUQC")

	async def test_background_refresh_survives_malformed_token(self):
		malformed = self.make_client(httpx.Response(200, json={"error": "weird"}))
		fetches = []

		async def fetch():
			fetches.append(1)
			if len(fetches) == 1:
				return "short", 0.05
			return await malformed._request_token()

		cache = TokenCache(fetch, margin=0)
		try:
			self.assertEqual(await cache.ensure_fresh(), "short")
			await asyncio.sleep(0.15)
			self.assertEqual(len(fetches), 2)
			self.assertIsNone(cache._timer)
		finally:
			cache.close()


class TestSupabaseStorage(unittest.IsolatedAsyncioTestCase):
	async def asyncSetUp(self):
		self.requests = []

		def handler(request: httpx.Request) -> httpx.Response:
			self.requests.append(request)
			if request.headers.get("Authorization") != "Bearer service-key":
				return httpx.Response(401)
			return httpx.Response(200, json={"Key": "ok"})

		config = StorageConfig(supabase_url="https://proj.supabase.co", supabase_key="service-key")
		self.storage = SupabaseStorage(config, http=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

	async def asyncTearDown(self):
		await self.storage.close()

	async def test_store_uses_unique_name_in_folder(self):
		first = await self.storage.store(b"abc", "audio", "audio/mpeg", "My Song.MP3")
		second = await self.storage.store(b"abc", "audio", "audio/mpeg", "My Song.MP3")
		self.assertTrue(first["path"].startswith("audio/"))
		self.assertTrue(first["path"].endswith(".mp3"))
		self.assertNotEqual(first["path"], second["path"])
		self.assertEqual(
			first["publicUrl"],
			f"https://proj.supabase.co/storage/v1/object/public/sangeet-media/{first['path']}",
		)
		self.assertEqual(self.requests[0].headers["Content-Type"], "audio/mpeg")
		self.assertEqual(self.requests[0].content, b"abc")

	async def test_remove_sends_prefixes(self):
		self.assertTrue(await self.storage.remove("images/x.png"))
		request = self.requests[0]
		self.assertEqual(request.method, "DELETE")
		self.assertEqual(json.loads(request.content), {"prefixes": ["images/x.png"]})

	async def test_upstream_failure(self):
		self.storage.config.supabase_key = "wrong"
		with self.assertRaises(UpstreamError):
			await self.storage.store(b"abc", "images", "image/png", "a.png")

	async def test_unconfigured(self):
		storage = SupabaseStorage(StorageConfig())
		try:
			with self.assertRaises(UpstreamError):
				await storage.remove("images/x.png")
		finally:
			await storage.close()


if __name__ == "__main__":
	unittest.main()
