"""Fixtures shared by the test modules."""

import asyncio
import contextlib
import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from config import AuthConfig, DatabaseConfig, ServerConfig, Settings, StorageConfig
from database import connect, init_db
from errors import NotFoundError
from main import create_app
from security import Principal
from users import register


def make_settings(directory: str) -> Settings:
	return Settings(
		database=DatabaseConfig(path=Path(directory) / "test.db"),
		auth=AuthConfig(jwt_secret="test-secret"),
		server=ServerConfig(environment="test"),
		storage=StorageConfig(max_upload_mb=1),
	)


def principal_of(row) -> Principal:
	return Principal(id=row["id"], email=row["email"], role=row["role"], name=row["name"])


class FakeCatalog:
	"""Stands in for the Spotify client; knows a fixed set of tracks."""

	def __init__(self):
		self.tracks = {
			"sp1": {
				"spotifyId": "sp1",
				"title": "Blinding Lights",
				"artist": "The Weeknd",
				"album": "After Hours",
				"coverImage": "https://i.scdn.co/image/abc",
				"duration": "3:20",
				"durationInSeconds": 200,
				"previewUrl": "https://p.scdn.co/mp3-preview/abc",
				"externalUrl": "https://open.spotify.com/track/sp1",
				"popularity": 90,
				"explicit": False,
				"audioUrl": "https://p.scdn.co/mp3-preview/abc",
			},
		}
		self.closed = False

	async def search(self, query, limit=20):
		return [t for t in self.tracks.values() if query.lower() in t["title"].lower()][:limit]

	async def fetch_by_ids(self, ids):
		return [self.tracks[i] for i in ids if i in self.tracks]

	async def fetch_one(self, spotify_id):
		if spotify_id not in self.tracks:
			raise NotFoundError("Spotify track not found")
		return self.tracks[spotify_id]

	async def close(self):
		self.closed = True


class FakeStorage:
	def __init__(self):
		self.objects = {}

	async def store(self, data, folder, content_type, filename=""):
		path = f"{folder}/{len(self.objects) + 1}-{filename}"
		self.objects[path] = data
		return {"path": path, "publicUrl": f"https://storage.example.com/{path}", "fileName": path}

	async def remove(self, path):
		self.objects.pop(path, None)
		return True

	async def close(self):
		pass


class ServiceTestCase(unittest.IsolatedAsyncioTestCase):
	"""Service functions against a fresh SQLite file per test."""

	async def asyncSetUp(self):
		self.tmp = tempfile.TemporaryDirectory()
		self.settings = make_settings(self.tmp.name)
		await init_db(self.settings.database.path)
		self.stack = contextlib.AsyncExitStack()
		self.db = await self.stack.enter_async_context(connect(self.settings.database.path))

	async def asyncTearDown(self):
		await self.stack.aclose()
		self.tmp.cleanup()

	async def make_user(self, name="Listener", email="listener@example.com", **extra) -> Principal:
		return principal_of(await register(self.db, name, email, "password123", **extra))

	async def make_admin(self, email="admin@example.com") -> Principal:
		return await self.make_user("Admin", email, role="admin")


class ApiTestCase(unittest.TestCase):
	"""The full application behind a TestClient, lifespan included."""

	def setUp(self):
		self.tmp = tempfile.TemporaryDirectory()
		self.settings = make_settings(self.tmp.name)
		self.configure(self.settings)
		self.catalog = FakeCatalog()
		self.storage = FakeStorage()
		self.app = create_app(self.settings, catalog=self.catalog, storage=self.storage)
		self.client = TestClient(self.app)
		self.client.__enter__()

	def configure(self, settings: Settings) -> None:
		"""Hook for test cases that need non-default settings."""

	def tearDown(self):
		self.client.__exit__(None, None, None)
		self.tmp.cleanup()

	def auth(self, token: str) -> dict:
		return {"Authorization": f"Bearer {token}"}

	def signup(self, name="Listener", email="listener@example.com", password="password123") -> dict:
		response = self.client.post(
			"/api/auth/register", json={"name": name, "email": email, "password": password}
		)
		self.assertEqual(response.status_code, 201, response.text)
		# requests in a test pick their identity explicitly
		self.client.cookies.clear()
		return response.json()

	def login(self, email, password="password123") -> str:
		response = self.client.post("/api/auth/login", json={"email": email, "password": password})
		self.assertEqual(response.status_code, 200, response.text)
		self.client.cookies.clear()
		return response.json()["token"]

	def admin_token(self, email="admin@example.com") -> str:
		async def create():
			async with connect(self.settings.database.path) as db:
				await register(db, "Admin", email, "password123", role="admin")

		asyncio.run(create())
		return self.login(email)

	def create_track(self, token, **fields) -> dict:
		body = {
			"title": "Track",
			"artist": "Artist",
			"duration": "4:00",
			"category": "song",
			"audioUrl": "https://cdn.example.com/track.mp3",
			**fields,
		}
		response = self.client.post("/api/tracks", json=body, headers=self.auth(token))
		self.assertEqual(response.status_code, 201, response.text)
		return response.json()["track"]
