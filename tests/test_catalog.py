import asyncio
import contextlib
import unittest

from admin import delete_user
from aggregates import reconcile_aggregates
from database import connect, fetch_value
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from playlists import add_track, create_playlist, get_playlist, remove_track, update_playlist
from tests.support import ServiceTestCase
from tracks import create_track, delete_track, get_track, list_tracks, toggle_like, update_track
from users import authenticate, play_track, register


def track_fields(title="Song", duration="4:00", **extra):
	return {
		"title": title,
		"artist": "Artist",
		"duration": duration,
		"category": "song",
		"audio_url": "https://cdn.example.com/song.mp3",
		**extra,
	}


class TestAccounts(ServiceTestCase):
	async def test_duplicate_email_is_rejected(self):
		await register(self.db, "First", "Dup@Example.com", "password123")
		with self.assertRaises(ConflictError):
			await register(self.db, "Second", "  dup@example.com ", "password123")
		count = await fetch_value(self.db, "SELECT COUNT(*) FROM user WHERE email = ?", ("dup@example.com",))
		self.assertEqual(count, 1)

	async def test_wrong_password_and_unknown_email_look_the_same(self):
		await register(self.db, "First", "first@example.com", "password123")
		messages = []
		for email, password in (("first@example.com", "nope"), ("ghost@example.com", "password123")):
			try:
				await authenticate(self.db, email, password)
			except Exception as e:
				messages.append((type(e).__name__, e.message))
		self.assertEqual(len(messages), 2)
		self.assertEqual(messages[0], messages[1])

	async def test_play_track_updates_counters(self):
		admin = await self.make_admin()
		user = await self.make_user()
		track = await create_track(self.db, admin, track_fields())
		self.assertEqual(await play_track(self.db, user, track["id"], 180), 1)
		self.assertEqual(await play_track(self.db, user, track["id"]), 2)
		played = await fetch_value(self.db, "SELECT total_songs_played FROM user WHERE id = ?", (user.id,))
		self.assertEqual(played, 2)
		with self.assertRaises(NotFoundError):
			await play_track(self.db, user, 9999)


class TestTracks(ServiceTestCase):
	async def test_create_derives_duration_seconds(self):
		admin = await self.make_admin()
		track = await create_track(self.db, admin, track_fields(duration="3:45"))
		self.assertEqual(track["durationInSeconds"], 225)
		self.assertEqual(track["uploadedBy"]["id"], admin.id)
		self.assertEqual(track["album"], "Single")

	async def test_non_admin_cannot_create(self):
		user = await self.make_user()
		with self.assertRaises(AuthorizationError):
			await create_track(self.db, user, track_fields())

	async def test_invalid_duration(self):
		admin = await self.make_admin()
		with self.assertRaises(ValidationError):
			await create_track(self.db, admin, track_fields(duration="3:60"))

	async def test_duplicate_spotify_id(self):
		admin = await self.make_admin()
		await create_track(self.db, admin, track_fields(spotify_id="sp1"))
		with self.assertRaises(ConflictError):
			await create_track(self.db, admin, track_fields(spotify_id="sp1"))

	async def test_unpublished_tracks_are_hidden_from_non_admins(self):
		admin = await self.make_admin()
		user = await self.make_user()
		await create_track(self.db, admin, track_fields("Public"))
		hidden = await create_track(self.db, admin, track_fields("Hidden", is_published=False))

		for principal in (None, user):
			page = await list_tracks(self.db, principal, include_unpublished=True)
			self.assertEqual([t["title"] for t in page["data"]], ["Public"])
			with self.assertRaises(NotFoundError):
				await get_track(self.db, hidden["id"], principal)

		page = await list_tracks(self.db, admin, include_unpublished=True)
		self.assertEqual(page["count"], 2)
		self.assertEqual((await get_track(self.db, hidden["id"], admin))["title"], "Hidden")

	async def test_like_toggle_twice_restores_state(self):
		admin = await self.make_admin()
		user = await self.make_user()
		track = await create_track(self.db, admin, track_fields())

		self.assertEqual(await toggle_like(self.db, user.id, track["id"]), {"liked": True, "likes": 1})
		self.assertTrue((await get_track(self.db, track["id"], user))["liked"])
		self.assertEqual(await toggle_like(self.db, user.id, track["id"]), {"liked": False, "likes": 0})
		self.assertFalse((await get_track(self.db, track["id"], user))["liked"])

	async def test_likes_never_go_negative(self):
		admin = await self.make_admin()
		user = await self.make_user()
		track = await create_track(self.db, admin, track_fields())
		await toggle_like(self.db, user.id, track["id"])
		# simulate a drifted counter
		await self.db.execute("UPDATE track SET likes = 0 WHERE id = ?", (track["id"],))

		result = await toggle_like(self.db, user.id, track["id"])
		self.assertEqual(result, {"liked": False, "likes": 0})

	async def test_concurrent_likes_from_separate_connections(self):
		admin = await self.make_admin()
		track = await create_track(self.db, admin, track_fields())
		users = [await self.make_user(f"Fan {i}", f"fan{i}@example.com") for i in range(8)]

		async with contextlib.AsyncExitStack() as stack:
			conns = [await stack.enter_async_context(connect(self.settings.database.path)) for _ in users]

			results = await asyncio.gather(*(toggle_like(c, u.id, track["id"]) for c, u in zip(conns, users)))
			self.assertTrue(all(r["liked"] for r in results))
			self.assertEqual(sorted(r["likes"] for r in results), list(range(1, 9)))
			self.assertEqual(await fetch_value(self.db, "SELECT likes FROM track"), 8)
			self.assertEqual(await fetch_value(self.db, "SELECT COUNT(*) FROM user_liked_track"), 8)

			await asyncio.gather(*(toggle_like(c, u.id, track["id"]) for c, u in zip(conns, users)))
			self.assertEqual(await fetch_value(self.db, "SELECT likes FROM track"), 0)
			self.assertEqual(await fetch_value(self.db, "SELECT COUNT(*) FROM user_liked_track"), 0)

	async def test_like_unknown_track(self):
		user = await self.make_user()
		with self.assertRaises(NotFoundError):
			await toggle_like(self.db, user.id, 12345)

	async def test_sort_and_search(self):
		admin = await self.make_admin()
		await create_track(self.db, admin, track_fields("Alpha"))
		await create_track(self.db, admin, track_fields("Beta", artist="Nova Sound"))
		page = await list_tracks(self.db, None, sort="title")
		self.assertEqual([t["title"] for t in page["data"]], ["Alpha", "Beta"])
		page = await list_tracks(self.db, None, search="nova")
		self.assertEqual([t["title"] for t in page["data"]], ["Beta"])
		self.assertEqual(page["totalPages"], 1)


class TestPlaylists(ServiceTestCase):
	async def asyncSetUp(self):
		await super().asyncSetUp()
		self.admin = await self.make_admin()
		self.owner = await self.make_user("Owner", "owner@example.com")
		self.other = await self.make_user("Other", "other@example.com")
		self.track = await create_track(self.db, self.admin, track_fields(duration="4:00"))
		self.playlist = await create_playlist(self.db, self.owner, {"name": "Mix", "is_public": True})

	async def test_adding_twice_keeps_one_entry(self):
		await add_track(self.db, self.owner, self.playlist["id"], self.track["id"])
		playlist = await add_track(self.db, self.owner, self.playlist["id"], self.track["id"])
		self.assertEqual(playlist["trackCount"], 1)
		self.assertEqual(playlist["totalDuration"], "4m")

	async def test_removing_last_track_resets_total(self):
		await add_track(self.db, self.owner, self.playlist["id"], self.track["id"])
		playlist = await remove_track(self.db, self.owner, self.playlist["id"], self.track["id"])
		self.assertEqual(playlist["tracks"], [])
		self.assertEqual(playlist["totalDuration"], "0m")

	async def test_total_spans_hours(self):
		podcast = await create_track(self.db, self.admin, track_fields("Talk", duration="58:00"))
		await add_track(self.db, self.owner, self.playlist["id"], self.track["id"])
		playlist = await add_track(self.db, self.owner, self.playlist["id"], podcast["id"])
		self.assertEqual(playlist["totalDuration"], "1h 2m")

	async def test_writes_are_owner_only(self):
		pid, tid = self.playlist["id"], self.track["id"]
		for principal in (self.other, self.admin):
			with self.assertRaises(AuthorizationError):
				await update_playlist(self.db, principal, pid, {"name": "Mine now"})
			with self.assertRaises(AuthorizationError):
				await add_track(self.db, principal, pid, tid)
			with self.assertRaises(AuthorizationError):
				await remove_track(self.db, principal, pid, tid)

	async def test_private_playlist_visibility(self):
		await update_playlist(self.db, self.owner, self.playlist["id"], {"is_public": False})
		with self.assertRaises(AuthorizationError):
			await get_playlist(self.db, self.other, self.playlist["id"])
		with self.assertRaises(AuthorizationError):
			await get_playlist(self.db, self.admin, self.playlist["id"])
		self.assertFalse((await get_playlist(self.db, self.owner, self.playlist["id"]))["isPublic"])

	async def test_unpublished_tracks_are_added_by_admins_only(self):
		hidden = await create_track(self.db, self.admin, track_fields("Hidden", is_published=False))
		with self.assertRaises(NotFoundError):
			await add_track(self.db, self.owner, self.playlist["id"], hidden["id"])
		self.assertEqual(await fetch_value(self.db, "SELECT COUNT(*) FROM playlist_track"), 0)

		staging = await create_playlist(self.db, self.admin, {"name": "Staging"})
		playlist = await add_track(self.db, self.admin, staging["id"], hidden["id"])
		self.assertEqual([e["track"]["id"] for e in playlist["tracks"]], [hidden["id"]])

	async def test_track_delete_cascades_to_playlists(self):
		longer = await create_track(self.db, self.admin, track_fields("Long", duration="6:00"))
		await add_track(self.db, self.owner, self.playlist["id"], self.track["id"])
		await add_track(self.db, self.owner, self.playlist["id"], longer["id"])

		await delete_track(self.db, self.admin, longer["id"])
		playlist = await get_playlist(self.db, self.owner, self.playlist["id"])
		self.assertEqual([e["track"]["id"] for e in playlist["tracks"]], [self.track["id"]])
		self.assertEqual(playlist["totalDuration"], "4m")

	async def test_duration_change_retotals_playlists(self):
		await add_track(self.db, self.owner, self.playlist["id"], self.track["id"])
		await update_track(self.db, self.admin, self.track["id"], {"duration": "10:30"})
		playlist = await get_playlist(self.db, self.owner, self.playlist["id"])
		self.assertEqual(playlist["totalDuration"], "10m")


class TestMaintenance(ServiceTestCase):
	async def test_delete_user_releases_likes(self):
		admin = await self.make_admin()
		user = await self.make_user()
		track = await create_track(self.db, admin, track_fields())
		await toggle_like(self.db, user.id, track["id"])
		await toggle_like(self.db, admin.id, track["id"])

		await delete_user(self.db, admin, user.id)
		likes = await fetch_value(self.db, "SELECT likes FROM track WHERE id = ?", (track["id"],))
		self.assertEqual(likes, 1)

	async def test_admin_cannot_delete_self(self):
		admin = await self.make_admin()
		with self.assertRaises(AuthorizationError):
			await delete_user(self.db, admin, admin.id)

	async def test_reconcile_repairs_drift(self):
		admin = await self.make_admin()
		user = await self.make_user()
		track = await create_track(self.db, admin, track_fields())
		playlist = await create_playlist(self.db, user, {"name": "Mix"})
		await add_track(self.db, user, playlist["id"], track["id"])
		await toggle_like(self.db, user.id, track["id"])

		await self.db.execute("UPDATE track SET likes = 7 WHERE id = ?", (track["id"],))
		await self.db.execute("UPDATE playlist SET total_duration = '9h 9m' WHERE id = ?", (playlist["id"],))

		self.assertEqual(await reconcile_aggregates(self.db), {"tracks": 1, "playlists": 1})
		self.assertEqual(await fetch_value(self.db, "SELECT likes FROM track"), 1)
		self.assertEqual(await fetch_value(self.db, "SELECT total_duration FROM playlist"), "4m")
		self.assertEqual(await reconcile_aggregates(self.db), {"tracks": 0, "playlists": 0})


if __name__ == "__main__":
	unittest.main()
