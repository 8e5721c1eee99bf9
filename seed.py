"""
Resets the database to a small demo catalog.

Everything is created through the same functions the API uses, so counters
and durations start out consistent.
"""

import asyncio
import logging

from config import Settings
from database import connect, init_db, transaction
from playlists import add_track, create_playlist
from security import Principal
from tracks import create_track, toggle_like
from users import play_track, register


logger = logging.getLogger(__name__)

SAMPLE_USERS = [
	{"name": "Kavya Patel", "email": "kavya@example.com", "user_type": "premium", "favorite_genre": "Electronic"},
	{"name": "John Doe", "email": "john@example.com"},
	{"name": "Sarah Smith", "email": "sarah@example.com"},
]

SAMPLE_TRACKS = [
	("Neon Dreams", "Electric Pulse", "Future Sounds", "3:45", "song", "Electronic"),
	("Midnight Waves", "Luna Echo", "Nocturnal", "4:12", "song", "Ambient"),
	("Tech Talk: AI Revolution", "Future Cast", "Tech Insights", "42:15", "podcast", "Technology"),
	("Cyber Pulse", "Digital Dreams", "Synthwave 2025", "3:28", "song", "Synthwave"),
	("Quantum Beats", "Nova Sound", "Electronic Frontier", "5:03", "song", "House"),
	("The Creative Process", "Art & Soul", "Inspiration Daily", "35:22", "podcast", "Arts"),
]


def _principal(row) -> Principal:
	return Principal(id=row["id"], email=row["email"], role=row["role"], name=row["name"])


async def seed(settings: Settings) -> dict:
	await init_db(settings.database.path)
	async with connect(settings.database.path) as db:
		async with transaction(db):
			for table in ("playlist_track", "user_liked_track", "playlist", "track", "user"):
				await db.execute(f"DELETE FROM {table}")
		logger.info("Cleared existing data")

		admin = _principal(await register(
			db, "Admin", settings.seed.admin_email, settings.seed.admin_password,
			role="admin", user_type="premium", is_email_verified=1,
		))
		users = [
			_principal(await register(db, password="password123", **user))
			for user in SAMPLE_USERS
		]

		tracks = []
		for index, (title, artist, album, duration, category, genre) in enumerate(SAMPLE_TRACKS, start=1):
			track = await create_track(db, admin, {
				"title": title,
				"artist": artist,
				"album": album,
				"duration": duration,
				"category": category,
				"genre": genre,
				"audio_url": f"https://www.soundhelix.com/examples/mp3/SoundHelix-Song-{index}.mp3",
			})
			tracks.append(track)

		kavya = users[0]
		playlist = await create_playlist(db, kavya, {
			"name": "Electronic Vibes",
			"description": "Best electronic tracks for focus and energy",
			"is_public": True,
		})
		for track in tracks:
			if track["category"] == "song":
				await add_track(db, kavya, playlist["id"], track["id"])
				await toggle_like(db, kavya.id, track["id"])
				await play_track(db, kavya, track["id"], track["durationInSeconds"])

	logger.info(f"Seeded {1 + len(users)} users, {len(tracks)} tracks, 1 playlist")
	return {"users": 1 + len(users), "tracks": len(tracks), "playlists": 1}


def main() -> None:
	logging.basicConfig(level=logging.INFO)
	settings = Settings.from_file_or_default()
	result = asyncio.run(seed(settings))
	print(f"Seeded database at {settings.database.path}: {result}")
	print(f"Admin login: {settings.seed.admin_email}")


if __name__ == "__main__":
	main()
