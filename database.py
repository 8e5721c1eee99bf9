import logging
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite
from fastapi import Request


logger = logging.getLogger(__name__)

DEFAULT_COVER = "https://images.unsplash.com/photo-1644855640845-ab57a047320e?w=400"
DEFAULT_AVATAR = "https://ui-avatars.com/api/?name=User&background=10b981&color=fff"

SCHEMA = [
	f"""
	CREATE TABLE IF NOT EXISTS user (
		id INTEGER PRIMARY KEY AUTOINCREMENT,
		name TEXT NOT NULL,
		email TEXT NOT NULL UNIQUE,
		password_hash TEXT NOT NULL,
		profile_picture TEXT NOT NULL DEFAULT '{DEFAULT_AVATAR}',
		role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin')),
		user_type TEXT NOT NULL DEFAULT 'regular' CHECK (user_type IN ('regular', 'premium')),
		is_email_verified INTEGER NOT NULL DEFAULT 0,
		subscription_status TEXT NOT NULL DEFAULT 'inactive'
			CHECK (subscription_status IN ('active', 'inactive', 'cancelled')),
		subscription_start TEXT,
		subscription_end TEXT,
		subscription_plan TEXT NOT NULL DEFAULT 'monthly'
			CHECK (subscription_plan IN ('monthly', 'yearly')),
		total_songs_played INTEGER NOT NULL DEFAULT 0,
		total_hours_listened REAL NOT NULL DEFAULT 0,
		favorite_genre TEXT NOT NULL DEFAULT 'Not set',
		settings TEXT NOT NULL DEFAULT '{{}}',
		last_login TEXT,
		is_active INTEGER NOT NULL DEFAULT 1,
		created_at TEXT NOT NULL,
		updated_at TEXT NOT NULL
	)
	""",
	"CREATE INDEX IF NOT EXISTS idx_user_role ON user(role)",
	"CREATE INDEX IF NOT EXISTS idx_user_created ON user(created_at)",
	f"""
	CREATE TABLE IF NOT EXISTS track (
		id INTEGER PRIMARY KEY AUTOINCREMENT,
		title TEXT NOT NULL,
		artist TEXT NOT NULL,
		album TEXT NOT NULL DEFAULT 'Single',
		cover_image TEXT NOT NULL DEFAULT '{DEFAULT_COVER}',
		audio_url TEXT NOT NULL,
		duration TEXT NOT NULL DEFAULT '0:00',
		duration_seconds INTEGER NOT NULL DEFAULT 0,
		category TEXT NOT NULL DEFAULT 'song' CHECK (category IN ('song', 'podcast')),
		genre TEXT NOT NULL DEFAULT 'General',
		plays INTEGER NOT NULL DEFAULT 0 CHECK (plays >= 0),
		likes INTEGER NOT NULL DEFAULT 0 CHECK (likes >= 0),
		uploaded_by INTEGER REFERENCES user(id) ON DELETE SET NULL,
		is_published INTEGER NOT NULL DEFAULT 1,
		spotify_id TEXT UNIQUE,
		spotify_data TEXT,
		created_at TEXT NOT NULL,
		updated_at TEXT NOT NULL
	)
	""",
	"CREATE INDEX IF NOT EXISTS idx_track_category ON track(category, is_published)",
	"CREATE INDEX IF NOT EXISTS idx_track_plays ON track(plays)",
	"CREATE INDEX IF NOT EXISTS idx_track_created ON track(created_at)",
	"CREATE INDEX IF NOT EXISTS idx_track_uploader ON track(uploaded_by)",
	f"""
	CREATE TABLE IF NOT EXISTS playlist (
		id INTEGER PRIMARY KEY AUTOINCREMENT,
		name TEXT NOT NULL,
		description TEXT NOT NULL DEFAULT '',
		cover_image TEXT NOT NULL DEFAULT '{DEFAULT_COVER}',
		owner_id INTEGER NOT NULL REFERENCES user(id) ON DELETE CASCADE,
		is_public INTEGER NOT NULL DEFAULT 1,
		total_duration TEXT NOT NULL DEFAULT '0m',
		created_at TEXT NOT NULL,
		updated_at TEXT NOT NULL
	)
	""",
	"CREATE INDEX IF NOT EXISTS idx_playlist_owner ON playlist(owner_id)",
	"CREATE INDEX IF NOT EXISTS idx_playlist_public ON playlist(is_public)",
	"""
	CREATE TABLE IF NOT EXISTS playlist_track (
		playlist_id INTEGER NOT NULL REFERENCES playlist(id) ON DELETE CASCADE,
		track_id INTEGER NOT NULL REFERENCES track(id) ON DELETE CASCADE,
		added_at TEXT NOT NULL,
		PRIMARY KEY (playlist_id, track_id)
	)
	""",
	"CREATE INDEX IF NOT EXISTS idx_playlist_track_track ON playlist_track(track_id)",
	"""
	CREATE TABLE IF NOT EXISTS user_liked_track (
		user_id INTEGER NOT NULL REFERENCES user(id) ON DELETE CASCADE,
		track_id INTEGER NOT NULL REFERENCES track(id) ON DELETE CASCADE,
		liked_at TEXT NOT NULL,
		PRIMARY KEY (user_id, track_id)
	)
	""",
	"CREATE INDEX IF NOT EXISTS idx_liked_track ON user_liked_track(track_id)",
]


@asynccontextmanager
async def connect(path: Path):
	"""Open a connection in autocommit mode; multi-statement writes use transaction()."""
	async with aiosqlite.connect(path, isolation_level=None) as db:
		await db.execute("PRAGMA foreign_keys = ON")
		await db.execute("PRAGMA busy_timeout = 5000")
		db.row_factory = aiosqlite.Row
		yield db


async def get_db(request: Request):
	async with connect(request.app.state.settings.database.path) as db:
		yield db


@asynccontextmanager
async def transaction(db: aiosqlite.Connection):
	"""Run a block of writes atomically, taking the write lock up front."""
	await db.execute("BEGIN IMMEDIATE")
	try:
		yield db
	except BaseException:
		await db.execute("ROLLBACK")
		raise
	await db.execute("COMMIT")


async def init_db(path: Path) -> None:
	path.parent.mkdir(parents=True, exist_ok=True)
	async with connect(path) as db:
		await db.execute("PRAGMA journal_mode = WAL")
		for statement in SCHEMA:
			await db.execute(statement)


async def fetch_one(db: aiosqlite.Connection, sql: str, params=()) -> aiosqlite.Row | None:
	cur = await db.execute(sql, params)
	return await cur.fetchone()


async def fetch_all(db: aiosqlite.Connection, sql: str, params=()) -> list:
	cur = await db.execute(sql, params)
	return list(await cur.fetchall())


async def fetch_value(db: aiosqlite.Connection, sql: str, params=()):
	row = await fetch_one(db, sql, params)
	return row[0] if row else None


async def table_counts(db: aiosqlite.Connection) -> dict:
	counts = {}
	for table in ("user", "track", "playlist"):
		counts[table] = await fetch_value(db, f"SELECT COUNT(*) FROM {table}")
	return counts
