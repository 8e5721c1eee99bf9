"""
Derived fields kept in step with the rows they summarize.

- ``playlist.total_duration`` is the formatted sum of its member tracks'
  ``duration_seconds``. It is rewritten in the same transaction as any
  membership or track-duration change.
- ``track.likes`` mirrors the number of ``user_liked_track`` rows for the
  track. It is moved by single-statement increments driven off the join
  table write, and never below zero.

``reconcile_aggregates`` recomputes both from scratch and is the recovery
path if anything ever drifts.
"""

import logging

import aiosqlite

from database import fetch_all, fetch_value, transaction
from helpers import format_total_duration, utcnow


logger = logging.getLogger(__name__)

PLAYLIST_SECONDS_SQL = """
	SELECT COALESCE(SUM(t.duration_seconds), 0)
	FROM playlist_track pt
	JOIN track t ON t.id = pt.track_id
	WHERE pt.playlist_id = ?
"""


async def recompute_playlist_duration(db: aiosqlite.Connection, playlist_id: int) -> str:
	seconds = await fetch_value(db, PLAYLIST_SECONDS_SQL, (playlist_id,))
	total = format_total_duration(seconds or 0)
	await db.execute(
		"UPDATE playlist SET total_duration = ?, updated_at = ? WHERE id = ?",
		(total, utcnow(), playlist_id),
	)
	return total


async def playlists_containing(db: aiosqlite.Connection, track_id: int) -> list[int]:
	rows = await fetch_all(
		db, "SELECT playlist_id FROM playlist_track WHERE track_id = ?", (track_id,)
	)
	return [row["playlist_id"] for row in rows]


async def recompute_playlists(db: aiosqlite.Connection, playlist_ids) -> None:
	for playlist_id in playlist_ids:
		await recompute_playlist_duration(db, playlist_id)


async def add_like(db: aiosqlite.Connection, track_id: int) -> None:
	await db.execute("UPDATE track SET likes = likes + 1 WHERE id = ?", (track_id,))


async def remove_like(db: aiosqlite.Connection, track_id: int) -> None:
	await db.execute("UPDATE track SET likes = MAX(likes - 1, 0) WHERE id = ?", (track_id,))


async def release_user_likes(db: aiosqlite.Connection, user_id: int) -> int:
	"""Takes back every like a user holds before their like rows disappear."""
	cur = await db.execute(
		"""
		UPDATE track SET likes = MAX(likes - 1, 0)
		WHERE id IN (SELECT track_id FROM user_liked_track WHERE user_id = ?)
		""",
		(user_id,),
	)
	return cur.rowcount


async def reconcile_aggregates(db: aiosqlite.Connection) -> dict:
	"""Recompute like counters and playlist durations; returns how many rows were repaired."""
	async with transaction(db):
		cur = await db.execute("""
			UPDATE track
			SET likes = (SELECT COUNT(*) FROM user_liked_track l WHERE l.track_id = track.id)
			WHERE likes != (SELECT COUNT(*) FROM user_liked_track l WHERE l.track_id = track.id)
		""")
		tracks_fixed = cur.rowcount

		rows = await fetch_all(db, """
			SELECT p.id, p.total_duration, COALESCE(SUM(t.duration_seconds), 0) AS seconds
			FROM playlist p
			LEFT JOIN playlist_track pt ON pt.playlist_id = p.id
			LEFT JOIN track t ON t.id = pt.track_id
			GROUP BY p.id
		""")
		playlists_fixed = 0
		for row in rows:
			expected = format_total_duration(row["seconds"])
			if row["total_duration"] != expected:
				await db.execute(
					"UPDATE playlist SET total_duration = ? WHERE id = ?", (expected, row["id"])
				)
				playlists_fixed += 1

	if tracks_fixed or playlists_fixed:
		logger.warning(
			f"Reconciliation repaired {tracks_fixed} like counters and {playlists_fixed} playlist durations"
		)
	else:
		logger.info("Reconciliation found no drift")
	return {"tracks": tracks_fixed, "playlists": playlists_fixed}
