"""Track catalog: listing, lookup, admin CRUD and the play/like counters."""

import json
import logging
from typing import Optional

import aiosqlite
from fastapi import APIRouter, Depends, Query

from aggregates import add_like, playlists_containing, recompute_playlists, remove_like
from database import fetch_all, fetch_one, fetch_value, get_db, transaction
from errors import ConflictError, NotFoundError
from helpers import load_json, order_by, page_envelope, paginate, parse_duration, search_clause, utcnow
from schemas import TrackCreate, TrackUpdate
from security import Principal, admin_principal, optional_principal


logger = logging.getLogger(__name__)

SELECT_TRACK = """
	SELECT t.*, u.name AS uploader_name, u.email AS uploader_email
	FROM track t
	LEFT JOIN user u ON u.id = t.uploaded_by
"""

SORT_FIELDS = {
	"createdAt": "created_at",
	"updatedAt": "updated_at",
	"title": "title",
	"artist": "artist",
	"album": "album",
	"genre": "genre",
	"plays": "plays",
	"likes": "likes",
	"duration": "duration_seconds",
	"durationInSeconds": "duration_seconds",
}

WRITABLE = {
	"title", "artist", "album", "duration", "category", "genre", "cover_image",
	"audio_url", "is_published", "spotify_id", "spotify_data",
}

SEARCH_COLUMNS = ["t.title", "t.artist", "t.album"]


def track_out(row, liked: bool | None = None, with_email: bool = False) -> dict:
	uploader = None
	if row["uploaded_by"] is not None:
		uploader = {"id": row["uploaded_by"], "name": row["uploader_name"]}
		if with_email:
			uploader["email"] = row["uploader_email"]
	data = {
		"id": row["id"],
		"title": row["title"],
		"artist": row["artist"],
		"album": row["album"],
		"coverImage": row["cover_image"],
		"audioUrl": row["audio_url"],
		"duration": row["duration"],
		"durationInSeconds": row["duration_seconds"],
		"category": row["category"],
		"genre": row["genre"],
		"plays": row["plays"],
		"likes": row["likes"],
		"uploadedBy": uploader,
		"isPublished": bool(row["is_published"]),
		"spotifyId": row["spotify_id"],
		"spotifyData": load_json(row["spotify_data"]),
		"createdAt": row["created_at"],
		"updatedAt": row["updated_at"],
	}
	if liked is not None:
		data["liked"] = liked
	return data


def _column_values(fields: dict) -> dict:
	values = {k: v for k, v in fields.items() if k in WRITABLE}
	if "duration" in values:
		values["duration_seconds"] = parse_duration(values["duration"])
	if "is_published" in values:
		values["is_published"] = int(values["is_published"])
	if values.get("spotify_data") is not None:
		values["spotify_data"] = json.dumps(values["spotify_data"])
	return values


async def liked_track_ids(db: aiosqlite.Connection, principal: Principal | None) -> set[int]:
	if principal is None:
		return set()
	rows = await fetch_all(
		db, "SELECT track_id FROM user_liked_track WHERE user_id = ?", (principal.id,)
	)
	return {row["track_id"] for row in rows}


async def require_track(db: aiosqlite.Connection, track_id: int, published_only: bool = False):
	row = await fetch_one(db, SELECT_TRACK + " WHERE t.id = ?", (track_id,))
	if not row or (published_only and not row["is_published"]):
		raise NotFoundError("Track not found")
	return row


async def list_tracks(
	db: aiosqlite.Connection,
	principal: Principal | None,
	*,
	category: str | None = None,
	genre: str | None = None,
	search: str | None = None,
	page: int = 1,
	limit: int = 20,
	sort: str = "-createdAt",
	include_unpublished: bool = False,
	is_published: bool | None = None,
) -> dict:
	"""Paginated track listing; unpublished tracks are only visible to admins who ask for them."""
	size, offset = paginate(page, limit)
	where, params = [], []

	if include_unpublished and principal is not None and principal.is_admin:
		if is_published is not None:
			where.append("t.is_published = ?")
			params.append(int(is_published))
	else:
		where.append("t.is_published = 1")
	if category:
		where.append("t.category = ?")
		params.append(category)
	if genre:
		where.append("t.genre = ?")
		params.append(genre)
	clause, search_params = search_clause(search, SEARCH_COLUMNS)
	if clause:
		where.append(clause)
		params.extend(search_params)

	where_sql = (" WHERE " + " AND ".join(where)) if where else ""
	count = await fetch_value(db, "SELECT COUNT(*) FROM track t" + where_sql, params)
	rows = await fetch_all(
		db,
		f"{SELECT_TRACK}{where_sql} {order_by(sort, SORT_FIELDS, 't')} LIMIT ? OFFSET ?",
		[*params, size, offset],
	)

	liked = await liked_track_ids(db, principal)
	admin_view = principal is not None and principal.is_admin
	items = [track_out(row, row["id"] in liked, with_email=admin_view) for row in rows]
	return page_envelope(items, count, page, limit)


async def ranked_tracks(
	db: aiosqlite.Connection,
	principal: Principal | None,
	sort: str,
	limit: int = 10,
	category: str | None = None,
	published_only: bool = True,
) -> list:
	size, _ = paginate(1, limit)
	where, params = [], []
	if published_only:
		where.append("t.is_published = 1")
	if category:
		where.append("t.category = ?")
		params.append(category)
	where_sql = (" WHERE " + " AND ".join(where)) if where else ""
	rows = await fetch_all(
		db, f"{SELECT_TRACK}{where_sql} {order_by(sort, SORT_FIELDS, 't')} LIMIT ?", [*params, size]
	)
	liked = await liked_track_ids(db, principal)
	return [track_out(row, row["id"] in liked) for row in rows]


async def get_track(db: aiosqlite.Connection, track_id: int, principal: Principal | None = None) -> dict:
	admin_view = principal is not None and principal.is_admin
	row = await require_track(db, track_id, published_only=not admin_view)
	liked = False
	if principal is not None:
		liked = await fetch_value(
			db,
			"SELECT 1 FROM user_liked_track WHERE user_id = ? AND track_id = ?",
			(principal.id, track_id),
		) is not None
	return track_out(row, liked, with_email=True)


async def create_track(db: aiosqlite.Connection, principal: Principal, fields: dict) -> dict:
	principal.require_role("admin")
	values = _column_values(fields)
	now = utcnow()
	values.update(uploaded_by=principal.id, created_at=now, updated_at=now)

	columns = ", ".join(values)
	marks = ", ".join("?" for _ in values)
	try:
		cur = await db.execute(f"INSERT INTO track ({columns}) VALUES ({marks})", list(values.values()))
	except aiosqlite.IntegrityError:
		raise ConflictError("Track with this Spotify ID already exists")
	logger.info(f"Track {cur.lastrowid} created by user {principal.id}")
	return track_out(await require_track(db, cur.lastrowid), with_email=True)


async def update_track(db: aiosqlite.Connection, principal: Principal, track_id: int, fields: dict) -> dict:
	principal.require_role("admin")
	values = _column_values(fields)
	async with transaction(db):
		await require_track(db, track_id)
		if values:
			values["updated_at"] = utcnow()
			assignments = ", ".join(f"{column} = ?" for column in values)
			try:
				await db.execute(
					f"UPDATE track SET {assignments} WHERE id = ?", [*values.values(), track_id]
				)
			except aiosqlite.IntegrityError:
				raise ConflictError("Track with this Spotify ID already exists")
			if "duration_seconds" in values:
				await recompute_playlists(db, await playlists_containing(db, track_id))
	return track_out(await require_track(db, track_id), with_email=True)


async def delete_track(db: aiosqlite.Connection, principal: Principal, track_id: int) -> None:
	"""Hard delete; memberships cascade and the affected playlists are re-totalled."""
	principal.require_role("admin")
	async with transaction(db):
		await require_track(db, track_id)
		affected = await playlists_containing(db, track_id)
		await db.execute("DELETE FROM track WHERE id = ?", (track_id,))
		await recompute_playlists(db, affected)
	logger.info(f"Track {track_id} deleted by user {principal.id}, {len(affected)} playlists updated")


async def increment_plays(db: aiosqlite.Connection, track_id: int) -> int:
	cur = await db.execute("UPDATE track SET plays = plays + 1 WHERE id = ?", (track_id,))
	if cur.rowcount == 0:
		raise NotFoundError("Track not found")
	return await fetch_value(db, "SELECT plays FROM track WHERE id = ?", (track_id,))


async def toggle_like(db: aiosqlite.Connection, user_id: int, track_id: int) -> dict:
	"""
	Flips the user's like on a track and returns the resulting state.

	The membership row is removed if present, otherwise inserted; the
	counter moves according to which of the two actually happened, inside
	the same write transaction.
	"""
	async with transaction(db):
		await require_track(db, track_id)
		cur = await db.execute(
			"DELETE FROM user_liked_track WHERE user_id = ? AND track_id = ?", (user_id, track_id)
		)
		if cur.rowcount:
			liked = False
			await remove_like(db, track_id)
		else:
			await db.execute(
				"INSERT INTO user_liked_track (user_id, track_id, liked_at) VALUES (?, ?, ?)",
				(user_id, track_id, utcnow()),
			)
			liked = True
			await add_like(db, track_id)
		likes = await fetch_value(db, "SELECT likes FROM track WHERE id = ?", (track_id,))
	return {"liked": liked, "likes": likes}


router = APIRouter(prefix="/api/tracks", tags=["tracks"])


@router.get("")
async def list_tracks_route(
	page: int = 1,
	limit: int = 20,
	category: Optional[str] = None,
	genre: Optional[str] = None,
	search: Optional[str] = None,
	sort: str = "-createdAt",
	include_unpublished: bool = Query(False, alias="includeUnpublished"),
	principal: Principal | None = Depends(optional_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	return await list_tracks(
		db, principal,
		category=category, genre=genre, search=search,
		page=page, limit=limit, sort=sort,
		include_unpublished=include_unpublished,
	)


@router.get("/trending/top")
async def trending_tracks(
	limit: int = 10,
	category: Optional[str] = None,
	principal: Principal | None = Depends(optional_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	tracks = await ranked_tracks(db, principal, "-plays -likes", limit, category)
	return {"success": True, "count": len(tracks), "data": tracks}


@router.get("/recent/added")
async def recent_tracks(
	limit: int = 10,
	category: Optional[str] = None,
	principal: Principal | None = Depends(optional_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	tracks = await ranked_tracks(db, principal, "-createdAt", limit, category)
	return {"success": True, "count": len(tracks), "data": tracks}


@router.get("/{track_id}")
async def get_track_route(
	track_id: int,
	principal: Principal | None = Depends(optional_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	return {"success": True, "track": await get_track(db, track_id, principal)}


@router.post("", status_code=201)
async def create_track_route(
	body: TrackCreate,
	principal: Principal = Depends(admin_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	track = await create_track(db, principal, body.changes())
	return {"success": True, "message": "Track created successfully", "track": track}


@router.put("/{track_id}")
async def update_track_route(
	track_id: int,
	body: TrackUpdate,
	principal: Principal = Depends(admin_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	track = await update_track(db, principal, track_id, body.changes())
	return {"success": True, "message": "Track updated successfully", "track": track}


@router.delete("/{track_id}")
async def delete_track_route(
	track_id: int,
	principal: Principal = Depends(admin_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	await delete_track(db, principal, track_id)
	return {"success": True, "message": "Track deleted successfully"}
