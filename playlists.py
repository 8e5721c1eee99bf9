"""User playlists: visibility rules, owner-only writes and membership with a derived total duration."""

import logging

import aiosqlite
from fastapi import APIRouter, Depends

from aggregates import recompute_playlist_duration
from database import fetch_all, fetch_one, fetch_value, get_db, transaction
from errors import AuthorizationError, NotFoundError
from helpers import page_envelope, paginate, utcnow
from schemas import PlaylistCreate, PlaylistUpdate
from security import Principal, current_principal
from tracks import require_track, track_out


logger = logging.getLogger(__name__)

SELECT_PLAYLIST = """
	SELECT p.*, u.name AS owner_name, u.profile_picture AS owner_picture
	FROM playlist p
	JOIN user u ON u.id = p.owner_id
"""

NEWEST_FIRST = "ORDER BY p.created_at DESC, p.id DESC"

WRITABLE = {"name", "description", "cover_image", "is_public"}


def playlist_out(row, entries: list | None = None) -> dict:
	entries = entries or []
	return {
		"id": row["id"],
		"name": row["name"],
		"description": row["description"],
		"coverImage": row["cover_image"],
		"owner": {
			"id": row["owner_id"],
			"name": row["owner_name"],
			"profilePicture": row["owner_picture"],
		},
		"isPublic": bool(row["is_public"]),
		"totalDuration": row["total_duration"],
		"trackCount": len(entries),
		"tracks": entries,
		"createdAt": row["created_at"],
		"updatedAt": row["updated_at"],
	}


async def playlist_entries(db: aiosqlite.Connection, playlist_ids: list[int]) -> dict[int, list]:
	"""Membership of each playlist in insertion order, with the tracks populated."""
	entries = {playlist_id: [] for playlist_id in playlist_ids}
	if not playlist_ids:
		return entries
	marks = ", ".join("?" for _ in playlist_ids)
	rows = await fetch_all(
		db,
		f"""
		SELECT pt.playlist_id, pt.added_at, t.*, u.name AS uploader_name, u.email AS uploader_email
		FROM playlist_track pt
		JOIN track t ON t.id = pt.track_id
		LEFT JOIN user u ON u.id = t.uploaded_by
		WHERE pt.playlist_id IN ({marks})
		ORDER BY pt.added_at, pt.rowid
		""",
		playlist_ids,
	)
	for row in rows:
		entries[row["playlist_id"]].append({"track": track_out(row), "addedAt": row["added_at"]})
	return entries


async def populate(db: aiosqlite.Connection, rows) -> list:
	entries = await playlist_entries(db, [row["id"] for row in rows])
	return [playlist_out(row, entries[row["id"]]) for row in rows]


async def require_playlist(db: aiosqlite.Connection, playlist_id: int):
	row = await fetch_one(db, SELECT_PLAYLIST + " WHERE p.id = ?", (playlist_id,))
	if not row:
		raise NotFoundError("Playlist not found")
	return row


async def _owned_playlist(db: aiosqlite.Connection, principal: Principal, playlist_id: int):
	row = await require_playlist(db, playlist_id)
	principal.require_ownership(row["owner_id"], admin_override=False)
	return row


async def _reload(db: aiosqlite.Connection, playlist_id: int) -> dict:
	return (await populate(db, [await require_playlist(db, playlist_id)]))[0]


async def list_playlists(db: aiosqlite.Connection, principal: Principal, page: int = 1, limit: int = 20) -> dict:
	size, offset = paginate(page, limit)
	where = " WHERE (p.owner_id = ? OR p.is_public = 1)"
	count = await fetch_value(db, "SELECT COUNT(*) FROM playlist p" + where, (principal.id,))
	rows = await fetch_all(
		db, f"{SELECT_PLAYLIST}{where} {NEWEST_FIRST} LIMIT ? OFFSET ?", (principal.id, size, offset)
	)
	return page_envelope(await populate(db, rows), count, page, limit)


async def my_playlists(db: aiosqlite.Connection, principal: Principal) -> list:
	rows = await fetch_all(db, f"{SELECT_PLAYLIST} WHERE p.owner_id = ? {NEWEST_FIRST}", (principal.id,))
	return await populate(db, rows)


async def get_playlist(db: aiosqlite.Connection, principal: Principal, playlist_id: int) -> dict:
	row = await require_playlist(db, playlist_id)
	if not row["is_public"]:
		try:
			principal.require_ownership(row["owner_id"], admin_override=False)
		except AuthorizationError:
			raise AuthorizationError("You do not have access to this playlist")
	return (await populate(db, [row]))[0]


async def create_playlist(db: aiosqlite.Connection, principal: Principal, fields: dict) -> dict:
	values = {k: v for k, v in fields.items() if k in WRITABLE}
	if "is_public" in values:
		values["is_public"] = int(values["is_public"])
	now = utcnow()
	values.update(owner_id=principal.id, created_at=now, updated_at=now)
	columns = ", ".join(values)
	marks = ", ".join("?" for _ in values)
	cur = await db.execute(f"INSERT INTO playlist ({columns}) VALUES ({marks})", list(values.values()))
	logger.info(f"Playlist {cur.lastrowid} created by user {principal.id}")
	return await _reload(db, cur.lastrowid)


async def update_playlist(db: aiosqlite.Connection, principal: Principal, playlist_id: int, fields: dict) -> dict:
	await _owned_playlist(db, principal, playlist_id)
	values = {k: v for k, v in fields.items() if k in WRITABLE}
	if "is_public" in values:
		values["is_public"] = int(values["is_public"])
	if values:
		values["updated_at"] = utcnow()
		assignments = ", ".join(f"{column} = ?" for column in values)
		await db.execute(f"UPDATE playlist SET {assignments} WHERE id = ?", [*values.values(), playlist_id])
	return await _reload(db, playlist_id)


async def delete_playlist(db: aiosqlite.Connection, principal: Principal, playlist_id: int) -> None:
	await _owned_playlist(db, principal, playlist_id)
	# membership rows go with it (ON DELETE CASCADE)
	await db.execute("DELETE FROM playlist WHERE id = ?", (playlist_id,))
	logger.info(f"Playlist {playlist_id} deleted by user {principal.id}")


async def add_track(db: aiosqlite.Connection, principal: Principal, playlist_id: int, track_id: int) -> dict:
	"""Adds a track once; adding an existing member changes nothing."""
	async with transaction(db):
		await _owned_playlist(db, principal, playlist_id)
		await require_track(db, track_id, published_only=not principal.is_admin)
		cur = await db.execute(
			"INSERT OR IGNORE INTO playlist_track (playlist_id, track_id, added_at) VALUES (?, ?, ?)",
			(playlist_id, track_id, utcnow()),
		)
		if cur.rowcount:
			await recompute_playlist_duration(db, playlist_id)
	return await _reload(db, playlist_id)


async def remove_track(db: aiosqlite.Connection, principal: Principal, playlist_id: int, track_id: int) -> dict:
	async with transaction(db):
		await _owned_playlist(db, principal, playlist_id)
		await db.execute(
			"DELETE FROM playlist_track WHERE playlist_id = ? AND track_id = ?", (playlist_id, track_id)
		)
		await recompute_playlist_duration(db, playlist_id)
	return await _reload(db, playlist_id)


router = APIRouter(prefix="/api/playlists", tags=["playlists"])


@router.get("")
async def list_playlists_route(
	page: int = 1,
	limit: int = 20,
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	return await list_playlists(db, principal, page, limit)


@router.get("/my")
async def my_playlists_route(
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	playlists = await my_playlists(db, principal)
	return {"success": True, "count": len(playlists), "data": playlists}


@router.get("/{playlist_id}")
async def get_playlist_route(
	playlist_id: int,
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	return {"success": True, "playlist": await get_playlist(db, principal, playlist_id)}


@router.post("", status_code=201)
async def create_playlist_route(
	body: PlaylistCreate,
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	playlist = await create_playlist(db, principal, body.changes())
	return {"success": True, "message": "Playlist created successfully", "playlist": playlist}


@router.put("/{playlist_id}")
async def update_playlist_route(
	playlist_id: int,
	body: PlaylistUpdate,
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	playlist = await update_playlist(db, principal, playlist_id, body.changes())
	return {"success": True, "message": "Playlist updated successfully", "playlist": playlist}


@router.delete("/{playlist_id}")
async def delete_playlist_route(
	playlist_id: int,
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	await delete_playlist(db, principal, playlist_id)
	return {"success": True, "message": "Playlist deleted successfully"}


@router.post("/{playlist_id}/tracks/{track_id}")
async def add_track_route(
	playlist_id: int,
	track_id: int,
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	playlist = await add_track(db, principal, playlist_id, track_id)
	return {"success": True, "message": "Track added to playlist", "playlist": playlist}


@router.delete("/{playlist_id}/tracks/{track_id}")
async def remove_track_route(
	playlist_id: int,
	track_id: int,
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	playlist = await remove_track(db, principal, playlist_id, track_id)
	return {"success": True, "message": "Track removed from playlist", "playlist": playlist}
