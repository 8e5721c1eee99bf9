"""Admin dashboard: statistics, user management and catalog overview."""

import logging
from datetime import datetime, timezone
from typing import Optional

import aiosqlite
from fastapi import APIRouter, Depends, Query
from kombu.exceptions import OperationalError

from aggregates import release_user_likes
from database import fetch_all, fetch_value, get_db, transaction
from errors import UpstreamError
from helpers import order_by, page_envelope, paginate, search_clause
from schemas import AdminUserUpdate
from security import Principal, admin_principal
from tasks import reconcile
from tracks import list_tracks, ranked_tracks
from users import require_user, subscription_values, update_user_columns, user_document, user_out


logger = logging.getLogger(__name__)

USER_SORT_FIELDS = {
	"createdAt": "created_at",
	"name": "name",
	"email": "email",
	"lastLogin": "last_login",
}


async def dashboard_stats(db: aiosqlite.Connection) -> dict:
	today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
	return {
		"totalUsers": await fetch_value(db, "SELECT COUNT(*) FROM user WHERE role = 'user'"),
		"totalTracks": await fetch_value(db, "SELECT COUNT(*) FROM track"),
		"totalSongs": await fetch_value(db, "SELECT COUNT(*) FROM track WHERE category = 'song'"),
		"totalPodcasts": await fetch_value(db, "SELECT COUNT(*) FROM track WHERE category = 'podcast'"),
		"totalStreams": await fetch_value(db, "SELECT COALESCE(SUM(plays), 0) FROM track"),
		"totalPlaylists": await fetch_value(db, "SELECT COUNT(*) FROM playlist"),
		"premiumUsers": await fetch_value(db, "SELECT COUNT(*) FROM user WHERE user_type = 'premium'"),
		"newUsersToday": await fetch_value(
			db, "SELECT COUNT(*) FROM user WHERE created_at >= ?", (today.isoformat(),)
		),
	}


async def list_users(
	db: aiosqlite.Connection,
	page: int = 1,
	limit: int = 20,
	search: str | None = None,
	user_type: str | None = None,
	role: str | None = None,
	sort: str = "-createdAt",
) -> dict:
	size, offset = paginate(page, limit)
	where, params = [], []
	clause, search_params = search_clause(search, ["user.name", "user.email"])
	if clause:
		where.append(clause)
		params.extend(search_params)
	if user_type:
		where.append("user.user_type = ?")
		params.append(user_type)
	if role:
		where.append("user.role = ?")
		params.append(role)
	where_sql = (" WHERE " + " AND ".join(where)) if where else ""

	count = await fetch_value(db, "SELECT COUNT(*) FROM user" + where_sql, params)
	rows = await fetch_all(
		db,
		f"SELECT * FROM user{where_sql} {order_by(sort, USER_SORT_FIELDS, 'user')} LIMIT ? OFFSET ?",
		[*params, size, offset],
	)
	return page_envelope([user_out(row) for row in rows], count, page, limit)


async def update_user(db: aiosqlite.Connection, user_id: int, changes: dict) -> dict:
	values = {}
	if "role" in changes:
		values["role"] = changes["role"]
	if "is_active" in changes:
		values["is_active"] = int(changes["is_active"])
	if "user_type" in changes:
		# premium granted by an admin runs for a year
		values.update(subscription_values(changes["user_type"], plan="yearly"))
	await require_user(db, user_id)
	await update_user_columns(db, user_id, values)
	logger.info(f"User {user_id} updated by admin: {sorted(values)}")
	return await user_document(db, await require_user(db, user_id))


async def delete_user(db: aiosqlite.Connection, principal: Principal, user_id: int) -> None:
	"""
	Removes an account with its playlists and likes. The like counters of
	every track the user liked are taken back in the same transaction.
	"""
	principal.require_role("admin")
	await require_user(db, user_id)
	principal.require_other(user_id, "Cannot delete your own account")
	async with transaction(db):
		released = await release_user_likes(db, user_id)
		await db.execute("DELETE FROM user WHERE id = ?", (user_id,))
	logger.info(f"User {user_id} deleted by admin {principal.id}, {released} likes released")


async def recent_activity(db: aiosqlite.Connection, limit: int = 5) -> dict:
	users = await fetch_all(
		db, "SELECT id, name, email, created_at FROM user ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
	)
	tracks = await fetch_all(
		db,
		"""
		SELECT t.id, t.title, t.artist, t.created_at, u.id AS uploader_id, u.name AS uploader_name
		FROM track t LEFT JOIN user u ON u.id = t.uploaded_by
		ORDER BY t.created_at DESC, t.id DESC LIMIT ?
		""",
		(limit,),
	)
	playlists = await fetch_all(
		db,
		"""
		SELECT p.id, p.name, p.created_at, u.id AS owner_id, u.name AS owner_name
		FROM playlist p JOIN user u ON u.id = p.owner_id
		ORDER BY p.created_at DESC, p.id DESC LIMIT ?
		""",
		(limit,),
	)
	return {
		"recentUsers": [
			{"id": r["id"], "name": r["name"], "email": r["email"], "createdAt": r["created_at"]}
			for r in users
		],
		"recentTracks": [
			{
				"id": r["id"],
				"title": r["title"],
				"artist": r["artist"],
				"createdAt": r["created_at"],
				"uploadedBy": {"id": r["uploader_id"], "name": r["uploader_name"]} if r["uploader_id"] else None,
			}
			for r in tracks
		],
		"recentPlaylists": [
			{
				"id": r["id"],
				"name": r["name"],
				"createdAt": r["created_at"],
				"owner": {"id": r["owner_id"], "name": r["owner_name"]},
			}
			for r in playlists
		],
	}


router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(admin_principal)])


@router.get("/stats")
async def stats_route(db: aiosqlite.Connection = Depends(get_db)):
	return {"success": True, "stats": await dashboard_stats(db)}


@router.get("/users")
async def list_users_route(
	page: int = 1,
	limit: int = 20,
	search: Optional[str] = None,
	user_type: Optional[str] = Query(None, alias="userType"),
	role: Optional[str] = None,
	sort: str = "-createdAt",
	db: aiosqlite.Connection = Depends(get_db),
):
	return await list_users(db, page, limit, search, user_type, role, sort)


@router.get("/users/{user_id}")
async def get_user_route(user_id: int, db: aiosqlite.Connection = Depends(get_db)):
	row = await require_user(db, user_id)
	return {"success": True, "user": await user_document(db, row, populate=True)}


@router.put("/users/{user_id}")
async def update_user_route(
	user_id: int,
	body: AdminUserUpdate,
	db: aiosqlite.Connection = Depends(get_db),
):
	user = await update_user(db, user_id, body.changes())
	return {"success": True, "message": "User updated successfully", "user": user}


@router.delete("/users/{user_id}")
async def delete_user_route(
	user_id: int,
	principal: Principal = Depends(admin_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	await delete_user(db, principal, user_id)
	return {"success": True, "message": "User deleted successfully"}


@router.get("/tracks")
async def list_all_tracks_route(
	page: int = 1,
	limit: int = 20,
	search: Optional[str] = None,
	category: Optional[str] = None,
	genre: Optional[str] = None,
	is_published: Optional[bool] = Query(None, alias="isPublished"),
	sort: str = "-createdAt",
	principal: Principal = Depends(admin_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	return await list_tracks(
		db, principal,
		category=category, genre=genre, search=search,
		page=page, limit=limit, sort=sort,
		include_unpublished=True, is_published=is_published,
	)


@router.get("/activity")
async def activity_route(db: aiosqlite.Connection = Depends(get_db)):
	return {"success": True, "activity": await recent_activity(db)}


@router.get("/top-content")
async def top_content_route(
	principal: Principal = Depends(admin_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	tracks = await ranked_tracks(db, principal, "-plays -likes", limit=10, published_only=False)
	return {"success": True, "topTracks": tracks}


@router.post("/reconcile", status_code=202)
async def reconcile_route(principal: Principal = Depends(admin_principal)):
	try:
		result = reconcile.delay()
	except OperationalError:
		logger.exception("Could not enqueue reconciliation")
		raise UpstreamError("Task queue unavailable")
	logger.info(f"Reconciliation {result.id} enqueued by admin {principal.id}")
	return {"success": True, "message": "Reconciliation enqueued", "taskId": result.id}
