"""Accounts: registration, login, sessions, profile/settings and the user's track interactions."""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import aiosqlite
from fastapi import APIRouter, Depends, Request, Response
from pydantic.alias_generators import to_camel

from database import fetch_all, fetch_one, get_db, transaction
from errors import AuthenticationError, AuthorizationError, ConflictError, NotFoundError
from helpers import load_json, utcnow
from ratelimit import auth_attempts
from schemas import (
	ChangePasswordRequest,
	LoginRequest,
	PlayTrackRequest,
	RegisterRequest,
	UpdateProfileRequest,
	UpdateSettingsRequest,
)
from security import Principal, clear_session, current_principal, hash_password, issue_session, verify_password
from tracks import increment_plays, toggle_like, track_out


logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
	"crossfade": False,
	"gaplessPlayback": True,
	"normalizeVolume": False,
	"streamingQuality": "normal",
	"downloadQuality": "normal",
	"autoDownload": False,
	"wifiOnly": True,
	"notifications": True,
	"language": "English",
}

# columns a registration or seed may set besides name/email/password
CREATE_EXTRAS = {
	"role", "user_type", "profile_picture", "is_email_verified",
	"total_songs_played", "total_hours_listened", "favorite_genre",
}


def subscription_values(user_type: str, plan: str = "monthly") -> dict:
	"""Columns describing the subscription that goes with an account tier."""
	if user_type == "premium":
		start = datetime.now(timezone.utc)
		days = 365 if plan == "yearly" else 30
		return {
			"user_type": "premium",
			"subscription_status": "active",
			"subscription_start": start.isoformat(),
			"subscription_end": (start + timedelta(days=days)).isoformat(),
			"subscription_plan": plan,
		}
	return {
		"user_type": "regular",
		"subscription_status": "inactive",
		"subscription_start": None,
		"subscription_end": None,
		"subscription_plan": "monthly",
	}


def user_out(row, liked_tracks: list | None = None, playlists: list | None = None) -> dict:
	return {
		"id": row["id"],
		"name": row["name"],
		"email": row["email"],
		"profilePicture": row["profile_picture"],
		"role": row["role"],
		"userType": row["user_type"],
		"isEmailVerified": bool(row["is_email_verified"]),
		"subscription": {
			"status": row["subscription_status"],
			"startDate": row["subscription_start"],
			"endDate": row["subscription_end"],
			"plan": row["subscription_plan"],
		},
		"likedTracks": liked_tracks or [],
		"playlists": playlists or [],
		"listeningStats": {
			"totalSongsPlayed": row["total_songs_played"],
			"totalHoursListened": row["total_hours_listened"],
			"favoriteGenre": row["favorite_genre"],
		},
		"settings": {**DEFAULT_SETTINGS, **load_json(row["settings"], {})},
		"lastLogin": row["last_login"],
		"isActive": bool(row["is_active"]),
		"createdAt": row["created_at"],
		"updatedAt": row["updated_at"],
	}


async def require_user(db: aiosqlite.Connection, user_id: int):
	row = await fetch_one(db, "SELECT * FROM user WHERE id = ?", (user_id,))
	if not row:
		raise NotFoundError("User not found")
	return row


async def user_document(db: aiosqlite.Connection, row, populate: bool = False) -> dict:
	"""Serializes a user with liked track and playlist references resolved as ids or documents."""
	if populate:
		liked = await liked_tracks(db, row["id"])
		playlist_rows = await fetch_all(
			db,
			"""
			SELECT p.id, p.name, p.cover_image, p.total_duration, p.is_public,
				(SELECT COUNT(*) FROM playlist_track pt WHERE pt.playlist_id = p.id) AS track_count
			FROM playlist p WHERE p.owner_id = ? ORDER BY p.created_at DESC, p.id DESC
			""",
			(row["id"],),
		)
		playlists = [
			{
				"id": p["id"],
				"name": p["name"],
				"coverImage": p["cover_image"],
				"totalDuration": p["total_duration"],
				"isPublic": bool(p["is_public"]),
				"trackCount": p["track_count"],
			}
			for p in playlist_rows
		]
	else:
		liked = [r["track_id"] for r in await fetch_all(
			db, "SELECT track_id FROM user_liked_track WHERE user_id = ? ORDER BY liked_at", (row["id"],)
		)]
		playlists = [r["id"] for r in await fetch_all(
			db, "SELECT id FROM playlist WHERE owner_id = ? ORDER BY created_at", (row["id"],)
		)]
	return user_out(row, liked, playlists)


async def update_user_columns(db: aiosqlite.Connection, user_id: int, values: dict) -> None:
	if not values:
		return
	values = {**values, "updated_at": utcnow()}
	assignments = ", ".join(f"{column} = ?" for column in values)
	try:
		cur = await db.execute(f"UPDATE user SET {assignments} WHERE id = ?", [*values.values(), user_id])
	except aiosqlite.IntegrityError:
		raise ConflictError("Email is already in use")
	if cur.rowcount == 0:
		raise NotFoundError("User not found")


async def register(db: aiosqlite.Connection, name: str, email: str, password: str, **extra) -> aiosqlite.Row:
	"""Creates an account; the storage-level unique index on email decides duplicates."""
	now = utcnow()
	values = {
		"name": name,
		"email": email.strip().lower(),
		"password_hash": await hash_password(password),
		"created_at": now,
		"updated_at": now,
		"last_login": now,
	}
	values.update({k: v for k, v in extra.items() if k in CREATE_EXTRAS})
	if values.get("user_type") == "premium":
		values.update(subscription_values("premium"))

	columns = ", ".join(values)
	marks = ", ".join("?" for _ in values)
	try:
		cur = await db.execute(f"INSERT INTO user ({columns}) VALUES ({marks})", list(values.values()))
	except aiosqlite.IntegrityError:
		raise ConflictError("User already exists with this email")
	logger.info(f"User {cur.lastrowid} registered")
	return await require_user(db, cur.lastrowid)


async def authenticate(db: aiosqlite.Connection, email: str, password: str) -> aiosqlite.Row:
	row = await fetch_one(db, "SELECT * FROM user WHERE email = ?", (email.strip().lower(),))
	# same answer for unknown email and wrong password
	if not row or not await verify_password(row["password_hash"], password):
		raise AuthenticationError("Invalid email or password")
	if not row["is_active"]:
		raise AuthorizationError("Account is deactivated")
	await db.execute("UPDATE user SET last_login = ? WHERE id = ?", (utcnow(), row["id"]))
	return await require_user(db, row["id"])


async def change_password(db: aiosqlite.Connection, principal: Principal, current: str, new: str) -> aiosqlite.Row:
	row = await require_user(db, principal.id)
	if not await verify_password(row["password_hash"], current):
		raise AuthenticationError("Current password is incorrect")
	await update_user_columns(db, principal.id, {"password_hash": await hash_password(new)})
	logger.info(f"User {principal.id} changed password")
	return await require_user(db, principal.id)


async def update_profile(db: aiosqlite.Connection, principal: Principal, changes: dict) -> dict:
	values = {k: v for k, v in changes.items() if k in ("name", "email", "profile_picture")}
	await update_user_columns(db, principal.id, values)
	return await user_document(db, await require_user(db, principal.id))


async def update_settings(db: aiosqlite.Connection, principal: Principal, changes: dict) -> dict:
	async with transaction(db):
		row = await require_user(db, principal.id)
		settings = {**DEFAULT_SETTINGS, **load_json(row["settings"], {})}
		settings.update({to_camel(k): v for k, v in changes.items()})
		await update_user_columns(db, principal.id, {"settings": json.dumps(settings)})
	return settings


async def liked_tracks(db: aiosqlite.Connection, user_id: int) -> list:
	rows = await fetch_all(
		db,
		"""
		SELECT t.*, u.name AS uploader_name, u.email AS uploader_email
		FROM user_liked_track l
		JOIN track t ON t.id = l.track_id
		LEFT JOIN user u ON u.id = t.uploaded_by
		WHERE l.user_id = ?
		ORDER BY l.liked_at DESC
		""",
		(user_id,),
	)
	return [track_out(row, liked=True) for row in rows]


async def play_track(db: aiosqlite.Connection, principal: Principal, track_id: int, duration: float | None = None) -> int:
	"""Records one play start: bumps the track counter and the listener's stats."""
	async with transaction(db):
		plays = await increment_plays(db, track_id)
		await db.execute(
			"""
			UPDATE user
			SET total_songs_played = total_songs_played + 1,
				total_hours_listened = total_hours_listened + ?
			WHERE id = ?
			""",
			((duration or 0) / 3600, principal.id),
		)
	return plays


async def upgrade_premium(db: aiosqlite.Connection, principal: Principal) -> dict:
	await update_user_columns(db, principal.id, subscription_values("premium", "monthly"))
	logger.info(f"User {principal.id} upgraded to premium")
	return await user_document(db, await require_user(db, principal.id))


auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


@auth_router.post("/register", status_code=201, dependencies=[Depends(auth_attempts)])
async def register_route(
	body: RegisterRequest,
	request: Request,
	response: Response,
	db: aiosqlite.Connection = Depends(get_db),
):
	user = await register(db, body.name, body.email, body.password)
	token = issue_session(response, request.app.state.settings.auth, user)
	return {
		"success": True,
		"message": "User registered successfully",
		"token": token,
		"user": await user_document(db, user),
	}


@auth_router.post("/login", dependencies=[Depends(auth_attempts)])
async def login_route(
	body: LoginRequest,
	request: Request,
	response: Response,
	db: aiosqlite.Connection = Depends(get_db),
):
	user = await authenticate(db, body.email, body.password)
	token = issue_session(response, request.app.state.settings.auth, user)
	return {
		"success": True,
		"message": "Login successful",
		"token": token,
		"user": await user_document(db, user),
	}


@auth_router.post("/logout")
async def logout_route(request: Request, response: Response):
	clear_session(response, request.app.state.settings.auth)
	return {"success": True, "message": "Logged out successfully"}


@auth_router.get("/me")
async def me_route(
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	return {"success": True, "user": await user_document(db, await require_user(db, principal.id))}


@auth_router.put("/password")
async def change_password_route(
	body: ChangePasswordRequest,
	request: Request,
	response: Response,
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	user = await change_password(db, principal, body.current_password, body.new_password)
	token = issue_session(response, request.app.state.settings.auth, user)
	return {"success": True, "message": "Password updated successfully", "token": token}


router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/profile")
async def get_profile(
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	row = await require_user(db, principal.id)
	return {"success": True, "user": await user_document(db, row, populate=True)}


@router.put("/profile")
async def update_profile_route(
	body: UpdateProfileRequest,
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	user = await update_profile(db, principal, body.changes())
	return {"success": True, "message": "Profile updated successfully", "user": user}


@router.put("/settings")
async def update_settings_route(
	body: UpdateSettingsRequest,
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	settings = await update_settings(db, principal, body.changes())
	return {"success": True, "message": "Settings updated successfully", "settings": settings}


@router.post("/like-track/{track_id}")
async def like_track_route(
	track_id: int,
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	result = await toggle_like(db, principal.id, track_id)
	return {
		"success": True,
		"message": "Track liked" if result["liked"] else "Track unliked",
		**result,
	}


@router.get("/liked-tracks")
async def liked_tracks_route(
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	tracks = await liked_tracks(db, principal.id)
	return {"success": True, "count": len(tracks), "data": tracks}


@router.post("/play-track/{track_id}")
async def play_track_route(
	track_id: int,
	body: Optional[PlayTrackRequest] = None,
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	plays = await play_track(db, principal, track_id, body.duration if body else None)
	return {"success": True, "message": "Play recorded", "plays": plays}


@router.put("/upgrade-premium")
async def upgrade_premium_route(
	principal: Principal = Depends(current_principal),
	db: aiosqlite.Connection = Depends(get_db),
):
	user = await upgrade_premium(db, principal)
	return {"success": True, "message": "Upgraded to premium successfully", "user": user}
