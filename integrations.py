"""Routes that proxy the external catalog and the blob store."""

import logging

import aiosqlite
from fastapi import APIRouter, Depends, File, Query, Request, UploadFile

from catalog_client import SpotifyClient
from database import get_db
from errors import ValidationError
from ratelimit import upload_quota
from schemas import SpotifyTracksRequest
from security import Principal, admin_principal, current_principal
from storage_client import SupabaseStorage
from tracks import create_track


logger = logging.getLogger(__name__)


def get_catalog(request: Request) -> SpotifyClient:
	return request.app.state.catalog


def get_storage(request: Request) -> SupabaseStorage:
	return request.app.state.storage


def track_fields_from_summary(summary: dict) -> dict:
	"""Column values for a catalog track imported from a Spotify summary."""
	fields = {
		"title": summary["title"][:100],
		"artist": summary["artist"][:100] or "Unknown",
		"album": (summary.get("album") or "Single")[:100],
		"duration": summary["duration"],
		"category": "song",
		"audio_url": summary.get("previewUrl") or summary.get("externalUrl") or "",
		"is_published": True,
		"spotify_id": summary["spotifyId"],
		"spotify_data": {
			"externalUrl": summary.get("externalUrl"),
			"previewUrl": summary.get("previewUrl"),
			"popularity": summary.get("popularity"),
			"explicit": summary.get("explicit"),
		},
	}
	if summary.get("coverImage"):
		fields["cover_image"] = summary["coverImage"]
	return fields


spotify_router = APIRouter(prefix="/api/spotify", tags=["spotify"])


@spotify_router.get("/search")
async def spotify_search(
	query: str = Query(..., min_length=1),
	limit: int = Query(20, ge=1, le=50),
	principal: Principal = Depends(current_principal),
	catalog: SpotifyClient = Depends(get_catalog),
):
	tracks = await catalog.search(query, limit)
	return {"success": True, "count": len(tracks), "tracks": tracks}


@spotify_router.get("/track/{spotify_id}")
async def spotify_track(
	spotify_id: str,
	principal: Principal = Depends(current_principal),
	catalog: SpotifyClient = Depends(get_catalog),
):
	return {"success": True, "track": await catalog.fetch_one(spotify_id)}


@spotify_router.post("/tracks")
async def spotify_tracks(
	body: SpotifyTracksRequest,
	principal: Principal = Depends(current_principal),
	catalog: SpotifyClient = Depends(get_catalog),
):
	tracks = await catalog.fetch_by_ids(body.track_ids)
	return {"success": True, "count": len(tracks), "tracks": tracks}


@spotify_router.post("/import/{spotify_id}", status_code=201)
async def spotify_import(
	spotify_id: str,
	principal: Principal = Depends(admin_principal),
	catalog: SpotifyClient = Depends(get_catalog),
	db: aiosqlite.Connection = Depends(get_db),
):
	summary = await catalog.fetch_one(spotify_id)
	track = await create_track(db, principal, track_fields_from_summary(summary))
	return {"success": True, "message": "Track imported successfully", "track": track}


upload_router = APIRouter(
	prefix="/api/upload",
	tags=["upload"],
	dependencies=[Depends(admin_principal), Depends(upload_quota)],
)


async def _read_upload(request: Request, upload: UploadFile, kind: str) -> bytes:
	if not (upload.content_type or "").startswith(f"{kind}/"):
		raise ValidationError.for_field(kind, f"Only {kind} files are allowed")
	data = await upload.read()
	if not data:
		raise ValidationError.for_field(kind, f"Please upload an {kind} file")
	max_bytes = request.app.state.settings.storage.max_upload_mb * 1024 * 1024
	if len(data) > max_bytes:
		raise ValidationError.for_field(kind, "File is too large")
	return data


@upload_router.post("/audio")
async def upload_audio(
	request: Request,
	audio: UploadFile = File(...),
	storage: SupabaseStorage = Depends(get_storage),
):
	data = await _read_upload(request, audio, "audio")
	result = await storage.store(data, "audio", audio.content_type, audio.filename or "")
	return {"success": True, "message": "Audio file uploaded successfully", "data": {"url": result["publicUrl"], **result}}


@upload_router.post("/image")
async def upload_image(
	request: Request,
	image: UploadFile = File(...),
	storage: SupabaseStorage = Depends(get_storage),
):
	data = await _read_upload(request, image, "image")
	result = await storage.store(data, "images", image.content_type, image.filename or "")
	return {"success": True, "message": "Image uploaded successfully", "data": {"url": result["publicUrl"], **result}}


@upload_router.delete("")
async def delete_upload(
	path: str = Query(..., min_length=1),
	storage: SupabaseStorage = Depends(get_storage),
):
	await storage.remove(path)
	return {"success": True, "message": "File deleted successfully"}
