from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from slowapi.middleware import SlowAPIMiddleware
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import os
import logging
import logging.config
import yaml

import admin
import integrations
import playlists
import tracks
import users
from catalog_client import SpotifyClient
from celery_app import celery
from config import LOGGER_CONFIG_PATH, Settings
from database import connect, init_db, table_counts
from errors import register_error_handlers
from ratelimit import create_limiter
from storage_client import SupabaseStorage


def init_logger() -> logging.Logger:
	try:
		with open(LOGGER_CONFIG_PATH, "r") as f:
			config = yaml.safe_load(f)
		logging.config.dictConfig(config)
		logger = logging.getLogger("sangeet")
		logger.debug("Logger configured")
		return logger
	except Exception as e:
		logging.basicConfig(level=logging.INFO)
		logger = logging.getLogger("sangeet")
		logger.error(f"Logger initialization failed: {e}")
		return logger


def create_app(settings: Settings | None = None, catalog=None, storage=None) -> FastAPI:
	"""
	Builds the API. `catalog` and `storage` replace the Spotify and Supabase
	clients when given; clients created here are closed on shutdown.
	"""
	settings = settings or Settings.from_file_or_default()

	@asynccontextmanager
	async def lifespan(app: FastAPI):
		app.state.logger = init_logger()
		logger = app.state.logger

		if settings.auth.uses_default_secret and not settings.server.debug:
			if settings.server.environment == "production":
				logger.critical("JWT secret is the built-in default, refusing to start")
				raise RuntimeError("Set auth.jwt_secret or JWT_SECRET before running in production")
			logger.warning("JWT secret is the built-in default")

		db_path = settings.database.path
		os.makedirs(db_path.parent, exist_ok=True)
		if os.access(db_path.parent, os.W_OK):
			logger.info(f"Database directory {db_path.parent} is writable")
		else:
			logger.error(f"Database directory {db_path.parent} not writable")

		await init_db(db_path)
		logger.info("Database ready")
		async with connect(db_path) as db:
			for table, count in (await table_counts(db)).items():
				logger.info(f"{table.capitalize()} table row count: {count}")

		owned = []
		app.state.catalog = catalog
		if catalog is None:
			app.state.catalog = SpotifyClient(settings.spotify)
			owned.append(app.state.catalog)
		app.state.storage = storage
		if storage is None:
			app.state.storage = SupabaseStorage(settings.storage)
			owned.append(app.state.storage)
		if not settings.spotify.configured:
			logger.warning("Spotify API credentials not configured")
		if not settings.storage.configured:
			logger.warning("Supabase storage not configured")

		app.state.celery = celery

		yield
		for client in owned:
			await client.close()
		logger.info("Application shutdown")

	app = FastAPI(
		title="SANGEET API",
		version="1.0.0",
		description="Music and podcast catalog service",
		lifespan=lifespan,
	)
	app.state.settings = settings
	app.state.limiter = create_limiter(settings.rate_limit)

	# CORS stays the outermost layer
	app.add_middleware(SlowAPIMiddleware)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=settings.server.cors_origins,
		allow_credentials=True,
		allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
		allow_headers=["Content-Type", "Authorization"],
	)
	register_error_handlers(app)

	app.include_router(users.auth_router)
	app.include_router(users.router)
	app.include_router(tracks.router)
	app.include_router(playlists.router)
	app.include_router(admin.router)
	app.include_router(integrations.spotify_router)
	app.include_router(integrations.upload_router)

	@app.get("/", include_in_schema=False)
	async def docs():
		return RedirectResponse(url="/docs", status_code=307)

	@app.get("/health")
	async def health():
		return {
			"success": True,
			"message": "SANGEET Backend is running!",
			"timestamp": datetime.now(timezone.utc).isoformat(),
			"environment": settings.server.environment,
		}

	return app


app = create_app()
