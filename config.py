"""Configuration management for the SANGEET API."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml


cwd = Path(__file__).parent

CONFIG_PATH = Path(os.environ.get("SANGEET_CONFIG", cwd / "config.yaml"))
LOGGER_CONFIG_PATH = cwd / "logger_config.yaml"

DEFAULT_JWT_SECRET = "change-me"


@dataclass
class DatabaseConfig:
	"""SQLite database configuration."""

	path: Optional[Path] = None

	def __post_init__(self):
		if self.path is None:
			self.path = cwd / ".database" / "database.db"
		elif isinstance(self.path, str):
			self.path = Path(self.path).expanduser()


@dataclass
class AuthConfig:
	"""Session token configuration."""

	jwt_secret: str = DEFAULT_JWT_SECRET
	jwt_algorithm: str = "HS256"
	jwt_expire_days: int = 7
	cookie_name: str = "token"
	cookie_secure: bool = False

	def __post_init__(self):
		if self.jwt_expire_days < 1:
			raise ValueError("jwt_expire_days must be >= 1")

	@property
	def uses_default_secret(self) -> bool:
		return self.jwt_secret == DEFAULT_JWT_SECRET


@dataclass
class ServerConfig:
	"""HTTP server configuration."""

	environment: str = "development"
	cors_origins: List[str] = field(
		default_factory=lambda: ["http://localhost:5173", "http://localhost:5174"]
	)

	def __post_init__(self):
		valid = ["development", "production", "test"]
		if self.environment not in valid:
			raise ValueError(f"environment must be one of {valid}")

	@property
	def debug(self) -> bool:
		return self.environment == "development"


@dataclass
class SpotifyConfig:
	"""Spotify Web API credentials (client-credentials grant)."""

	client_id: Optional[str] = None
	client_secret: Optional[str] = None
	market: str = "US"

	@property
	def configured(self) -> bool:
		return bool(self.client_id and self.client_secret)


@dataclass
class StorageConfig:
	"""Supabase storage configuration."""

	supabase_url: Optional[str] = None
	supabase_key: Optional[str] = None
	bucket: str = "sangeet-media"
	max_upload_mb: int = 50

	@property
	def configured(self) -> bool:
		return bool(self.supabase_url and self.supabase_key)


@dataclass
class CeleryConfig:
	"""Celery broker and maintenance schedule."""

	broker: str = "redis://localhost:6379/0"
	backend: str = "redis://localhost:6379/1"
	reconcile_interval_minutes: int = 60

	def __post_init__(self):
		if self.reconcile_interval_minutes < 1:
			raise ValueError("reconcile_interval_minutes must be >= 1")


@dataclass
class RateLimitConfig:
	"""Per-client request budgets (limits strings such as "100/15 minutes")."""

	enabled: bool = True
	storage_uri: str = "memory://"
	general: str = "1000/15 minutes"
	auth: str = "100/15 minutes"
	upload: str = "100/hour"


@dataclass
class SeedConfig:
	"""Credentials for the seeded admin account."""

	admin_email: str = "admin@sangeet.com"
	admin_password: str = "Admin@123456"


# (environment variable, section, attribute)
ENV_OVERRIDES = [
	("DATABASE_PATH", "database", "path"),
	("JWT_SECRET", "auth", "jwt_secret"),
	("APP_ENV", "server", "environment"),
	("SPOTIFY_CLIENT_ID", "spotify", "client_id"),
	("SPOTIFY_CLIENT_SECRET", "spotify", "client_secret"),
	("SUPABASE_URL", "storage", "supabase_url"),
	("SUPABASE_KEY", "storage", "supabase_key"),
	("SUPABASE_BUCKET_NAME", "storage", "bucket"),
	("CELERY_BROKER_URL", "celery", "broker"),
	("CELERY_RESULT_BACKEND", "celery", "backend"),
	("ADMIN_EMAIL", "seed", "admin_email"),
	("ADMIN_PASSWORD", "seed", "admin_password"),
	("RATE_LIMIT_STORAGE_URI", "rate_limit", "storage_uri"),
]


@dataclass
class Settings:
	"""Main settings container."""

	database: DatabaseConfig = field(default_factory=DatabaseConfig)
	auth: AuthConfig = field(default_factory=AuthConfig)
	server: ServerConfig = field(default_factory=ServerConfig)
	spotify: SpotifyConfig = field(default_factory=SpotifyConfig)
	storage: StorageConfig = field(default_factory=StorageConfig)
	celery: CeleryConfig = field(default_factory=CeleryConfig)
	seed: SeedConfig = field(default_factory=SeedConfig)
	rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

	@classmethod
	def from_file(cls, config_path: Path) -> "Settings":
		"""Load settings from a YAML file.

		Raises:
			FileNotFoundError: If the file doesn't exist
			ValueError: If a section holds an invalid value
		"""
		if not config_path.exists():
			raise FileNotFoundError(f"Configuration file not found: {config_path}")

		with open(config_path, "r", encoding="utf-8") as f:
			data = yaml.safe_load(f) or {}

		return cls(
			database=DatabaseConfig(**(data.get("database") or {})),
			auth=AuthConfig(**(data.get("auth") or {})),
			server=ServerConfig(**(data.get("server") or {})),
			spotify=SpotifyConfig(**(data.get("spotify") or {})),
			storage=StorageConfig(**(data.get("storage") or {})),
			celery=CeleryConfig(**(data.get("celery") or {})),
			seed=SeedConfig(**(data.get("seed") or {})),
			rate_limit=RateLimitConfig(**(data.get("rate_limit") or {})),
		)

	@classmethod
	def from_file_or_default(cls, config_path: Optional[Path] = None) -> "Settings":
		"""Load settings from file (or defaults), then apply environment overrides."""
		config_path = config_path or CONFIG_PATH

		if config_path.exists():
			try:
				settings = cls.from_file(config_path)
			except Exception as e:
				logging.warning(f"Failed to load config from {config_path}: {e}")
				logging.warning("Using default configuration")
				settings = cls()
		else:
			logging.info(f"Config file not found at {config_path}, using defaults")
			settings = cls()

		settings.apply_env()
		return settings

	def apply_env(self, environ=None) -> None:
		environ = os.environ if environ is None else environ
		for var, section, attr in ENV_OVERRIDES:
			value = environ.get(var)
			if not value:
				continue
			if attr == "path":
				value = Path(value).expanduser()
			setattr(getattr(self, section), attr, value)
		# re-run validation on overridden sections
		self.server.__post_init__()
