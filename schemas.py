"""
Request bodies.

Fields are snake_case in Python and camelCase on the wire; unknown keys are
rejected the same way as invalid values.
"""

import re
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]{2,}$")
URL_RE = re.compile(r"^https?://\S+$")
DURATION_PATTERN = r"^\d+:\d{2}$"


def _email(value: str) -> str:
	value = value.lower()
	if not EMAIL_RE.match(value):
		raise ValueError("Please provide a valid email")
	return value


def _url(value: str) -> str:
	if value and not URL_RE.match(value):
		raise ValueError("Must be a valid http(s) URL")
	return value


Email = Annotated[str, AfterValidator(_email)]
Url = Annotated[str, AfterValidator(_url)]
Quality = Literal["low", "normal", "high"]


class CamelModel(BaseModel):
	model_config = ConfigDict(
		alias_generator=to_camel,
		populate_by_name=True,
		str_strip_whitespace=True,
		extra="forbid",
	)

	def changes(self) -> dict:
		"""Fields the client actually sent, by Python name."""
		return self.model_dump(exclude_unset=True, exclude_none=True)


class RegisterRequest(CamelModel):
	name: str = Field(min_length=2, max_length=50)
	email: Email
	password: str = Field(min_length=6, max_length=100)


class LoginRequest(CamelModel):
	email: Email
	password: str = Field(min_length=1)


class ChangePasswordRequest(CamelModel):
	current_password: str = Field(min_length=1)
	new_password: str = Field(min_length=6, max_length=100)


class UpdateProfileRequest(CamelModel):
	name: Optional[str] = Field(None, min_length=2, max_length=50)
	email: Optional[Email] = None
	profile_picture: Optional[Url] = None


class UpdateSettingsRequest(CamelModel):
	crossfade: Optional[bool] = None
	gapless_playback: Optional[bool] = None
	normalize_volume: Optional[bool] = None
	streaming_quality: Optional[Quality] = None
	download_quality: Optional[Quality] = None
	auto_download: Optional[bool] = None
	wifi_only: Optional[bool] = None
	notifications: Optional[bool] = None
	language: Optional[str] = Field(None, min_length=1, max_length=50)


class PlayTrackRequest(CamelModel):
	# seconds listened
	duration: Optional[float] = Field(None, ge=0)


class TrackCreate(CamelModel):
	title: str = Field(min_length=1, max_length=100)
	artist: str = Field(min_length=1, max_length=100)
	album: Optional[str] = Field(None, max_length=100)
	duration: Optional[str] = Field(None, pattern=DURATION_PATTERN)
	category: Literal["song", "podcast"]
	genre: Optional[str] = Field(None, max_length=50)
	cover_image: Optional[Url] = None
	audio_url: Url
	is_published: Optional[bool] = None


class TrackUpdate(CamelModel):
	title: Optional[str] = Field(None, min_length=1, max_length=100)
	artist: Optional[str] = Field(None, min_length=1, max_length=100)
	album: Optional[str] = Field(None, max_length=100)
	duration: Optional[str] = Field(None, pattern=DURATION_PATTERN)
	category: Optional[Literal["song", "podcast"]] = None
	genre: Optional[str] = Field(None, max_length=50)
	cover_image: Optional[Url] = None
	audio_url: Optional[Url] = None
	is_published: Optional[bool] = None


class PlaylistCreate(CamelModel):
	name: str = Field(min_length=1, max_length=100)
	description: Optional[str] = Field(None, max_length=500)
	cover_image: Optional[Url] = None
	is_public: Optional[bool] = None


class PlaylistUpdate(CamelModel):
	name: Optional[str] = Field(None, min_length=1, max_length=100)
	description: Optional[str] = Field(None, max_length=500)
	cover_image: Optional[Url] = None
	is_public: Optional[bool] = None


class AdminUserUpdate(CamelModel):
	role: Optional[Literal["user", "admin"]] = None
	user_type: Optional[Literal["regular", "premium"]] = None
	is_active: Optional[bool] = None


class SpotifyTracksRequest(CamelModel):
	track_ids: List[str] = Field(min_length=1, max_length=50)
