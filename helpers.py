# Shared helpers for request handling and derived fields
import json
import math
import re
from datetime import datetime, timezone

from errors import ValidationError


DURATION_RE = re.compile(r"^(\d+):(\d{2})$")

MAX_PAGE_SIZE = 100


def utcnow() -> str:
	return datetime.now(timezone.utc).isoformat()


def parse_duration(value: str) -> int:
	"""
	Converts an "M:SS" display duration to seconds ("3:45" -> 225).
	Raises ValidationError when the string is malformed or seconds >= 60.
	"""
	match = DURATION_RE.match(value or "")
	if not match:
		raise ValidationError.for_field("duration", "Duration must be in M:SS format")
	minutes, seconds = int(match.group(1)), int(match.group(2))
	if seconds >= 60:
		raise ValidationError.for_field("duration", "Seconds must be between 00 and 59")
	return minutes * 60 + seconds


def format_duration(seconds: int) -> str:
	minutes, seconds = divmod(int(seconds), 60)
	return f"{minutes}:{seconds:02d}"


def format_total_duration(seconds: int) -> str:
	hours = seconds // 3600
	minutes = (seconds % 3600) // 60
	if hours > 0:
		return f"{hours}h {minutes}m"
	return f"{minutes}m"


def paginate(page: int, limit: int) -> tuple[int, int]:
	"""Returns (limit, offset) for a 1-based page."""
	if page < 1:
		raise ValidationError.for_field("page", "page must be >= 1")
	if not 1 <= limit <= MAX_PAGE_SIZE:
		raise ValidationError.for_field("limit", f"limit must be between 1 and {MAX_PAGE_SIZE}")
	return limit, (page - 1) * limit


def page_envelope(items: list, count: int, page: int, limit: int) -> dict:
	return {
		"success": True,
		"count": count,
		"totalPages": math.ceil(count / limit) if count else 0,
		"currentPage": page,
		"data": items,
	}


def order_by(sort: str, allowed: dict, table: str) -> str:
	"""
	Translates "-createdAt", "-plays -likes" or "title,-plays" into an ORDER BY clause.
	`allowed` maps API field names to column names; unknown fields are rejected.
	"""
	clauses = []
	for token in re.split(r"[\s,]+", sort.strip()):
		if not token:
			continue
		direction = "DESC" if token.startswith("-") else "ASC"
		name = token.lstrip("-+")
		if name not in allowed:
			raise ValidationError.for_field("sort", f"Cannot sort by '{name}'")
		clauses.append(f"{table}.{allowed[name]} {direction}")
	clauses.append(f"{table}.id DESC")
	return "ORDER BY " + ", ".join(clauses)


def search_clause(search: str | None, columns: list[str]) -> tuple[str, list]:
	"""Case-insensitive substring match of any search term against any column."""
	terms = [t for t in (search or "").split() if t]
	if not terms:
		return "", []
	parts, params = [], []
	for term in terms:
		for column in columns:
			parts.append(f"{column} LIKE ? ESCAPE '\\'")
			params.append("%" + _escape_like(term.lower()) + "%")
	return "(" + " OR ".join(parts) + ")", params


def _escape_like(term: str) -> str:
	return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def load_json(value, default=None):
	if not value:
		return default
	try:
		return json.loads(value)
	except ValueError:
		return default
