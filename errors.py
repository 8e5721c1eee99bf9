"""Typed API errors and the handlers that turn them into response envelopes."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger(__name__)


class APIError(Exception):
	status_code = 500
	default_message = "Server error"

	def __init__(self, message: str | None = None, errors: list | None = None):
		self.message = message or self.default_message
		self.errors = errors
		super().__init__(self.message)


class ValidationError(APIError):
	status_code = 400
	default_message = "Validation failed"

	@classmethod
	def for_field(cls, field: str, message: str) -> "ValidationError":
		return cls(errors=[{"field": field, "message": message}])


class AuthenticationError(APIError):
	status_code = 401
	default_message = "Not authorized to access this route"


class AuthorizationError(APIError):
	status_code = 403
	default_message = "You do not have permission to perform this action"


class NotFoundError(APIError):
	status_code = 404
	default_message = "Resource not found"


class ConflictError(APIError):
	status_code = 409
	default_message = "Resource already exists"


class RateLimitError(APIError):
	status_code = 429
	default_message = "Too many requests from this IP, please try again later."


class UpstreamError(APIError):
	status_code = 502
	default_message = "Upstream service failed"


class InternalError(APIError):
	pass


def envelope(message: str, errors: list | None = None, **extra) -> dict:
	body = {"success": False, "message": message}
	if errors:
		body["errors"] = errors
	body.update(extra)
	return body


def _validation_errors(exc: RequestValidationError) -> list:
	errors = []
	for err in exc.errors():
		loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
		errors.append({
			"field": ".".join(loc) or None,
			"message": err.get("msg", "Invalid value"),
		})
	return errors


def register_error_handlers(app: FastAPI) -> None:
	"""Install the single error-to-status mapping for the application."""

	@app.exception_handler(APIError)
	async def api_error_handler(request: Request, exc: APIError):
		if exc.status_code >= 500:
			logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
		return JSONResponse(
			status_code=exc.status_code,
			content=envelope(exc.message, exc.errors),
		)

	@app.exception_handler(RequestValidationError)
	async def request_validation_handler(request: Request, exc: RequestValidationError):
		return JSONResponse(
			status_code=400,
			content=envelope("Validation failed", _validation_errors(exc)),
		)

	# sync: SlowAPIMiddleware looks handlers up by exact type and cannot await them
	def rate_limit_handler(request: Request, exc: RateLimitExceeded):
		logger.warning(f"Rate limit {exc.detail} exceeded on {request.url.path}")
		return JSONResponse(status_code=429, content=envelope(RateLimitError.default_message))

	app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

	@app.exception_handler(StarletteHTTPException)
	async def http_exception_handler(request: Request, exc: StarletteHTTPException):
		message = "Route not found" if exc.status_code == 404 else str(exc.detail)
		return JSONResponse(status_code=exc.status_code, content=envelope(message))

	@app.exception_handler(Exception)
	async def unhandled_handler(request: Request, exc: Exception):
		logger.exception(f"Unhandled error on {request.method} {request.url.path}")
		extra = {}
		if request.app.state.settings.server.debug:
			extra["error"] = str(exc)
		return JSONResponse(status_code=500, content=envelope("Server error", **extra))
