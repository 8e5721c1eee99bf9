"""
Per-client request budgets.

The general budget covers every route and is enforced by slowapi's
middleware. The auth and upload budgets are router dependencies that spend
from the same limiter storage under their own scope. Auth only spends on
failed attempts, so a client that logs in successfully is never locked out.
"""

import logging

from fastapi import Request
from limits import parse
from slowapi import Limiter
from slowapi.util import get_remote_address

from config import RateLimitConfig
from errors import RateLimitError


logger = logging.getLogger(__name__)

AUTH_MESSAGE = "Too many authentication attempts, please try again later."
UPLOAD_MESSAGE = "Upload limit reached. Please try again later."


def create_limiter(config: RateLimitConfig) -> Limiter:
	return Limiter(
		key_func=get_remote_address,
		application_limits=[config.general],
		storage_uri=config.storage_uri,
		enabled=config.enabled,
	)


def _budget(request: Request, name: str):
	limiter: Limiter = request.app.state.limiter
	if not limiter.enabled:
		return None
	config = request.app.state.settings.rate_limit
	return limiter.limiter, parse(getattr(config, name)), get_remote_address(request)


async def auth_attempts(request: Request):
	budget = _budget(request, "auth")
	if budget is None:
		yield
		return
	strategy, item, key = budget
	if not strategy.test(item, key, "auth"):
		logger.warning(f"Auth limit reached for {key}")
		raise RateLimitError(AUTH_MESSAGE)
	try:
		yield
	except Exception:
		strategy.hit(item, key, "auth")
		raise


async def upload_quota(request: Request) -> None:
	budget = _budget(request, "upload")
	if budget is None:
		return
	strategy, item, key = budget
	if not strategy.hit(item, key, "upload"):
		logger.warning(f"Upload limit reached for {key}")
		raise RateLimitError(UPLOAD_MESSAGE)
