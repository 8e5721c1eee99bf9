"""Credentials, session tokens and the authorization capability used by every route."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import aiosqlite
import jwt
from fastapi import Depends, Request, Response
from fastapi.concurrency import run_in_threadpool
from werkzeug.security import check_password_hash, generate_password_hash

from config import AuthConfig
from database import fetch_one, get_db
from errors import AuthenticationError, AuthorizationError


async def hash_password(password: str) -> str:
	return await run_in_threadpool(generate_password_hash, password)


async def verify_password(password_hash: str, password: str) -> bool:
	return await run_in_threadpool(check_password_hash, password_hash, password)


def create_token(auth: AuthConfig, user_id: int, email: str, role: str) -> str:
	now = datetime.now(timezone.utc)
	payload = {
		"id": user_id,
		"email": email,
		"role": role,
		"iat": now,
		"exp": now + timedelta(days=auth.jwt_expire_days),
	}
	return jwt.encode(payload, auth.jwt_secret, algorithm=auth.jwt_algorithm)


def decode_token(auth: AuthConfig, token: str) -> dict:
	try:
		return jwt.decode(token, auth.jwt_secret, algorithms=[auth.jwt_algorithm])
	except jwt.ExpiredSignatureError:
		raise AuthenticationError("Session expired, please log in again")
	except jwt.InvalidTokenError:
		raise AuthenticationError("Invalid token")


def issue_session(response: Response, auth: AuthConfig, user) -> str:
	"""Signs a token for the user row and mirrors it into an http-only cookie."""
	token = create_token(auth, user["id"], user["email"], user["role"])
	response.set_cookie(
		auth.cookie_name,
		token,
		max_age=auth.jwt_expire_days * 24 * 60 * 60,
		httponly=True,
		secure=auth.cookie_secure,
		samesite="lax",
	)
	return token


def clear_session(response: Response, auth: AuthConfig) -> None:
	response.delete_cookie(auth.cookie_name, httponly=True, secure=auth.cookie_secure, samesite="lax")


@dataclass(frozen=True)
class Principal:
	"""The authenticated identity behind a request."""

	id: int
	email: str
	role: str
	name: str = ""

	@property
	def is_admin(self) -> bool:
		return self.role == "admin"

	def require_role(self, *roles: str) -> None:
		if self.role not in roles:
			raise AuthorizationError(f"User role '{self.role}' is not authorized to access this route")

	def require_ownership(self, owner_id: int | None, admin_override: bool = True) -> None:
		if owner_id is not None and owner_id == self.id:
			return
		if admin_override and self.is_admin:
			return
		raise AuthorizationError("Not authorized to modify this resource")

	def require_other(self, user_id: int, message: str = "Cannot perform this action on your own account") -> None:
		if user_id == self.id:
			raise AuthorizationError(message)


def read_token(request: Request) -> str | None:
	header = request.headers.get("Authorization", "")
	if header.startswith("Bearer "):
		return header[len("Bearer "):].strip() or None
	return request.cookies.get(request.app.state.settings.auth.cookie_name)


async def load_principal(db: aiosqlite.Connection, auth: AuthConfig, token: str) -> Principal:
	claims = decode_token(auth, token)
	user = await fetch_one(
		db, "SELECT id, email, role, name, is_active FROM user WHERE id = ?", (claims.get("id"),)
	)
	if not user:
		raise AuthenticationError("User no longer exists")
	if not user["is_active"]:
		raise AuthenticationError("Account is deactivated")
	return Principal(id=user["id"], email=user["email"], role=user["role"], name=user["name"])


async def current_principal(
	request: Request,
	db: aiosqlite.Connection = Depends(get_db),
) -> Principal:
	token = read_token(request)
	if not token:
		raise AuthenticationError()
	return await load_principal(db, request.app.state.settings.auth, token)


async def optional_principal(
	request: Request,
	db: aiosqlite.Connection = Depends(get_db),
) -> Principal | None:
	token = read_token(request)
	if not token:
		return None
	try:
		return await load_principal(db, request.app.state.settings.auth, token)
	except AuthenticationError:
		return None


async def admin_principal(principal: Principal = Depends(current_principal)) -> Principal:
	principal.require_role("admin")
	return principal
