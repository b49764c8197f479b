from __future__ import annotations

import logging
from dataclasses import dataclass

import jwt
import redis.asyncio as redis
from fastapi import Depends, Header, HTTPException, Request
from pydantic import BaseModel
from redis.exceptions import RedisError

from pathway.config import Settings
from pathway.models import ErrorCode

settings = Settings()
redis_client = redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)

MAX_CLIENT_ID_LENGTH = 128

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    code: str
    message: str


@dataclass(frozen=True)
class Identity:
    """Caller identity: an authenticated user or an anonymous browser client."""

    user_id: str | None = None
    email: str | None = None
    client_id: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def subject(self) -> str:
        if self.user_id is not None:
            return f"user:{self.user_id}"
        return f"client:{self.client_id}"


def _unauthorized(message: str) -> HTTPException:
    err = ErrorResponse(code=ErrorCode.UNAUTHORIZED, message=message)
    return HTTPException(status_code=401, detail=err.model_dump())


def decode_access_token(token: str) -> dict:
    """Validate a bearer token issued by the auth provider and return its claims."""
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        audience=settings.jwt_audience,
    )


async def get_identity(
    authorization: str | None = Header(None),
    x_api_ver: str | None = Header(None, alias="X-API-Ver"),
    x_client_id: str | None = Header(None, alias="X-Client-ID"),
) -> Identity:
    if x_api_ver is None:
        err = ErrorResponse(code=ErrorCode.UPGRADE_REQUIRED, message="Missing API version")
        raise HTTPException(status_code=426, detail=err.model_dump())

    if x_api_ver != "v1":
        err = ErrorResponse(code=ErrorCode.UPGRADE_REQUIRED, message="Invalid API version")
        raise HTTPException(status_code=426, detail=err.model_dump())

    client_id = (x_client_id or "").strip() or None
    if client_id and len(client_id) > MAX_CLIENT_ID_LENGTH:
        err = ErrorResponse(code=ErrorCode.BAD_REQUEST, message="Client ID too long")
        raise HTTPException(status_code=400, detail=err.model_dump())

    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise _unauthorized("Malformed authorization header")
        try:
            claims = decode_access_token(token.strip())
        except jwt.PyJWTError as exc:
            logger.info("auth: rejected token: %s", exc)
            raise _unauthorized("Invalid access token") from exc
        user_id = claims.get("sub")
        if not user_id:
            raise _unauthorized("Token has no subject")
        return Identity(user_id=str(user_id), email=claims.get("email"), client_id=client_id)

    if client_id:
        return Identity(client_id=client_id)

    raise _unauthorized("Missing credentials")


async def rate_limit(request: Request, identity: Identity = Depends(get_identity)) -> Identity:
    """Throttle requests by IP and caller via Redis."""
    client_host = request.client.host if request.client else ""
    ip = client_host
    xff = request.headers.get("X-Forwarded-For")
    if xff and client_host in settings.trusted_proxies:
        forwarded = [h.strip() for h in xff.split(",") if h.strip()]
        proxies = forwarded[1:] + [client_host]
        if forwarded and all(p in settings.trusted_proxies for p in proxies):
            ip = forwarded[0]
    ip_key = f"rate:ip:{ip}"
    subject_key = f"rate:{identity.subject}"

    try:
        pipe = redis_client.pipeline()
        pipe.incr(ip_key)
        pipe.expire(ip_key, 60)
        pipe.incr(subject_key)
        pipe.expire(subject_key, 60)
        ip_count, _, subject_count, _ = await pipe.execute()
    except RedisError as exc:
        logger.exception("Redis unavailable for rate limiting: %s", exc)
        err = ErrorResponse(
            code=ErrorCode.SERVICE_UNAVAILABLE, message="Rate limiter unavailable"
        )
        raise HTTPException(status_code=503, detail=err.model_dump()) from exc
    if (
        ip_count > settings.ip_requests_per_minute
        or subject_count > settings.subject_requests_per_minute
    ):
        err = ErrorResponse(code=ErrorCode.TOO_MANY_REQUESTS, message="Rate limit exceeded")
        raise HTTPException(status_code=429, detail=err.model_dump())

    return identity


async def require_user(identity: Identity = Depends(rate_limit)) -> Identity:
    if not identity.is_authenticated:
        raise _unauthorized("Sign in required")
    return identity
