import argparse
import logging
import time
from datetime import datetime
from typing import Any, Optional

import jwt
from fastapi import Header, Request

from config import get_settings
from errors import CredentialError, ExpiredCredential, InvalidCredential, MalformedCredential
from models import Principal, as_utc

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
BEARER_PREFIX = "Bearer "
USER_ID_CLAIM = "userId"


def _timestamp(now: Optional[datetime]) -> float:
    return time.time() if now is None else as_utc(now).timestamp()


def _numeric_claim(payload: dict[str, Any], name: str) -> Optional[float]:
    value = payload.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidCredential(f"{name} claim must be numeric")
    return float(value)


def extract_bearer(header_value: Optional[str]) -> str:
    if not isinstance(header_value, str) or not header_value.startswith(BEARER_PREFIX):
        raise MalformedCredential("Authorization header must be 'Bearer <token>'")
    token = header_value[len(BEARER_PREFIX):].strip()
    if not token:
        raise MalformedCredential("Authorization header must be 'Bearer <token>'")
    return token


def verify(header_value: Optional[str], secret: str, now: Optional[datetime] = None, leeway: int = 0) -> int:
    """
    Return the user id embedded in a bearer token.

    Raises MalformedCredential for a header that is not "Bearer <token>",
    InvalidCredential for a bad signature, corrupt token or missing/non-integer
    userId, and ExpiredCredential once exp has passed. Time checks use `now`
    (default: the current time) so the result depends only on the arguments.
    """
    token = extract_bearer(header_value)
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={
                "require": ["exp"],
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
            },
        )
    except jwt.InvalidTokenError as exc:
        raise InvalidCredential(str(exc) or "invalid token") from exc

    now_ts = _timestamp(now)
    exp = _numeric_claim(payload, "exp")
    if exp is None or exp <= now_ts - leeway:
        raise ExpiredCredential("token has expired")
    nbf = _numeric_claim(payload, "nbf")
    if nbf is not None and nbf > now_ts + leeway:
        raise InvalidCredential("token is not yet valid")

    user_id = payload.get(USER_ID_CLAIM)
    if user_id is None:
        raise InvalidCredential(f"token has no {USER_ID_CLAIM} claim")
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id <= 0:
        raise InvalidCredential(f"{USER_ID_CLAIM} claim must be a positive integer")
    return user_id


def issue_token(user_id: int, secret: str, ttl: int = 3600, now: Optional[datetime] = None) -> str:
    """Mint a signed token for `user_id` valid for `ttl` seconds."""
    issued_at = int(_timestamp(now))
    payload = {USER_ID_CLAIM: user_id, "iat": issued_at, "exp": issued_at + ttl}
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def current_principal(request: Request, authorization: Optional[str] = Header(default=None)) -> Principal:
    """FastAPI dependency: the verified caller, or a 401 via CredentialError."""
    settings = getattr(request.app.state, "settings", None) or get_settings()
    try:
        user_id = verify(authorization, settings.jwt_secret, leeway=settings.jwt_leeway)
    except CredentialError as exc:
        logger.info("Rejected credential on %s %s: %s", request.method, request.url.path, exc.code)
        raise
    return Principal(user_id=user_id)


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Print a bearer token for local testing.")
    parser.add_argument("user_id", type=int)
    parser.add_argument("--ttl", type=int, default=None, help="lifetime in seconds")
    args = parser.parse_args(argv)

    settings = get_settings()
    ttl = args.ttl if args.ttl is not None else settings.token_ttl
    print(issue_token(args.user_id, settings.jwt_secret, ttl=ttl))


if __name__ == "__main__":
    main()
