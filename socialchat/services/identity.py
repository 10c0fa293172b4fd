import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from socialchat.core.config import Settings
from socialchat.core.errors import AuthenticationError, ForbiddenError
from socialchat.core.logger import get_logger
from socialchat.repositories.user_repository import UserRepository
from socialchat.schemas.user import Principal


logger = get_logger(__name__)


class JwtIdentityProvider:
    """Issues and validates session tokens signed with the configured secret."""

    def __init__(self, settings: Settings, user_repository: UserRepository) -> None:
        self._secret = settings.JWT_SECRET
        self._algorithm = settings.JWT_ALGORITHM
        self._ttl = timedelta(minutes=settings.ACCESS_TOKEN_TTL_MINUTES)
        self._leeway = settings.JWT_LEEWAY_SECONDS
        self._users = user_repository

    def issue_token(self, user_id: str, ttl: Optional[timedelta] = None) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "iat": int(now.timestamp()),
            "exp": now + (ttl if ttl is not None else self._ttl),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    async def verify_token(self, token: str) -> Optional[Principal]:
        """Returns the principal behind `token`, or None if it is not valid."""
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm], leeway=self._leeway)
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired token")
            return None
        except jwt.InvalidTokenError:
            logger.info("Rejected invalid token")
            return None
        user_id = claims.get("sub")
        if not user_id:
            return None
        user = await self._users.get_user_by_id(user_id)
        if not user:
            logger.info(f"Token subject {user_id} does not exist")
            return None
        return Principal(user_id=user["_id"], username=user.get("username"))


async def authenticate(provider: JwtIdentityProvider, token: Optional[str], timeout: float) -> Principal:
    """Verify a credential, failing closed on timeout."""
    if not token:
        raise AuthenticationError("Missing credentials")
    try:
        principal = await asyncio.wait_for(provider.verify_token(token), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Identity verification timed out; rejecting request")
        raise ForbiddenError("Identity verification timed out")
    if principal is None:
        raise AuthenticationError("Invalid or expired credentials")
    return principal
