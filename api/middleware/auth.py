"""
Authentication Middleware for SupportDesk Chat API.

Staff sign in with email and password and receive a JWT bearer token.
Tokens are also tracked server side so logout revokes them before expiry.
Includes role-based access control.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from passlib.context import CryptContext

from database.store import RecordStore
from handoff.models import StaffMember
from handoff.staff_directory import StaffDirectory

logger = logging.getLogger(__name__)

TOKEN_NAMESPACE = "auth_tokens"

# ── Security schemes ───────────────────────────────────────────────
bearer_scheme = HTTPBearer(auto_error=False)


# ── Password hashing ──────────────────────────────────────────────

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(plain: str) -> str:
    """Hash a password."""
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a password against its hash."""
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        # Unrecognised hash format
        return False


# ── JWT ────────────────────────────────────────────────────────────

class AuthenticationError(Exception):
    """Credentials or token rejected."""


class TokenExpired(AuthenticationError):
    """Token is past its expiry."""


def create_jwt_token(
    data: Dict[str, Any],
    secret: str,
    algorithm: str = "HS256",
    expire_minutes: int = 480,
) -> Tuple[str, int]:
    """
    Create a JWT token.

    Returns:
        Tuple of (token_string, expires_in_seconds)
    """
    expires = datetime.utcnow() + timedelta(minutes=expire_minutes)
    payload = {**data, "exp": expires}
    token = jwt.encode(payload, secret, algorithm=algorithm)
    return token, expire_minutes * 60


def decode_jwt_token(token: str, secret: str, algorithm: str = "HS256") -> Dict[str, Any]:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, secret, algorithms=[algorithm])
    except ExpiredSignatureError as e:
        raise TokenExpired("Token has expired") from e
    except JWTError as e:
        raise AuthenticationError(f"Invalid token: {e}") from e


class StaffAuthenticator:
    """
    Issues, verifies and revokes staff tokens.

    Each token carries a `jti` claim; the matching record under
    `auth_tokens` holds the owner and expiry. A token without a live record
    is revoked. Expired records are removed when they are next seen and on
    every login.
    """

    def __init__(
        self,
        directory: StaffDirectory,
        store: RecordStore,
        secret: str,
        algorithm: str = "HS256",
        expire_minutes: int = 480,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.directory = directory
        self._store = store
        self.secret = secret
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes
        self._clock = clock

    def _expired(self, record: Dict[str, Any]) -> bool:
        return datetime.fromisoformat(record["expiresAt"]) <= self._clock()

    async def prune_expired(self) -> int:
        """Delete token records past their expiry; returns how many went."""
        pruned = 0
        for record in await self._store.scan(TOKEN_NAMESPACE):
            if self._expired(record):
                await self._store.delete(TOKEN_NAMESPACE, record["jti"])
                pruned += 1
        if pruned:
            logger.info(f"Pruned {pruned} expired staff tokens")
        return pruned

    async def login(self, email: str, password: str) -> Tuple[str, int, StaffMember]:
        staff = await self.directory.find_by_email(email)
        if not staff or not verify_password(password, staff.password_hash):
            logger.warning(f"Failed login attempt for {email}")
            raise AuthenticationError("Invalid email or password")

        await self.prune_expired()
        jti = uuid.uuid4().hex
        token, expires_in = create_jwt_token(
            {"sub": staff.id, "email": staff.email, "role": staff.role.value, "jti": jti},
            self.secret,
            self.algorithm,
            self.expire_minutes,
        )
        expires_at = self._clock() + timedelta(seconds=expires_in)
        await self._store.put(
            TOKEN_NAMESPACE, jti, {"jti": jti, "staffId": staff.id, "expiresAt": expires_at.isoformat()}
        )
        logger.info(f"Staff logged in: {staff.email} ({staff.id})")
        return token, expires_in, staff

    async def verify(self, token: str) -> StaffMember:
        """Staff member for a live token; raises AuthenticationError otherwise."""
        try:
            payload = decode_jwt_token(token, self.secret, self.algorithm)
        except TokenExpired:
            await self._forget(token)
            raise

        jti = payload.get("jti")
        record = await self._store.get(TOKEN_NAMESPACE, jti) if jti else None
        if not record or record.get("staffId") != payload.get("sub"):
            raise AuthenticationError("Token has been revoked")
        if self._expired(record):
            await self._store.delete(TOKEN_NAMESPACE, jti)
            raise TokenExpired("Token has expired")

        staff = await self.directory.get(payload["sub"])
        if not staff:
            raise AuthenticationError("Staff member no longer exists")
        return staff

    async def _forget(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            jti = jwt.get_unverified_claims(token).get("jti")
        except JWTError:
            return None
        if not jti:
            return None
        record = await self._store.get(TOKEN_NAMESPACE, jti)
        await self._store.delete(TOKEN_NAMESPACE, jti)
        return record

    async def logout(self, token: str) -> Optional[str]:
        """Revoke a token; returns the staff id it belonged to."""
        record = await self._forget(token)
        return record.get("staffId") if record else None


# ── Dependencies ──────────────────────────────────────────────────

def get_authenticator() -> StaffAuthenticator:
    from api.services import get_services
    return get_services().authenticator


async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> str:
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


async def get_current_staff(
    token: str = Depends(get_bearer_token),
    authenticator: StaffAuthenticator = Depends(get_authenticator),
) -> StaffMember:
    """Resolve the bearer token to a staff member."""
    try:
        return await authenticator.verify(token)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_role(*roles: str) -> Callable:
    """
    Factory that returns a dependency requiring specific staff roles.

    Usage:
        @router.get("/all")
        async def list_staff(staff=Depends(require_role("admin"))): ...
    """
    async def _check_role(staff: StaffMember = Depends(get_current_staff)) -> StaffMember:
        if staff.role.value not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of roles: {', '.join(roles)}",
            )
        return staff
    return _check_role
