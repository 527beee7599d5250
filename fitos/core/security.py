"""
Security Module

Handles password hashing, session tokens and JWT access tokens.
Uses passlib with bcrypt and python-jose.

SECURITY NOTES:
- Passwords are hashed with bcrypt (slow by design to prevent brute force)
- Session tokens are random and only their SHA-256 is persisted
- JWT tokens expire and carry the session id, so logout invalidates them
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
import hashlib
import re
import secrets
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from fitos.config import get_settings
from fitos.core.exceptions import AuthenticationError

settings = get_settings()

# Using bcrypt with default rounds (12)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Uses constant-time comparison to prevent timing attacks.
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    NOTE: This is intentionally slow (100ms+).
    Don't call this in hot paths or tight loops.
    """
    return pwd_context.hash(password)


def validate_password_strength(password: str) -> Dict[str, Any]:
    """
    Check a password against the password policy.

    Returns {"is_valid", "score" (0-5), "errors", "suggestions"}.
    A password is valid when it has 8-128 characters and at least one
    uppercase letter, one lowercase letter and one digit.
    """
    errors: List[str] = []
    suggestions: List[str] = []
    score = 0

    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    else:
        score += 1
    if len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f"Password must be at most {PASSWORD_MAX_LENGTH} characters")

    if re.search(r"[A-Z]", password):
        score += 1
    else:
        errors.append("Password must contain an uppercase letter")

    if re.search(r"[a-z]", password):
        score += 1
    else:
        errors.append("Password must contain a lowercase letter")

    if re.search(r"\d", password):
        score += 1
    else:
        errors.append("Password must contain a digit")

    if re.search(r"[^A-Za-z0-9]", password):
        score += 1
    else:
        suggestions.append("Add a special character")

    if len(password) < 12:
        suggestions.append("Use 12 or more characters")

    return {
        "is_valid": not errors,
        "score": score,
        "errors": errors,
        "suggestions": suggestions,
    }


def generate_session_token() -> str:
    """Random opaque token handed to the client (cookie or response body)."""
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    """SHA-256 hex digest used to store session and reset tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Token payload includes:
    - sub: user_id
    - tenant_id: for additional verification
    - role: the user's role at issue time
    - sid: the server-side session id
    - iss / aud: fixed issuer and audience
    - exp / iat: expiration and issue timestamps
    """
    to_encode = data.copy()

    now = datetime.utcnow()
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({
        "exp": expire,
        "iat": now,
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
    })

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and verify a JWT token.

    Verifies signature, expiration, issuer and audience.
    Raises AuthenticationError (TOKEN_EXPIRED or INVALID_TOKEN).
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
        )
    except ExpiredSignatureError:
        raise AuthenticationError("Token has expired", code="TOKEN_EXPIRED")
    except JWTError:
        raise AuthenticationError("Invalid token", code="INVALID_TOKEN")


def verify_token_tenant(token_payload: Dict[str, Any], expected_tenant_id: str) -> bool:
    """
    Verify that the token's tenant_id matches the expected tenant.

    Even if a token is valid, it should only work for its original tenant.
    """
    return token_payload.get("tenant_id") == expected_tenant_id
