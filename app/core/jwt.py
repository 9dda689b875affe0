from datetime import datetime, timedelta

from jose import JWTError, jwt

from app.core.config import settings


# -------- CREATE TOKEN --------
def create_access_token(data: dict, expires_delta: int | None = None):
    """Generate JWT token"""
    to_encode = data.copy()
    expire = datetime.utcnow() + timedelta(
        minutes=expires_delta if expires_delta else settings.access_token_expire_minutes
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


# -------- DECODE TOKEN --------
def decode_access_token(token: str):
    """Decode JWT and return the payload, or None when it is invalid"""
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
