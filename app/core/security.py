from typing import Optional, Tuple

from passlib.context import CryptContext

# argon2 only; older hashes are upgraded on the next successful login
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> Tuple[bool, Optional[str]]:
    """
    Check a login attempt.

    Returns (matches, new_hash). new_hash is set when the stored hash was made
    with outdated argon2 parameters and should replace it.
    """
    return pwd_context.verify_and_update(password, hashed)
