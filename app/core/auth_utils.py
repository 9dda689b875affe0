from fastapi import HTTPException

from app.core.jwt import decode_access_token


def decode_token(token: str):
    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    if "sub" not in payload or "role" not in payload:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    return payload
