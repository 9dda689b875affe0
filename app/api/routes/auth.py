from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.dependencies import get_current_user
from app.core.jwt import create_access_token
from app.core.logging_config import get_logger
from app.core.security import hash_password, verify_password
from app.db.session import get_db
from app.models.enums import UserRole
from app.models.user import User
from app.schemas.user import Token, UserCreate, UserLogin, UserOut

router = APIRouter(prefix="/auth", tags=["Authentication"])
logger = get_logger()


# =====================================================================
#                               REGISTER
# =====================================================================
@router.post("/register", response_model=UserOut, status_code=201)
def register(data: UserCreate, db: Session = Depends(get_db)):
    if db.query(User).filter(User.email == data.email).first():
        raise HTTPException(status_code=400, detail="User already exists")

    if data.role == UserRole.STAFF:
        brand = db.query(User).filter(User.id == data.brand_id).first()
        if not brand or brand.role != UserRole.BRAND_OWNER.value:
            raise HTTPException(status_code=400, detail="brand_id must be a brand owner")

    user = User(
        name=data.name,
        email=data.email,
        password_hash=hash_password(data.password),
        role=data.role.value,
        brand_id=data.brand_id if data.role == UserRole.STAFF else None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"User Registered | Email={user.email} | Role={user.role}")
    return user


# =====================================================================
#                                LOGIN
# =====================================================================
@router.post("/login", response_model=Token)
def login(data: UserLogin, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == data.email).first()

    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    matches, new_hash = verify_password(data.password, user.password_hash)
    if not matches:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if new_hash:
        user.password_hash = new_hash
        db.commit()
        logger.info(f"Password Hash Upgraded | Email={user.email}")

    token = create_access_token({"sub": user.email, "role": user.role})
    return Token(access_token=token, user=UserOut.model_validate(user))


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user
