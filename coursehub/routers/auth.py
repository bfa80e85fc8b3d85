from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coursehub.core.current_user import get_current_user
from coursehub.core.deps import get_db
from coursehub.core.security import create_access_token, hash_password, verify_password
from coursehub.models.user import User
from coursehub.schemas.auth import LoginRequest
from coursehub.schemas.token import Token
from coursehub.schemas.user import UserCreate, UserRead

router = APIRouter()


@router.post(
    "/register",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"description": "Email already registered"},
    },
)
def register(payload: UserCreate, request: Request, db: Session = Depends(get_db)):
    settings = request.app.state.settings
    user = User(
        email=payload.email,
        full_name=payload.full_name,
        role=payload.role,
        hashed_password=hash_password(payload.password, rounds=settings.bcrypt_rounds),
    )
    db.add(user)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    db.refresh(user)
    return user


@router.post(
    "/login",
    response_model=Token,
    responses={
        401: {"description": "Invalid email or password"},
    },
)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == payload.email).first()
    if not user or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    settings = request.app.state.settings
    access_token = create_access_token(
        data={"sub": str(user.id), "role": user.role},
        secret_key=settings.secret_key,
        algorithm=settings.algorithm,
        expires_delta=settings.access_token_expire,
    )

    return {
        "access_token": access_token,
        "token_type": "bearer",
    }


@router.get("/me", response_model=UserRead)
def me(current_user: User = Depends(get_current_user)):
    return current_user
