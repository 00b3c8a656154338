from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session
from datetime import timedelta

from vendgros import crud, schemas
from vendgros.config import settings
from vendgros.database import get_db
from vendgros.security.auth import AuthContext, create_access_token, get_auth_context

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=schemas.UserOut, status_code=status.HTTP_201_CREATED)
def signup(body: schemas.UserCreate, db: Session = Depends(get_db)):
    try:
        return crud.create_user(
            db,
            email=body.email,
            name=body.name,
            password=body.password,
            phone=body.phone,
        )
    except crud.ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.post("/login", response_model=schemas.Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """
    이메일 + 비밀번호로 로그인하고 JWT 토큰 발급
    """
    user = crud.authenticate_user(db, email=form_data.username, password=form_data.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")

    access_token = create_access_token(
        data={"sub": str(user.id), "admin": bool(user.is_admin)},
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/me", response_model=schemas.MeOut)
def me(ctx: AuthContext = Depends(get_auth_context)):
    return {
        "user": ctx.user,
        "is_impersonating": ctx.is_impersonating,
        "original_admin_id": ctx.real_user.id if ctx.is_impersonating else None,
    }
