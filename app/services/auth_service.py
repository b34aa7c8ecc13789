from datetime import datetime, timedelta, timezone
from typing import Annotated
from fastapi import Depends
from jose import JWTError, jwt
from passlib.context import CryptContext
from app.config import settings
from app.errors import NotAuthenticated
from fastapi.security import OAuth2PasswordBearer

SECRET_KEY = settings.SECRET_KEY
ALGORITHM = settings.ALGORITHM

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_bearer = OAuth2PasswordBearer(tokenUrl="auth/login")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(email: str, business_id: str, expires_delta: timedelta | None = None):
    encode = {"sub": email, "id": business_id}
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    expires = datetime.now(timezone.utc) + expires_delta
    encode.update({"exp": expires})
    return jwt.encode(encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Return ``{"email", "id"}`` for a valid token, else raise NotAuthenticated."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise NotAuthenticated()
    email: str = payload.get("sub")
    business_id: str = payload.get("id")
    if not email or not business_id:
        raise NotAuthenticated()
    return {"email": email, "id": business_id}


async def get_current_business(token: Annotated[str, Depends(oauth2_bearer)]):
    return decode_token(token)
