from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm

from app.dependencies import store_dependency
from app.limits import LOGIN_LIMIT, SIGNUP_LIMIT, limiter
from app.schemas.business import BusinessCreate, BusinessResponse, Token
from app.services.auth_service import create_access_token
from app.services.businesses import BusinessService

router = APIRouter(prefix="/auth", tags=["auth"])


@limiter.limit(SIGNUP_LIMIT)
@router.post("/signup", response_model=BusinessResponse, status_code=status.HTTP_201_CREATED)
def signup(store: store_dependency, business_request: BusinessCreate, request: Request):
    return BusinessService(store).register(
        email=business_request.email,
        password=business_request.password,
        business_name=business_request.business_name,
        phone=business_request.phone,
        address=business_request.address,
    )


@limiter.limit(LOGIN_LIMIT)
@router.post("/login", response_model=Token, status_code=status.HTTP_200_OK)
def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    store: store_dependency,
    request: Request,
):
    business = BusinessService(store).authenticate(form_data.username, form_data.password)
    if not business:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not authenticate business",
        )
    token = create_access_token(business.email, business.id)
    return {"access_token": token, "token_type": "bearer"}
