from fastapi import APIRouter
from starlette import status

from app.dependencies import CurrentBusiness, store_dependency
from app.schemas.business import (
    BusinessResponse,
    BusinessUpdate,
    OnlineStatusUpdate,
    PublicBusinessResponse,
)
from app.services.businesses import BusinessService

router = APIRouter(prefix="/businesses", tags=["businesses"])


@router.get("/me", response_model=BusinessResponse, status_code=status.HTTP_200_OK)
def get_me(store: store_dependency, business: CurrentBusiness):
    return BusinessService(store).get(business.get("id"))


@router.patch("/me", response_model=BusinessResponse, status_code=status.HTTP_200_OK)
def update_me(store: store_dependency, business: CurrentBusiness, update_request: BusinessUpdate):
    return BusinessService(store).update_profile(
        business.get("id"), update_request.model_dump(exclude_unset=True)
    )


@router.patch("/me/online", response_model=BusinessResponse, status_code=status.HTTP_200_OK)
def set_online(store: store_dependency, business: CurrentBusiness, online_request: OnlineStatusUpdate):
    return BusinessService(store).set_online(business.get("id"), online_request.online)


@router.get(
    "/lookup/{identifier}",
    response_model=PublicBusinessResponse,
    status_code=status.HTTP_200_OK,
)
def lookup_business(store: store_dependency, identifier: str):
    """Resolve a public chat link (business id or phone number)."""
    return BusinessService(store).get_by_identifier(identifier)
