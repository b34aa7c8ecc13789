from pydantic import BaseModel, EmailStr, ConfigDict
from datetime import datetime


class BusinessBase(BaseModel):
    email: EmailStr
    business_name: str | None = None
    phone: str | None = None
    address: str | None = None


class BusinessCreate(BusinessBase):
    password: str


class BusinessUpdate(BaseModel):
    business_name: str | None = None
    phone: str | None = None
    address: str | None = None
    business_logo: str | None = None
    away_message: str | None = None
    away_message_enabled: bool | None = None


class OnlineStatusUpdate(BaseModel):
    online: bool


class BusinessResponse(BusinessBase):
    id: str
    business_logo: str | None = None
    online: bool
    away_message: str | None = None
    away_message_enabled: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PublicBusinessResponse(BaseModel):
    """What a customer sees before starting a chat."""

    id: str
    business_name: str | None = None
    phone: str | None = None
    business_logo: str | None = None
    online: bool

    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    access_token: str
    token_type: str
