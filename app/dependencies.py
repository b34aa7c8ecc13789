from typing import Annotated

from fastapi import Depends
from fastapi.requests import HTTPConnection
from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.realtime.hub import RealtimeHub
from app.services.auth_service import get_current_business
from app.services.message_store import MessageStore


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_hub(connection: HTTPConnection) -> RealtimeHub:
    return connection.app.state.hub


db_dependency = Annotated[Session, Depends(get_db)]
hub_dependency = Annotated[RealtimeHub, Depends(get_hub)]
CurrentBusiness = Annotated[dict, Depends(get_current_business)]


def get_store(db: db_dependency, hub: hub_dependency) -> MessageStore:
    return MessageStore(db, hub)


store_dependency = Annotated[MessageStore, Depends(get_store)]
