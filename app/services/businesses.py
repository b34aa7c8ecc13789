import logging
import re

from app.errors import NotFound, ValidationError
from app.schemas.chat import BusinessRecord
from app.services.auth_service import get_password_hash, verify_password
from app.services.message_store import MessageStore

logger = logging.getLogger(__name__)

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

PROFILE_FIELDS = (
    "business_name",
    "phone",
    "address",
    "business_logo",
    "away_message",
    "away_message_enabled",
)


class BusinessService:
    def __init__(self, store: MessageStore):
        self.store = store

    def register(
        self,
        email: str,
        password: str,
        business_name: str | None = None,
        phone: str | None = None,
        address: str | None = None,
    ) -> BusinessRecord:
        email = email.strip().lower()
        if self.store.get_business_by_email(email) is not None:
            raise ValidationError("A business with this email already exists")
        if phone and self.store.get_business_by_phone(phone) is not None:
            raise ValidationError("A business with this phone already exists")
        business = self.store.insert_business(
            email=email,
            password_hash=get_password_hash(password),
            business_name=business_name,
            phone=phone or None,
            address=address,
        )
        logger.info(f"Business {business.id} registered")
        return business

    def authenticate(self, email: str, password: str) -> BusinessRecord | None:
        found = self.store.get_password_hash(email.strip().lower())
        if found is None:
            return None
        business, password_hash = found
        if not verify_password(password, password_hash):
            return None
        return business

    def get(self, business_id: str) -> BusinessRecord:
        business = self.store.get_business(business_id)
        if business is None:
            raise NotFound(f"Business {business_id} not found")
        return business

    def update_profile(self, business_id: str, updates: dict) -> BusinessRecord:
        fields = {k: v for k, v in updates.items() if k in PROFILE_FIELDS}
        if "phone" in fields and fields["phone"]:
            other = self.store.get_business_by_phone(fields["phone"])
            if other is not None and other.id != business_id:
                raise ValidationError("A business with this phone already exists")
        if "away_message" in fields and fields["away_message"] is not None:
            fields["away_message"] = fields["away_message"].strip() or None
        return self.store.update_business(business_id, **fields)

    def set_online(self, business_id: str, online: bool) -> BusinessRecord:
        return self.store.update_business(business_id, online=online)

    def get_by_identifier(self, identifier: str) -> BusinessRecord:
        """Resolve the public chat link segment: business id first, then phone."""
        if UUID_RE.match(identifier):
            business = self.store.get_business(identifier)
            if business is not None:
                return business
        business = self.store.get_business_by_phone(identifier)
        if business is None:
            raise NotFound(f"Business {identifier} not found")
        return business
