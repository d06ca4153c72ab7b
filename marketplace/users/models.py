from enum import Enum
from typing import Optional
from decimal import Decimal

from pydantic import Field

from marketplace.schemas import EntityModel


class UserRole(str, Enum):
    GUEST = "GUEST"
    CLIENT = "CLIENT"
    SUPPLIER = "SUPPLIER"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    APPROVED = "APPROVED"
    PENDING = "PENDING"
    REJECTED = "REJECTED"
    REQUIRES_ATTENTION = "REQUIRES_ATTENTION"
    ACTIVE = "ACTIVE"
    DEACTIVATED = "DEACTIVATED"


class KycStatus(str, Enum):
    VERIFIED = "VERIFIED"
    IN_REVIEW = "IN_REVIEW"
    REJECTED = "REJECTED"
    INCOMPLETE = "INCOMPLETE"


class User(EntityModel):
    """Utilisateur de la marketplace. Clients et fournisseurs se distinguent par leur rôle."""
    id: str
    role: UserRole
    name: str = ""
    email: str = ""
    company_name: str = ""
    verified: bool = False
    status: Optional[UserStatus] = None
    kyc_status: Optional[KycStatus] = None
    public_id: Optional[str] = None
    rating: Optional[Decimal] = Field(None, ge=0, le=5)
    date_joined: Optional[str] = None
