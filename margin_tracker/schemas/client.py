from typing import Optional
from pydantic import EmailStr, Field

from margin_tracker.schemas.base import CamelModel


class ClientCreate(CamelModel):
    name: str = Field(min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    country: Optional[str] = None
    currency: str = "EUR"
    vat_number: Optional[str] = None
    qonto_id: Optional[str] = None
    is_active: bool = True
