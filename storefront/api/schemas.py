from pydantic import BaseModel, EmailStr, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True

# --- cart ---
class CartItemAdd(CamelModel):
    product_id: int
    variant_selections: Optional[Dict[str, str]] = None
    quantity: int = 1

class CartItemPatch(CamelModel):
    quantity: Optional[int] = None
    selected: Optional[bool] = None

class CartClaim(CamelModel):
    guest_id: str = Field(min_length=1)

class CartLineRead(CamelModel):
    id: int
    product_id: int
    variant_selections: Dict[str, str] = {}
    quantity: int
    unit_price: int
    stock: int
    name: str
    sku: str
    thumbnail_url: Optional[str] = None
    selected: bool
    added_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class ValidateItem(CamelModel):
    id: Union[int, str]
    product_id: int
    name: Optional[str] = None
    quantity: int
    unit_price: int = Field(alias='price')

class CartValidateRequest(CamelModel):
    items: List[ValidateItem]

# --- addresses ---
class AddressCreate(CamelModel):
    label: str = Field(min_length=1, max_length=120)
    recipient_name: str = Field(min_length=3, max_length=255)
    phone_number: str = Field(min_length=10, max_length=32)
    street_address: str = Field(min_length=10, max_length=512)
    address_line2: Optional[str] = None
    village: Optional[str] = None
    district: Optional[str] = None
    city: str = Field(min_length=2)
    state: str = Field(min_length=2)
    postal_code: str
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    is_default: bool = False

class AddressUpdate(CamelModel):
    label: Optional[str] = Field(default=None, min_length=1, max_length=120)
    recipient_name: Optional[str] = Field(default=None, min_length=3, max_length=255)
    phone_number: Optional[str] = Field(default=None, min_length=10, max_length=32)
    street_address: Optional[str] = Field(default=None, min_length=10, max_length=512)
    address_line2: Optional[str] = None
    village: Optional[str] = None
    district: Optional[str] = None
    city: Optional[str] = Field(default=None, min_length=2)
    state: Optional[str] = Field(default=None, min_length=2)
    postal_code: Optional[str] = None
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    is_default: Optional[bool] = None

class AddressRead(CamelModel):
    id: int
    label: str
    recipient_name: str
    phone_number: str
    street_address: str
    address_line2: Optional[str] = None
    village: Optional[str] = None
    district: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str
    is_default: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

# --- checkout ---
class AuthenticatedCheckout(CamelModel):
    address_id: int

class GuestCheckout(CamelModel):
    full_name: str = Field(min_length=3, max_length=255)
    email: EmailStr
    phone: str = Field(min_length=10, max_length=32)
    address_label: str = Field(default='Home', max_length=120)
    full_address: str = Field(min_length=10, max_length=512)
    village: Optional[str] = None
    district: Optional[str] = None
    city: str = Field(min_length=2)
    province: str = Field(min_length=2)
    postal_code: str

    def address_fields(self) -> Dict[str, Any]:
        return {
            'label': self.address_label,
            'recipient_name': self.full_name,
            'phone_number': self.phone,
            'street_address': self.full_address,
            'village': self.village,
            'district': self.district,
            'city': self.city,
            'state': self.province,
            'postal_code': self.postal_code,
        }
