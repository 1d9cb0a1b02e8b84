from __future__ import annotations

import re
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

ImageSource = Literal["stock", "huggingface", "pollinations"]
ImageShape = Literal["square", "circle", "triangle", "oval", "rectangle", "diamond", "hexagon"]
AspectRatio = Literal["1:1", "16:9", "9:16", "4:3"]

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^\+?[1-9]\d{0,15}$")
_PHONE_STRIP_RE = re.compile(r"[\s\-()]")
_US_ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")
_INTL_ZIP_RE = re.compile(r"^.{3,10}$")


class VariantOptions(BaseModel):
    color: Optional[str] = None
    size: Optional[str] = None


class Variant(BaseModel):
    id: int
    title: str = ""
    options: VariantOptions = Field(default_factory=VariantOptions)
    cost: int = 0
    price: int = 0
    is_enabled: bool = True
    is_default: bool = False
    is_available: bool = True


class AdminConfig(BaseModel):
    """Global storefront settings. Unknown keys are kept so partial merges never drop data."""

    model_config = ConfigDict(extra="allow")

    imageSource: ImageSource = "pollinations"
    debugMode: bool = False
    maxDesignsPerGeneration: int = 3
    enableMultiShirtSelection: bool = True
    customPromptSuggestions: list[str] = []
    maintenanceMode: bool = False
    shirtPrice: int = 2499
    blueprintId: int = 6
    printProviderId: int = 103
    featuredProducts: list[str] = []


class AdminConfigUpdateRequest(BaseModel):
    password: str = ""
    config: dict[str, Any] = {}


class AdminConfigUpdateResponse(BaseModel):
    success: bool
    message: str
    config: dict[str, Any]
    persisted: bool


class ShippingAddress(BaseModel):
    """Customer shipping address in Printify's ``address_to`` shape.

    The storefront checkout form posts camelCase names (``firstName``, ``state``,
    ``zipCode``); those are accepted as aliases.
    """

    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(default="", validation_alias=AliasChoices("first_name", "firstName"))
    last_name: str = Field(default="", validation_alias=AliasChoices("last_name", "lastName"))
    email: str = ""
    phone: str = ""
    country: str = "US"
    region: str = Field(default="", validation_alias=AliasChoices("region", "state"))
    address1: str = ""
    address2: Optional[str] = None
    city: str = ""
    zip: str = Field(default="", validation_alias=AliasChoices("zip", "zipCode"))

    @field_validator("first_name", "last_name", "email", "phone", "country", "region", "address1", "city", "zip")
    @classmethod
    def strip_value(cls, value: str) -> str:
        return value.strip()

    @model_validator(mode="after")
    def validate_address(self) -> "ShippingAddress":
        required = ("address1", "city", "region", "zip", "country")
        missing = [name for name in required if not getattr(self, name)]
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")
        zip_re = _US_ZIP_RE if self.country.upper() == "US" else _INTL_ZIP_RE
        if not zip_re.match(self.zip):
            raise ValueError("Invalid postal code format")
        if self.email and not _EMAIL_RE.match(self.email):
            raise ValueError("Please enter a valid email address")
        if self.phone and not _PHONE_RE.match(_PHONE_STRIP_RE.sub("", self.phone)):
            raise ValueError("Please enter a valid phone number")
        return self

    def to_printify(self, *, email: str | None = None) -> dict[str, str]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": email or self.email,
            "phone": self.phone,
            "country": self.country,
            "region": self.region,
            "address1": self.address1,
            "address2": self.address2 or "",
            "city": self.city,
            "zip": self.zip,
        }


class PaymentIntentRequest(BaseModel):
    amount: float = 0
    currency: str = "usd"
    metadata: dict[str, str] = {}


class PaymentIntentResponse(BaseModel):
    id: str
    client_secret: Optional[str] = None
    amount: int
    currency: str
    status: str


class ConfirmPaymentRequest(BaseModel):
    payment_intent_id: Optional[str] = None


class MultiOrderShirt(BaseModel):
    designImageUrl: str
    title: str = "Custom AI Design"
    description: str = ""
    variantId: int


class MultiOrderRequest(BaseModel):
    shirts: list[MultiOrderShirt] = Field(default_factory=list, max_length=3)
    shippingAddress: Optional[ShippingAddress] = None


class CreateCustomOrderRequest(BaseModel):
    templateProductId: Optional[str] = None
    selectedVariant: Optional[dict[str, Any]] = None
    shippingAddress: Optional[ShippingAddress] = None
    customerEmail: Optional[str] = None


class CreateAdminProductRequest(BaseModel):
    designUrl: Optional[str] = None
    shirtTemplate: Optional[dict[str, Any]] = None
    blueprintId: Optional[int] = None
    printProviderId: Optional[int] = None
    prompt: str = ""
    shape: Optional[ImageShape] = None
    aspectRatio: Optional[AspectRatio] = None
    price: Optional[int] = None
    variantId: Optional[int] = None


class GenerateDesignsRequest(BaseModel):
    prompt: str

    @field_validator("prompt")
    @classmethod
    def sanitize_prompt(cls, value: str) -> str:
        return value.strip()[:500]


class ConfigureDesignRequest(BaseModel):
    color: str
    size: str


class FeaturedCheckoutRequest(BaseModel):
    productId: str
    variantId: int


class PaymentSucceededRequest(BaseModel):
    paymentIntentId: str
