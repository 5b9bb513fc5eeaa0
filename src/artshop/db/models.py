# provide dataclass models and typed operation results

from dataclasses import dataclass, field
from typing import Literal, Optional, Tuple

OrderStatus = Literal["pending", "accepted", "shipped", "delivered"]
PaymentMethod = Literal["cod", "online"]

ORDER_STATUSES: Tuple[str, ...] = ("pending", "accepted", "shipped", "delivered")
PAYMENT_METHODS: Tuple[str, ...] = ("cod", "online")


@dataclass(frozen=True)
class Artwork:
    id: int
    title: str
    description: str
    price: float
    image_ref: str  # "/uploads/<file>" or an absolute URL
    created_at: str


@dataclass(frozen=True)
class User:
    id: int
    email: str
    password_hash: str
    name: Optional[str]
    created_at: str


@dataclass(frozen=True)
class Session:
    id: int
    email: str
    name: Optional[str]


@dataclass(frozen=True)
class Order:
    id: int
    artwork_id: int
    buyer_name: str
    buyer_email: Optional[str]
    phone: str
    address: str
    payment_method: str
    quantity: int
    status: str
    unit_price: float  # artwork price at time of order
    artwork_title: str  # artwork title at time of order
    created_at: str

    @property
    def total(self) -> float:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class SupportMessage:
    id: int
    user_id: Optional[int]
    user_name: str
    user_email: str
    subject: str
    message: str
    status: str
    created_at: str


@dataclass(frozen=True)
class Comment:
    id: int
    user_id: int
    artwork_id: int
    user_name: str  # display name when the comment was written
    comment: str
    created_at: str


@dataclass(frozen=True)
class LikeState:
    liked: bool
    like_count: int


@dataclass(frozen=True)
class OrderConfirmation:
    order: Order
    artwork: Artwork


@dataclass(frozen=True)
class ImageUpload:
    filename: str
    data: bytes = field(repr=False)
    content_type: Optional[str] = None


# ---------------------------
# Expected failures
# ---------------------------


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


@dataclass(frozen=True)
class Invalid:
    """
    User input failed one or more field checks; nothing was written.
    `total` is set by checkout so the form can be shown again with its price.
    """

    errors: Tuple[FieldError, ...]
    total: Optional[float] = None

    @property
    def messages(self) -> Tuple[str, ...]:
        return tuple(e.message for e in self.errors)

    def has_field(self, name: str) -> bool:
        return any(e.field == name for e in self.errors)


@dataclass(frozen=True)
class NotFound:
    entity: str
    key: object


@dataclass(frozen=True)
class InvalidCredentials:
    message: str = "Invalid email or password"


@dataclass(frozen=True)
class Forbidden:
    message: str = "Administrator access required"
