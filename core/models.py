"""
Marketplace, community and assistant data models

Python code uses snake_case; JSON on the wire is camelCase to match the
browser client (userType, currentBid, biddingEndTime, videoUrl, ...).
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

UserType = Literal["farmer", "consumer"]
ProductStatus = Literal["active", "sold", "deleted"]

USERNAME_PATTERN = r"^[A-Za-z0-9_]{3,32}$"

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

# === Users ===

class User(CamelModel):
    id: int
    username: str
    password_hash: str = Field(exclude=True, repr=False)
    name: str
    user_type: UserType
    location: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

class RegisterRequest(CamelModel):
    username: str = Field(pattern=USERNAME_PATTERN)
    password: str = Field(min_length=6, max_length=128)
    name: str = Field(min_length=1, max_length=100)
    user_type: UserType
    location: Optional[str] = None

    @field_validator("user_type", mode="before")
    @classmethod
    def _buyer_is_consumer(cls, value):
        # Older clients send "buyer"
        if isinstance(value, str) and value.strip().lower() == "buyer":
            return "consumer"
        return value

class LoginRequest(CamelModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)

class UserUpdate(CamelModel):
    """Profile changes; omitted fields stay as they are"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    location: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=6, max_length=128)

# === Marketplace ===

class ProductCreate(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    price: int = Field(gt=0)
    images: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    bidding_end_time: Optional[datetime] = None

    @field_validator("bidding_end_time")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

class Product(CamelModel):
    id: int
    title: str
    description: str
    price: int
    images: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    user_id: int
    status: ProductStatus = "active"
    current_bid: Optional[int] = None
    bidding_end_time: datetime
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def minimum_bid_floor(self) -> int:
        """A new bid must be strictly greater than this"""
        return self.current_bid if self.current_bid is not None else self.price

class BidCreate(CamelModel):
    amount: int = Field(gt=0)

class Bid(CamelModel):
    id: int
    product_id: int
    user_id: int
    amount: int
    created_at: datetime = Field(default_factory=utcnow)

class CloseResult(CamelModel):
    product: Product
    winning_bid: Optional[Bid] = None

# === Community ===

class PostCreate(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    video_url: Optional[str] = None

class VideoPostCreate(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    video_url: str = Field(min_length=1)
    video_thumbnail: Optional[str] = None
    video_duration: Optional[float] = Field(default=None, ge=0)

class Post(CamelModel):
    id: int
    title: str
    content: str
    user_id: int
    video_url: Optional[str] = None
    video_thumbnail: Optional[str] = None
    video_duration: Optional[float] = None
    likes: int = 0
    shares: int = 0
    saves: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

class UploadResult(CamelModel):
    video_url: str
    video_thumbnail: Optional[str] = None
    video_duration: Optional[float] = None

# === Voice assistant ===

class CreatedProfile(CamelModel):
    """Returned once, when the spoken profile dialogue creates an account"""
    id: int
    username: str
    name: str
    user_type: UserType
    location: Optional[str] = None
    temporary_password: str

class VoiceResult(CamelModel):
    text: str
    response: str
    audio_response: str
    image_url: Optional[str] = None
    profile_creation: bool = False
    language: str
    profile: Optional[CreatedProfile] = None

class TextRequest(CamelModel):
    text: str = Field(min_length=1)
    language: Optional[str] = None
    session_id: Optional[str] = None
