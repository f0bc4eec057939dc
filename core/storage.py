"""
In-memory storage for users, products, bids and community posts
"""
import threading
from datetime import datetime, timedelta
from itertools import count
from typing import Dict, List, Optional

from core.errors import BiddingError, Conflict, NotFound, PermissionDenied, ValidationFailed
from core.logger import setup_logger
from core.models import (
    Bid,
    CloseResult,
    Post,
    Product,
    ProductCreate,
    User,
    UserType,
    utcnow,
)

logger = setup_logger(__name__)

POST_COUNTERS = ("likes", "shares", "saves")

DEMO_IMAGE_BASE = "https://images.unsplash.com"

class MemStorage:
    """
    Thread-safe in-memory store

    Each entity type has its own id sequence starting at 1. Every
    read-modify-write (bids, counters, deletes) runs under one lock so a
    check and its update can never interleave with another request.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self.users: Dict[int, User] = {}
        self.products: Dict[int, Product] = {}
        self.bids: Dict[int, Bid] = {}
        self.posts: Dict[int, Post] = {}
        self._user_ids = count(1)
        self._product_ids = count(1)
        self._bid_ids = count(1)
        self._post_ids = count(1)

    # === Users ===

    def create_user(
        self,
        username: str,
        password_hash: str,
        name: str,
        user_type: UserType,
        location: Optional[str] = None
    ) -> User:
        with self._lock:
            if self.get_user_by_username(username):
                raise Conflict(
                    "This username is already taken. Please choose another one.",
                    error="Username already exists"
                )
            user = User(
                id=next(self._user_ids),
                username=username,
                password_hash=password_hash,
                name=name,
                user_type=user_type,
                location=location or None
            )
            self.users[user.id] = user
        logger.info(f"Created user {user.id} ({user.username}, {user.user_type})")
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        return self.users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        wanted = username.lower()
        with self._lock:
            for user in self.users.values():
                if user.username.lower() == wanted:
                    return user
        return None

    def update_user(
        self,
        user_id: int,
        name: Optional[str] = None,
        location: Optional[str] = None,
        password_hash: Optional[str] = None
    ) -> User:
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                raise NotFound("User not found")
            if name is not None:
                user.name = name
            if location is not None:
                user.location = location or None
            if password_hash is not None:
                user.password_hash = password_hash
            user.updated_at = utcnow()
        logger.info(f"Updated user {user_id}{' (password changed)' if password_hash else ''}")
        return user

    # === Products ===

    def create_product(self, user_id: int, data: ProductCreate, default_bidding_hours: int = 24) -> Product:
        now = utcnow()
        end_time = data.bidding_end_time or now + timedelta(hours=default_bidding_hours)
        if end_time <= now:
            raise ValidationFailed("Bidding end time must be in the future")

        with self._lock:
            product = Product(
                id=next(self._product_ids),
                title=data.title,
                description=data.description,
                price=data.price,
                images=list(data.images),
                category=data.category,
                user_id=user_id,
                bidding_end_time=end_time
            )
            self.products[product.id] = product
        logger.info(f"Product {product.id} listed by user {user_id} at {product.price}")
        return product

    def get_product(self, product_id: int) -> Product:
        product = self.products.get(product_id)
        if product is None or product.status == "deleted":
            raise NotFound("Product not found")
        return product

    def list_products(self) -> List[Product]:
        with self._lock:
            visible = [p for p in self.products.values() if p.status != "deleted"]
        return sorted(visible, key=lambda p: (p.created_at, p.id), reverse=True)

    def delete_product(self, product_id: int, user_id: int) -> Product:
        with self._lock:
            product = self.get_product(product_id)
            if product.user_id != user_id:
                raise PermissionDenied("Not authorized to delete this product")
            product.status = "deleted"
            product.updated_at = utcnow()
        logger.info(f"Product {product_id} deleted by user {user_id}")
        return product

    def place_bid(self, product_id: int, user_id: int, amount: int, now: Optional[datetime] = None) -> Bid:
        """
        Validate and record a bid, raising the product's current bid

        Raises:
            NotFound: product missing or deleted
            BiddingError: product closed, window over, own product or amount too low
        """
        now = now or utcnow()
        with self._lock:
            product = self.get_product(product_id)
            if product.status != "active":
                raise BiddingError("Product is not available for bidding")
            if product.bidding_end_time < now:
                raise BiddingError("Bidding has ended for this product")
            if product.user_id == user_id:
                raise BiddingError("You cannot bid on your own product")
            if amount <= product.minimum_bid_floor:
                raise BiddingError("Bid amount must be higher than current bid")

            bid = Bid(id=next(self._bid_ids), product_id=product_id, user_id=user_id, amount=amount)
            self.bids[bid.id] = bid
            product.current_bid = amount
            product.updated_at = now
        logger.info(f"Bid {bid.id}: user {user_id} bid {amount} on product {product_id}")
        return bid

    def bids_for_product(self, product_id: int) -> List[Bid]:
        self.get_product(product_id)
        with self._lock:
            bids = [b for b in self.bids.values() if b.product_id == product_id]
        return sorted(bids, key=lambda b: (b.amount, b.id), reverse=True)

    def close_bidding(self, product_id: int, user_id: int) -> CloseResult:
        with self._lock:
            product = self.get_product(product_id)
            if product.user_id != user_id:
                raise PermissionDenied("Only the seller can close bidding")
            if product.status != "active":
                raise BiddingError("Bidding is already closed for this product")
            bids = self.bids_for_product(product_id)
            product.status = "sold"
            product.updated_at = utcnow()
        winner = bids[0] if bids else None
        logger.info(f"Bidding closed on product {product_id} (winning bid: {winner.amount if winner else None})")
        return CloseResult(product=product, winning_bid=winner)

    # === Posts ===

    def create_post(
        self,
        user_id: int,
        title: str,
        content: str,
        video_url: Optional[str] = None,
        video_thumbnail: Optional[str] = None,
        video_duration: Optional[float] = None
    ) -> Post:
        with self._lock:
            post = Post(
                id=next(self._post_ids),
                title=title,
                content=content,
                user_id=user_id,
                video_url=video_url,
                video_thumbnail=video_thumbnail,
                video_duration=video_duration
            )
            self.posts[post.id] = post
        logger.info(f"Post {post.id} created by user {user_id}{' (video)' if video_url else ''}")
        return post

    def get_post(self, post_id: int) -> Post:
        post = self.posts.get(post_id)
        if post is None:
            raise NotFound("Post not found")
        return post

    def list_posts(self) -> List[Post]:
        with self._lock:
            posts = list(self.posts.values())
        return sorted(posts, key=lambda p: (p.created_at, p.id), reverse=True)

    def delete_post(self, post_id: int, user_id: int) -> None:
        with self._lock:
            post = self.get_post(post_id)
            if post.user_id != user_id:
                raise PermissionDenied("Not authorized to delete this post")
            del self.posts[post_id]
        logger.info(f"Post {post_id} deleted by user {user_id}")

    def increment_post_counter(self, post_id: int, counter: str) -> Post:
        if counter not in POST_COUNTERS:
            raise ValueError(f"Unknown post counter: {counter}")
        with self._lock:
            post = self.get_post(post_id)
            setattr(post, counter, getattr(post, counter) + 1)
            post.updated_at = utcnow()
        return post

    # === Demo data ===

    def seed_demo_data(self, password_hash: str) -> None:
        """Populate a demo farmer with a few listings and a community post"""
        farmer = self.create_user("demo_farmer", password_hash, "Demo Farmer", "farmer", "Hyderabad")
        now = utcnow()
        demo_products = [
            ("Organic Rice",
             "Premium quality organic rice grown using traditional farming methods.",
             60, "grains", 24, "/photo-1586201375761-83865001e31c"),
            ("Fresh Vegetables Bundle",
             "Assorted fresh vegetables directly from our farm.",
             120, "vegetables", 48, "/photo-1518843875459-f738682238a6"),
            ("Organic Cotton",
             "High-quality cotton harvested from sustainable farms.",
             200, "fibre", 36, "/photo-1573676048035-9c2a72b6a12a"),
        ]
        for title, description, price, category, hours, image in demo_products:
            self.create_product(farmer.id, ProductCreate(
                title=title,
                description=description,
                price=price,
                category=category,
                images=[f"{DEMO_IMAGE_BASE}{image}?auto=format&fit=crop&w=800&q=80"],
                bidding_end_time=now + timedelta(hours=hours)
            ))
        self.create_post(
            farmer.id,
            "Sustainable Farming Practices",
            "Here are some tips for sustainable farming in Telangana...",
            video_url="https://www.youtube.com/embed/dQw4w9WgXcQ"
        )
        logger.info("Demo marketplace data loaded")
