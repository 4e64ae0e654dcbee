"""
Model factories for creating valid test data.

Every factory produces a valid, insertable SQLAlchemy model instance.
Override any field via kwargs.

Usage:
    variant = VariantFactory.create(product_id=product.id, mrp_paise=500000)
    db_session.add(variant)
    await db_session.commit()

``seed_listing`` builds a whole sellable listing (product, variant, seller,
location, offer and its live offer) in one call.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex[:8]}@test.com"


def bearer(
    user_id: Optional[str] = None,
    *,
    email: Optional[str] = None,
    seller_id: Optional[uuid.UUID] = None,
) -> dict:
    """Authorization header carrying a token the services will accept."""
    from libs.common.config import get_settings

    settings = get_settings()
    claims = {
        "sub": user_id or f"user-{uuid.uuid4().hex[:8]}",
        "email": email or _unique_email(),
        "aud": settings.AUTH_JWT_AUDIENCE,
        "exp": int((_now() + timedelta(hours=1)).timestamp()),
    }
    if seller_id is not None:
        claims["seller_id"] = str(seller_id)
    token = jwt.encode(claims, settings.AUTH_JWT_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def address(**overrides) -> dict:
    defaults = {
        "first_name": "Asha",
        "last_name": "Rao",
        "line1": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "postal_code": "560001",
        "country": "IN",
        "phone": "+919800000000",
    }
    defaults.update(overrides)
    return defaults


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class ProductFactory:
    @staticmethod
    def create(**overrides):
        from services.market_service.models import Product

        slug = f"eau-de-test-{uuid.uuid4().hex[:6]}"
        defaults = {
            "id": _uuid(),
            "name": "Eau de Test",
            "slug": slug,
            "brand_name": "Maison Test",
            "is_active": True,
        }
        defaults.update(overrides)
        return Product(**defaults)


class VariantFactory:
    @staticmethod
    def create(product_id=None, **overrides):
        from services.market_service.models import ProductVariant

        defaults = {
            "id": _uuid(),
            "product_id": product_id or _uuid(),
            "sku": f"SKU-{uuid.uuid4().hex[:8].upper()}",
            "size_ml": 100,
            "mrp_paise": 1200000,
            "sale_paise": None,
            "is_active": True,
        }
        defaults.update(overrides)
        return ProductVariant(**defaults)


class SellerFactory:
    @staticmethod
    def create(**overrides):
        from services.market_service.models import Seller

        defaults = {
            "id": _uuid(),
            "display_name": "Test Perfumery",
            "owner_auth_id": f"seller-owner-{uuid.uuid4().hex[:6]}",
            "is_active": True,
        }
        defaults.update(overrides)
        return Seller(**defaults)


class SellerLocationFactory:
    @staticmethod
    def create(seller_id=None, **overrides):
        from services.market_service.models import SellerLocation, SellerLocationStatus

        defaults = {
            "id": _uuid(),
            "seller_id": seller_id or _uuid(),
            "label": "Main warehouse",
            "city": "Mumbai",
            "state": "Maharashtra",
            "pincode": "400001",
            "status": SellerLocationStatus.ACTIVE,
        }
        defaults.update(overrides)
        return SellerLocation(**defaults)


# ---------------------------------------------------------------------------
# Offers
# ---------------------------------------------------------------------------


class OfferFactory:
    @staticmethod
    def create(seller_id=None, seller_location_id=None, variant_id=None, **overrides):
        from services.market_service.models import (
            AuthenticityGrade,
            Offer,
            OfferCondition,
        )
        from services.market_service.services.offer_ledger import AUTH_RANK, COND_RANK

        defaults = {
            "id": _uuid(),
            "seller_id": seller_id or _uuid(),
            "seller_location_id": seller_location_id or _uuid(),
            "variant_id": variant_id or _uuid(),
            "price_paise": 1000000,
            "shipping_paise": 0,
            "stock_qty": 5,
            "condition": OfferCondition.NEW,
            "auth_grade": AuthenticityGrade.SEALED,
            "is_active": True,
            "expires_at": None,
            "version": 1,
            "created_at": _now(),
            "updated_at": _now(),
        }
        defaults.update(overrides)
        defaults.setdefault(
            "effective_price_paise", defaults["price_paise"] + defaults["shipping_paise"]
        )
        defaults.setdefault("cond_rank", COND_RANK[defaults["condition"]])
        defaults.setdefault("auth_rank", AUTH_RANK[defaults["auth_grade"]])
        return Offer(**defaults)


@dataclass
class Listing:
    product: object
    variant: object
    seller: object
    location: object
    offer: object


async def seed_listing(
    db,
    *,
    stock_qty: int = 5,
    price_paise: int = 1000000,
    variant=None,
    **offer_overrides,
) -> Listing:
    """Persist a sellable variant with one offer and refresh its live offer."""
    from services.market_service.models import Product
    from services.market_service.services.offer_ledger import recompute_live_offer

    if variant is None:
        product = ProductFactory.create()
        variant = VariantFactory.create(product_id=product.id)
        db.add_all([product, variant])
    else:
        product = await db.get(Product, variant.product_id)
    seller = SellerFactory.create()
    location = SellerLocationFactory.create(seller_id=seller.id)
    offer = OfferFactory.create(
        seller_id=seller.id,
        seller_location_id=location.id,
        variant_id=variant.id,
        stock_qty=stock_qty,
        price_paise=price_paise,
        **offer_overrides,
    )
    db.add_all([seller, location, offer])
    await db.flush()
    await recompute_live_offer(db, variant.id)
    await db.commit()
    return Listing(
        product=product, variant=variant, seller=seller, location=location, offer=offer
    )


# ---------------------------------------------------------------------------
# Carts and orders
# ---------------------------------------------------------------------------


class CartFactory:
    @staticmethod
    def create(**overrides):
        from services.market_service.models import Cart

        defaults = {"id": _uuid(), "created_at": _now(), "updated_at": _now()}
        defaults.update(overrides)
        return Cart(**defaults)


class CartItemFactory:
    @staticmethod
    def create(cart_id=None, variant_id=None, **overrides):
        from services.market_service.models import CartItem

        defaults = {
            "id": _uuid(),
            "cart_id": cart_id or _uuid(),
            "variant_id": variant_id or _uuid(),
            "quantity": 1,
            "created_at": _now(),
            "updated_at": _now(),
        }
        defaults.update(overrides)
        return CartItem(**defaults)


class OrderFactory:
    @staticmethod
    def create(**overrides):
        from services.market_service.models import Order, OrderStatus, PaymentMode
        from services.market_service.schemas import Address

        blob = Address(**address()).to_blob()
        defaults = {
            "id": _uuid(),
            "order_number": Order.generate_order_number(),
            "user_id": None,
            "guest_email": _unique_email(),
            "contact_email": None,
            "status": OrderStatus.PENDING,
            "payment_mode": PaymentMode.PREPAID,
            "subtotal_paise": 1000000,
            "tax_paise": 0,
            "shipping_paise": 0,
            "discount_paise": 0,
            "total_paise": 1000000,
            "currency": "INR",
            "billing_address": blob,
            "shipping_address": blob,
            "created_at": _now(),
            "updated_at": _now(),
        }
        defaults.update(overrides)
        if defaults["contact_email"] is None:
            defaults["contact_email"] = defaults["guest_email"]
        return Order(**defaults)
