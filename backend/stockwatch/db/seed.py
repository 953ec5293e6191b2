"""Default store profiles inserted on startup when missing."""

from typing import List

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockwatch.models.store_profile import StoreProfile

logger = structlog.get_logger(__name__)

DEFAULT_STORE_PROFILES = [
    {
        "name": "amazon",
        "base_url": "https://www.amazon.de",
        "stock_selectors": ["#availability span", "#add-to-cart-button"],
        "price_selectors": [".a-price .a-offscreen", "#priceblock_ourprice", "#priceblock_dealprice"],
        "add_to_cart_selectors": ["#add-to-cart-button"],
        "out_of_stock_phrases": ["Derzeit nicht verfügbar", "Currently unavailable", "Trenutno ni na voljo"],
        "in_stock_phrases": ["Auf Lager", "In Stock", "Na zalogi"],
        "requires_render": False,
        "platform": None,
        "locale": "de",
    },
    {
        "name": "bigbang",
        "base_url": "https://www.bigbang.si",
        "stock_selectors": [".product-availability", ".add-to-cart-button", ".availability-status"],
        "price_selectors": [".product-price .price", ".current-price"],
        "add_to_cart_selectors": [".add-to-cart-button", 'button[data-action="addToCart"]'],
        "out_of_stock_phrases": ["Ni na zalogi", "Razprodano", "Nedostopno"],
        "in_stock_phrases": ["Na zalogi", "Dobavljivo", "V košarico"],
        "requires_render": False,
        "platform": None,
        "locale": "si",
    },
    {
        "name": "mimovrste",
        "base_url": "https://www.mimovrste.com",
        "stock_selectors": [".product-availability", ".add-to-basket", ".availability"],
        "price_selectors": [".product-price", ".price-current", ".selling-price"],
        "add_to_cart_selectors": [".add-to-basket", ".btn-add-to-cart"],
        "out_of_stock_phrases": ["Ni na zalogi", "Razprodano", "Pričakovano"],
        "in_stock_phrases": ["Na zalogi", "Dobavljivo", "V košarico"],
        "requires_render": True,
        "platform": None,
        "locale": "si",
    },
    {
        "name": "shopify",
        "base_url": None,
        "stock_selectors": [
            'button[name="add"]',
            ".product-form__submit",
            'form[action="/cart/add"] button[type="submit"]',
            ".shopify-payment-button",
        ],
        "price_selectors": [
            ".price-item--regular",
            ".price__regular .price-item",
            ".product__price",
            ".price-item--sale",
            ".price .money",
            ".product-price",
        ],
        "add_to_cart_selectors": [
            'button[name="add"]',
            ".product-form__submit",
            'form[action="/cart/add"] button[type="submit"]',
        ],
        "out_of_stock_phrases": ["ni na zalogi", "sold out", "out of stock", "unavailable", "razprodano"],
        "in_stock_phrases": ["v košarico", "add to cart", "dodaj v košarico", "buy now"],
        "requires_render": False,
        "platform": "shopify",
        "locale": None,
    },
    {
        "name": "custom",
        "base_url": None,
        "stock_selectors": [],
        "price_selectors": [],
        "add_to_cart_selectors": [],
        "out_of_stock_phrases": ["out of stock", "sold out", "unavailable"],
        "in_stock_phrases": ["in stock", "add to cart", "buy now"],
        "requires_render": True,
        "platform": None,
        "locale": None,
    },
]


async def seed_store_profiles(session_factory: async_sessionmaker[AsyncSession]) -> List[str]:
    """Insert default profiles whose name is not present yet.

    Existing rows are left untouched so edited selectors survive restarts.

    Returns:
        Names of the profiles that were inserted
    """
    async with session_factory() as db:
        result = await db.execute(select(StoreProfile.name))
        existing = set(result.scalars().all())

        inserted = []
        for data in DEFAULT_STORE_PROFILES:
            if data["name"] in existing:
                continue
            db.add(StoreProfile(**data))
            inserted.append(data["name"])

        if inserted:
            await db.commit()
            logger.info("store_profiles_seeded", names=inserted)
        return inserted
