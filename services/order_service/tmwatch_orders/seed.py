"""Load the sample watch catalogue into an empty store.

Run ``tmwatch-seed`` with the same environment as the service.
"""
import asyncio
import logging
from decimal import Decimal

from .backends import build_store
from .config import configure_logging, load_settings
from .repository import OrderStore, ProductFilter, ProductRecord

logger = logging.getLogger(__name__)

# name, brand, price, original_price, discount, rating, reviews, image, gender,
# category, strap_type, dial_color, movement, description, stock
SAMPLE_PRODUCTS = [
    ("Chronograph Master Elite", "CHRONOLUX", 107817, 132717, 19, 4.8, 342, "images/products/watch-1.jpg", "men", "chronograph", "metal", "black", "automatic", "Premium chronograph with automatic movement", 25),
    ("Executive Automatic", "CHRONOLUX", 165717, 206717, 20, 4.9, 287, "images/products/watch-2.jpg", "men", "automatic", "leather", "blue", "automatic", "Executive automatic watch with blue dial", 15),
    ("Sport Diver Pro", "AQUAMASTER", 82617, 115917, 29, 4.7, 456, "images/products/watch-3.jpg", "men", "sport", "rubber", "black", "automatic", "Professional diving watch", 30),
    ("Classic Heritage", "CHRONOLUX", 132717, 165717, 20, 4.6, 198, "images/products/watch-4.jpg", "men", "luxury-leather", "leather", "white", "automatic", "Classic heritage timepiece", 20),
    ("Moonphase Prestige", "CHRONOLUX", 289917, 330717, 12, 4.9, 156, "images/products/watch-5.jpg", "men", "luxury-leather", "leather", "blue", "automatic", "Moonphase complication watch", 10),
    ("Pilot Navigator", "AVIATOR", 123917, 165717, 25, 4.8, 234, "images/products/watch-6.jpg", "men", "automatic", "leather", "black", "automatic", "Aviation-inspired navigator watch", 18),
    ("Elegance Rose Gold", "LUXELLE", 99517, 123917, 20, 4.7, 289, "images/products/watch-7.jpg", "women", "luxury-leather", "leather", "gold", "quartz", "Rose gold elegant timepiece", 22),
    ("Diamond Prestige", "LUXELLE", 206717, 247917, 17, 4.9, 167, "images/products/watch-8.jpg", "women", "luxury-leather", "metal", "white", "quartz", "Diamond-studded prestige watch", 12),
    ("Sport Titanium", "SPORTEX", 74217, 99517, 25, 4.6, 378, "images/products/watch-9.jpg", "unisex", "sport", "metal", "black", "quartz", "Titanium sport watch", 35),
    ("Smart Hybrid Pro", "TECHTIME", 57917, 82617, 30, 4.5, 512, "images/products/watch-10.jpg", "unisex", "smart", "rubber", "black", "smart", "Hybrid smartwatch", 40),
    ("Vintage Leather Classic", "HERITAGE", 91217, 115917, 21, 4.7, 223, "images/products/watch-11.jpg", "men", "luxury-leather", "leather", "brown", "automatic", "Vintage-inspired classic", 16),
    ("Minimalist Modern", "MODERNIST", 66317, 82617, 20, 4.6, 445, "images/products/watch-12.jpg", "unisex", "luxury-leather", "leather", "white", "quartz", "Minimalist modern design", 28),
    ("Precision Chronograph Pro", "CHRONOLUX", 140817, 165717, 15, 4.8, 198, "images/products/watch-13.jpg", "men", "chronograph", "metal", "blue", "automatic", "Professional chronograph with precision movement", 20),
    ("Rose Gold Elegance", "LUXELLE", 91217, 115917, 21, 4.7, 234, "images/products/watch-14.jpg", "women", "luxury-leather", "leather", "gold", "quartz", "Elegant rose gold timepiece", 18),
    ("Ocean Explorer Diver", "AQUAMASTER", 99517, 123917, 20, 4.8, 289, "images/products/watch-1.jpg", "men", "sport", "rubber", "blue", "automatic", "Deep-sea diving watch", 25),
    ("Aviation Heritage", "AVIATOR", 165717, 206717, 20, 4.9, 167, "images/products/watch-2.jpg", "men", "automatic", "leather", "black", "automatic", "Heritage aviation timepiece", 15),
    ("Diamond Luxury Collection", "LUXELLE", 248917, 289917, 14, 4.9, 145, "images/products/watch-3.jpg", "women", "luxury-leather", "metal", "white", "quartz", "Luxury diamond collection", 10),
    ("Titanium Sport Elite", "SPORTEX", 115917, 140817, 18, 4.7, 312, "images/products/watch-4.jpg", "men", "sport", "metal", "black", "automatic", "Elite titanium sport watch", 22),
]


def sample_products() -> list[ProductRecord]:
    products = []
    for (name, brand, price, original_price, discount, rating, reviews, image, gender,
         category, strap_type, dial_color, movement, description, stock) in SAMPLE_PRODUCTS:
        products.append(
            ProductRecord(
                id=None,
                name=name,
                brand=brand,
                price=Decimal(price),
                original_price=Decimal(original_price),
                discount=discount,
                rating=rating,
                reviews=reviews,
                image=image,
                gender=gender,
                category=category,
                strap_type=strap_type,
                dial_color=dial_color,
                movement=movement,
                description=description,
                stock=stock,
            )
        )
    return products


async def seed_products(store: OrderStore) -> int:
    """Insert the sample catalogue unless products already exist."""
    async with store.transaction() as uow:
        if await uow.list_products(ProductFilter()):
            logger.info("Products already present, skipping seed")
            return 0
        products = sample_products()
        for product in products:
            await uow.add_product(product)
    logger.info("Inserted %d products", len(products))
    return len(products)


async def _run() -> int:
    settings = load_settings()
    configure_logging(settings.log_level)
    store = build_store(settings)
    await store.init()
    try:
        return await seed_products(store)
    finally:
        await store.close()


def main():
    asyncio.run(_run())
