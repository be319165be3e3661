"""Database initialization script.

Creates indexes and seeds sample users, inventory, a cart and one unpaid
order that can be paid through the checkout endpoints.
"""

import asyncio
import logging

from storefront.database.mongodb import mongodb
from storefront.database.orders import OrderRepository
from storefront.models.order import Order, OrderItem, Pricing, ProductType, ShippingMethod, VariantSnapshot
from storefront.models.product import PreBuiltPC, Product, ProductStatus, Variant, VariantConfiguration
from storefront.models.user import UserCreate
from storefront.services.user_service import UserService
from storefront.utils.logger import setup_logging

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

SAMPLE_USERS = [
    UserCreate(
        userId="user_001",
        firstName="Asha",
        lastName="Rao",
        email="asha.rao@example.com",
        phone="+919876543210",
    ),
    UserCreate(
        userId="user_002",
        firstName="Vikram",
        lastName="Menon",
        email="vikram.menon@example.com",
        phone="+919876543211",
    ),
]

KEYBOARD = Product(
    name="Mechanical Keyboard TKL",
    sku="KB-TKL-01",
    status=ProductStatus.PUBLISHED,
    stockQuantity=25,
)

MOUSE = Product(
    name="Wireless Gaming Mouse",
    sku="MS-WL-01",
    status=ProductStatus.PUBLISHED,
    variantConfiguration=VariantConfiguration(hasVariants=True),
    variants=[
        Variant(name="Black", sku="MS-WL-01-BLK", price=2499, stockQuantity=10),
        Variant(name="White", sku="MS-WL-01-WHT", price=2499, stockQuantity=1),
    ],
)

STARTER_PC = PreBuiltPC(name="Starter Gaming PC", stockQuantity=3)


def build_sample_order(user_id: str) -> Order:
    """Unpaid order for a keyboard and a black mouse, total 5000.00 INR."""
    black = MOUSE.variants[0]
    items = [
        OrderItem(
            productType=ProductType.PRODUCT,
            product=KEYBOARD.id,
            name=KEYBOARD.name,
            sku=KEYBOARD.sku,
            quantity=1,
            originalPrice=2300,
            discountedPrice=2100.0,
            total=2100.0,
        ),
        OrderItem(
            productType=ProductType.PRODUCT,
            product=MOUSE.id,
            variant=VariantSnapshot(variantId=black.id, name=black.name, sku=black.sku),
            name=f"{MOUSE.name} - {black.name}",
            sku=black.sku,
            quantity=1,
            originalPrice=2499,
            discountedPrice=2499,
            total=2499,
        ),
    ]
    pricing = Pricing(subtotal=4599, shipping=401, tax=0, total=5000)
    return Order.create(
        user_id,
        items,
        pricing,
        shipping_address={
            "firstName": "Asha",
            "lastName": "Rao",
            "addressLine1": "12 MG Road",
            "city": "Bengaluru",
            "state": "Karnataka",
            "pincode": "560001",
            "country": "India",
            "phone": "+919876543210",
        },
        shipping_method=ShippingMethod(name="Standard", deliveryDays=5, cost=401),
    )


async def init_databases():
    """Initialize database and seed sample data."""
    try:
        logger.info("Initializing database...")

        # Connecting also creates indexes
        await mongodb.connect()

        users = UserService(mongodb)
        for user in SAMPLE_USERS:
            try:
                await users.create_user(user)
                logger.info("Created user: %s", user.userId)
            except ValueError as e:
                logger.warning("User %s already exists: %s", user.userId, e)

        for product in (KEYBOARD, MOUSE):
            await mongodb.products.insert_one(product.model_dump(by_alias=True))
            logger.info("Created product: %s", product.name)
        await mongodb.prebuilt_pcs.insert_one(STARTER_PC.model_dump(by_alias=True))
        logger.info("Created prebuilt PC: %s", STARTER_PC.name)

        order = build_sample_order("user_001")
        await mongodb.carts.update_one(
            {"userId": "user_001"},
            {
                "$set": {
                    "items": [
                        {"productType": item.productType, "product": item.product, "quantity": item.quantity}
                        for item in order.items
                    ],
                    "totalItems": len(order.items),
                    "totalPrice": order.pricing.total,
                }
            },
            upsert=True,
        )
        await OrderRepository(mongodb).insert(order)
        logger.info("Created pending order %s (%s)", order.orderNumber, order.id)

        logger.info("Database initialization completed successfully")

    except Exception as e:
        logger.error("Error initializing database: %s", e)
        raise

    finally:
        await mongodb.disconnect()


if __name__ == "__main__":
    asyncio.run(init_databases())
