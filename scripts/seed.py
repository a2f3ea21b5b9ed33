"""
Seed Script

Creates the demo catalogue: inventory items and products with their recipes.
Run from project root: python scripts/seed.py

Safe to run twice; existing rows are left alone.
"""

import asyncio
import os
import sys

from sqlalchemy import select

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from orderflow.container import Container
from orderflow.core.config import get_settings, setup_logging
from orderflow.models import InventoryItem, Product, ProductIngredient

INVENTORY = [
    # name, unit, current, minimum, category
    ("Pizza Dough", "kg", 40.0, 10.0, "Dough"),
    ("Mozzarella Cheese", "kg", 8.0, 15.0, "Dairy"),
    ("Tomato Sauce", "l", 20.0, 5.0, "Sauces"),
    ("Pepperoni", "kg", 6.0, 3.0, "Meat"),
    ("Romaine Lettuce", "kg", 5.0, 2.0, "Produce"),
]

PRODUCTS = [
    # name, slug, price, [(ingredient, quantity per unit)]
    ("Margherita", "margherita", 15.00, [
        ("Pizza Dough", 0.25), ("Mozzarella Cheese", 0.2), ("Tomato Sauce", 0.1),
    ]),
    ("Pepperoni Pizza", "pepperoni-pizza", 16.99, [
        ("Pizza Dough", 0.25), ("Mozzarella Cheese", 0.2), ("Tomato Sauce", 0.1),
        ("Pepperoni", 0.08),
    ]),
    ("Caesar Salad", "caesar-salad", 8.99, [
        ("Romaine Lettuce", 0.15), ("Parmesan", 0.03),
    ]),
]


async def seed() -> None:
    settings = get_settings()
    container = Container.build(settings)
    await container.start()

    try:
        existing = {item.name for item in await container.inventory.list_items()}
        for name, unit, current, minimum, category in INVENTORY:
            if name in existing:
                print(f"   = {name} already present")
                continue
            item = await container.inventory.create_item(
                name=name,
                unit=unit,
                minimum_stock=minimum,
                initial_stock=current,
                category=category,
                performed_by="seed",
            )
            print(f"   + {item.name}: {item.current_stock} {item.unit}")

        async with container.session_factory() as session:
            async with session.begin():
                items = {
                    item.name: item.id
                    for item in (await session.execute(select(InventoryItem))).scalars()
                }
                for name, slug, price, recipe in PRODUCTS:
                    if await session.scalar(select(Product.id).where(Product.slug == slug)):
                        print(f"   = {name} already present")
                        continue
                    session.add(Product(
                        name=name,
                        slug=slug,
                        base_price=price,
                        ingredients=[
                            ProductIngredient(
                                ingredient_name=ingredient,
                                inventory_item_id=items.get(ingredient),
                                quantity=quantity,
                            )
                            for ingredient, quantity in recipe
                        ],
                    ))
                    print(f"   + {name} (${price:.2f})")
    finally:
        await container.close()


if __name__ == "__main__":
    setup_logging()
    print("🌱 Seeding catalogue...")
    asyncio.run(seed())
    print("✅ Done")
