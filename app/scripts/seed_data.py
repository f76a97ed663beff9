# scripts/seed_data.py
import asyncio
import logging

from app.core.db import close_db, init_db
from app.core.logging import configure_logging
from app.models.inventory import InventoryItem

log = logging.getLogger(__name__)

ROOMS = [
    ("ROOM-101", "Standard Double", 5),
    ("ROOM-201", "Deluxe King", 3),
    ("ROOM-301", "Suite", 1),
]


async def seed():
    for item_id, name, quantity in ROOMS:
        item, created = await InventoryItem.get_or_create(
            item_id=item_id,
            defaults={"name": name, "total_quantity": quantity, "available_quantity": quantity},
        )
        if not created and item.reserved_quantity == 0:
            # Nothing held: reset to the seeded stock (idempotent)
            item.total_quantity = quantity
            item.available_quantity = quantity
            await item.save(update_fields=["total_quantity", "available_quantity", "updated_at"])
        log.info(f"Room {item_id}: {item.available_quantity}/{item.total_quantity} available")

    log.info("Inventory seeded.")


async def main():
    configure_logging()
    await init_db()
    await seed()
    await close_db()


if __name__ == "__main__":
    asyncio.run(main())
