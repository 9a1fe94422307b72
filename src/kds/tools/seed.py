from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import inspect

from kds.domain.common.ids import OrderId, VenueId
from kds.infrastructure.db.repositories.order_store import SqlAlchemyVenueOrderStore
from kds.infrastructure.db.session import get_engine
from kds.infrastructure.messaging.redis_publisher import RedisOrderChangePublisher

DEMO_VENUE_ID = VenueId("ven_001")


def _demo_orders(now: datetime) -> list[dict[str, Any]]:
    return [
        {
            "id": "ord_001",
            "order_number": "A-101",
            "table_number": "5",
            "type": "dine_in",
            "status": "pending",
            "created_at": (now - timedelta(minutes=15)).isoformat(),
            "items": [
                {"id": "1a", "name": "Izgara Levrek", "quantity": 2,
                 "notes": "Çok pişmiş olmasın", "category": "Deniz Ürünleri"},
                {"id": "1b", "name": "Haydari", "quantity": 1, "category": "Soğuk Mezeler"},
                {"id": "1c", "name": "Künefe", "quantity": 2, "category": "Tatlılar"},
            ],
        },
        {
            "id": "ord_002",
            "order_number": "A-102",
            "table_number": "12",
            "type": "dine_in",
            "status": "preparing",
            "created_at": (now - timedelta(minutes=10)).isoformat(),
            "items": [
                {"id": "2a", "name": "Pizza Margherita", "quantity": 1,
                 "category": "Pizzalar", "status": "preparing"},
                {"id": "2b", "name": "Çoban Salata", "quantity": 1, "category": "Salatalar"},
            ],
        },
        {
            "id": "ord_003",
            "order_number": "A-103",
            "table_number": "3",
            "type": "dine_in",
            "status": "preparing",
            "priority": "rush",
            "created_at": (now - timedelta(minutes=25)).isoformat(),
            "items": [
                {"id": "3a", "name": "Karışık Izgara", "quantity": 2,
                 "category": "Et Yemekleri", "status": "preparing"},
                {"id": "3b", "name": "Efes Pilsen", "quantity": 2,
                 "category": "Biralar", "status": "ready"},
                {"id": "3c", "name": "Mercimek Çorbası", "quantity": 2, "category": "Çorbalar"},
            ],
        },
        {
            "id": "ord_004",
            "order_number": "P-201",
            "type": "takeaway",
            "status": "confirmed",
            "created_at": (now - timedelta(minutes=5)).isoformat(),
            "items": [
                {"id": "4a", "name": "Adana Kebap", "quantity": 3, "category": "Kebaplar"},
                {"id": "4b", "name": "Lahmacun", "quantity": 5, "category": "Ara Sıcaklar"},
                {"id": "4c", "name": "Ayran", "quantity": 3, "category": "Soğuk İçecekler"},
            ],
        },
    ]


def main() -> None:
    engine = get_engine(timeout_seconds=2.0)
    if "kitchen_orders" not in set(inspect(engine).get_table_names()):
        print("no schema yet")
        return

    publisher = RedisOrderChangePublisher() if os.getenv("REDIS_URL") else None
    store = SqlAlchemyVenueOrderStore(engine=engine, publisher=publisher)

    seeded = 0
    for record in _demo_orders(datetime.now(timezone.utc)):
        if store.get_order(OrderId(record["id"])) is not None:
            continue
        store.add_order(DEMO_VENUE_ID, record)
        seeded += 1
    print(f"seed complete ({seeded} orders)")


if __name__ == "__main__":
    main()
