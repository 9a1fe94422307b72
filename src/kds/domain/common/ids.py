from __future__ import annotations

from typing import NewType

VenueId = NewType("VenueId", str)
OrderId = NewType("OrderId", str)
ItemId = NewType("ItemId", str)
