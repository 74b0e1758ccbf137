import hashlib
from typing import Sequence


def assign_driver(order_id: str, pool: Sequence[str]) -> str:
    """Pick a driver for an order; the same order always maps to the same driver."""
    if not pool:
        raise ValueError("driver pool is empty")
    digest = hashlib.sha256(order_id.encode("utf-8")).digest()
    return pool[int.from_bytes(digest[:4], "big") % len(pool)]
