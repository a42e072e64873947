"""atomchat persistence layer."""

from atomchat.store.pool import StorePool
from atomchat.store.turns import (
    DuplicateIDError,
    StoreError,
    TurnNotFoundError,
    TurnStateError,
    TurnStore,
)

__all__ = [
    "TurnStore",
    "StorePool",
    "StoreError",
    "TurnNotFoundError",
    "DuplicateIDError",
    "TurnStateError",
]
