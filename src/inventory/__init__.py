"""Local inventory of servers and sites."""

from inventory.models import ServerRecord, SiteRecord
from inventory.repository import (
    DuplicateHostError,
    DuplicateNameError,
    RecordNotFoundError,
    ServerRepository,
    SiteRepository,
)
from inventory.store import (
    InventoryError,
    InventoryFileError,
    InventoryNotLoadedError,
    InventoryPathError,
    InventoryStore,
)

__all__ = [
    'DuplicateHostError',
    'DuplicateNameError',
    'InventoryError',
    'InventoryFileError',
    'InventoryNotLoadedError',
    'InventoryPathError',
    'InventoryStore',
    'RecordNotFoundError',
    'ServerRecord',
    'ServerRepository',
    'SiteRecord',
    'SiteRepository',
]
