from .inventory import (
    Product,
    StockMovement,
    new_id,
    MOVEMENT_KINDS,
    MOVEMENT_ENTRY,
    MOVEMENT_SALE,
    MOVEMENT_CONSIGNMENT_SALE,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN,
)
from .debts import Debt, Client
from .settings import SystemConfig, SYSTEM_CONFIG_ID, DEFAULT_CATEGORIES

__all__ = [
    'Product', 'StockMovement', 'new_id',
    'MOVEMENT_KINDS', 'MOVEMENT_ENTRY', 'MOVEMENT_SALE', 'MOVEMENT_CONSIGNMENT_SALE',
    'MOVEMENT_ADJUSTMENT', 'MOVEMENT_RETURN',
    'Debt', 'Client',
    'SystemConfig', 'SYSTEM_CONFIG_ID', 'DEFAULT_CATEGORIES',
]
