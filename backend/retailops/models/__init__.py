from .auth import User
from .catalog import Variant, Vendor
from .riders import Rider
from .orders import Order, OrderItem, OrderStatusLog
from .inventory import InventoryTransaction, InventoryTransactionItem, StockMovement
from .documents import DocumentSequence
from .outbox import SideEffectTask

__all__ = [
    'User',
    'Variant', 'Vendor',
    'Rider',
    'Order', 'OrderItem', 'OrderStatusLog',
    'InventoryTransaction', 'InventoryTransactionItem', 'StockMovement',
    'DocumentSequence',
    'SideEffectTask',
]
