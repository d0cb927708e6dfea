from inventory_service.models.product import Product
from inventory_service.models.stock import StockLevel, StockMovement
from inventory_service.models.alert import InventoryAlert
from inventory_service.models.stock_event import StockEvent
