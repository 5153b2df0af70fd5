from kitchen_orders.models.order import Order
from kitchen_orders.models.stock import StockLedger, StockMovement
