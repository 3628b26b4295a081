# Alembic will detect models here
from .port import Port, PortStatus
from .order import Order, OrderStatus
from .subscription import Subscription, SubscriptionStatus
from .allocation_log import PortAllocationLog, AllocationAction
