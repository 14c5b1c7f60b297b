# storefront/models/__init__.py
from .catalog import *           # Product
from .cart import *              # CartItem
from .order import *             # Order, OrderItem
from .order_status_log import *  # OrderStatusLog
from .setting import *           # Setting
from .side_effect import *       # SideEffect (outbox)
from .user import *              # User
