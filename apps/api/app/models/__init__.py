# Import SQLAlchemy models so they register on Base.metadata
from app.models.commission_entry import CommissionEntry, CommissionPaidStatus  # noqa: F401
from app.models.courier import Courier  # noqa: F401
from app.models.notification import Notification, ReceiverRole  # noqa: F401
from app.models.order import Order, OrderStatus, PaymentStatus, PaymentType  # noqa: F401
from app.models.timeline_entry import TimelineEntry  # noqa: F401
