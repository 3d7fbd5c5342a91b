"""SQLAlchemy models for PaperHub.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from paperhub.models.outbox import OutboxEvent
from paperhub.models.payment import Payment
from paperhub.models.subscription import Subscription
from paperhub.models.user import User

__all__ = [
    "OutboxEvent",
    "Payment",
    "Subscription",
    "User",
]
