"""Re-export all models so Base.metadata sees them."""

from thesisflow.db.models.payment_notification import PaymentNotification
from thesisflow.db.models.revision import RevisionHistory, RevisionPurchase
from thesisflow.db.models.subscription import Subscription
from thesisflow.db.models.thesis import ThesisDraft, ThesisSection
from thesisflow.db.models.user import User

__all__ = [
    "PaymentNotification",
    "RevisionHistory",
    "RevisionPurchase",
    "Subscription",
    "ThesisDraft",
    "ThesisSection",
    "User",
]
