"""Periodic subscription sweep.

Expires every active subscription whose 30-day window has passed and lists
the ones ending within the next three days (for reminder emails). The
read-path expiry check in the ledger stays in place; this only keeps the
table tidy between reads.

Run from backend/:
    python -m scripts.expire_subscriptions
"""

import asyncio

from thesisflow.core.config import get_settings
from thesisflow.core.logging import configure_structlog

settings = get_settings()
configure_structlog(log_level="DEBUG" if settings.debug else "INFO", json_logs=not settings.debug)

from thesisflow.db.base import close_db, get_session_factory, init_db
from thesisflow.services.ledger import SubscriptionLedger

REMINDER_DAYS = 3


async def main() -> None:
    await init_db()
    ledger = SubscriptionLedger(get_session_factory(), settings.subscription_days, settings.subscription_price)

    expired = await ledger.expire_overdue()
    print(f"Expired {expired} overdue subscription(s).")

    expiring = await ledger.expiring_within(REMINDER_DAYS)
    print(f"\n{len(expiring)} subscription(s) ending within {REMINDER_DAYS} days:")
    for subscription in expiring:
        print(f"  {subscription.id} | user={subscription.user_id} | expires={subscription.expiry_date:%Y-%m-%d %H:%M}")

    await close_db()


if __name__ == "__main__":
    asyncio.run(main())
