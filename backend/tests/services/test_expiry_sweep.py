"""Tests for the periodic subscription sweep script."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from scripts import expire_subscriptions as sweep
from thesisflow.services.ledger import SubscriptionLedger

pytestmark = pytest.mark.integration


@pytest.fixture
def built_ledgers(monkeypatch):
    """Run the sweep against the test database and record the ledger it builds."""
    monkeypatch.setattr(sweep, "init_db", AsyncMock())
    monkeypatch.setattr(sweep, "close_db", AsyncMock())
    built = []

    class RecordingLedger(SubscriptionLedger):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            built.append(self)

    monkeypatch.setattr(sweep, "SubscriptionLedger", RecordingLedger)
    return built


async def test_sweep_expires_overdue_with_configured_window(engine, built_ledgers, subscriptions, users, lead, capsys):
    user = await users.get_or_create_user(lead)
    overdue = await subscriptions.create_subscription(user.id, "T-old", 1, now=datetime.now(UTC) - timedelta(days=40))

    await sweep.main()

    assert built_ledgers[0].window_days == sweep.settings.subscription_days
    assert built_ledgers[0].renewal_price == sweep.settings.subscription_price
    assert "Expired 1 overdue subscription(s)." in capsys.readouterr().out
    assert (await subscriptions.check_status(user.id)).id == overdue.id
    assert (await subscriptions.check_status(user.id)).status == "expired"
