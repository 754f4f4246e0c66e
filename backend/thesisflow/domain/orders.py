"""Payment order identifiers.

Order ids embed the owning user so the asynchronous confirmation path can
recover it: ``TF-<user uuid hex>-<epoch millis>``. The user part is a bare
32-char hex string, so it never contains the delimiter and the id is parsed
with an anchored pattern instead of positional splitting.
"""

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

ORDER_PREFIX = "TF"
TOP_UP_PREFIX = "TFR"

_ORDER_RE = re.compile(r"^(?P<prefix>TFR?)-(?P<user>[0-9a-f]{32})-(?P<millis>\d{13,})$")


@dataclass(frozen=True)
class OrderReference:
    """Parsed order id."""

    user_id: UUID
    issued_at: datetime
    is_top_up: bool = False


def build_order_id(user_id: UUID, now: datetime | None = None, top_up: bool = False) -> str:
    now = now or datetime.now(UTC)
    prefix = TOP_UP_PREFIX if top_up else ORDER_PREFIX
    return f"{prefix}-{user_id.hex}-{int(now.timestamp() * 1000)}"


def parse_order_id(order_id: str) -> OrderReference | None:
    """Recover the owning user from an order id. None if the id is not ours."""
    match = _ORDER_RE.match(order_id or "")
    if match is None:
        return None
    return OrderReference(
        user_id=UUID(hex=match.group("user")),
        issued_at=datetime.fromtimestamp(int(match.group("millis")) / 1000, tz=UTC),
        is_top_up=match.group("prefix") == TOP_UP_PREFIX,
    )
