# Overview: Append-only settlement audit trail; one event per settlement mutation.

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from ..extensions import db
from ..models import CashSettlement, SettlementEvent
from ..time_utils import utcnow
"""
Settlement audit invariants

- Append-only. No updates or deletes of existing events.
- Events are added inside the same DB transaction as the change they record;
  the caller commits.
- payload is JSON text (old/new totals, denomination counts, ...).
"""


EVENT_CREATED = "settlement.created"
EVENT_RECALCULATED = "settlement.recalculated"
EVENT_DENOMINATIONS_UPDATED = "settlement.denominations_updated"
EVENT_NOTES_UPDATED = "settlement.notes_updated"
EVENT_SUBMITTED = "settlement.submitted"
EVENT_VERIFIED = "settlement.verified"
EVENT_REJECTED = "settlement.rejected"
EVENT_CARRIED_FORWARD = "settlement.carried_forward"


def append_settlement_event(
    settlement: CashSettlement,
    event_type: str,
    *,
    actor_user_id: int | None = None,
    from_status: str | None = None,
    to_status: str | None = None,
    note: Optional[str] = None,
    payload: Optional[dict[str, Any]] = None,
    occurred_at: Optional[datetime] = None,
) -> SettlementEvent:
    ev = SettlementEvent(
        company_id=settlement.company_id,
        branch_id=settlement.branch_id,
        settlement_id=settlement.id,
        event_type=event_type,
        actor_user_id=actor_user_id,
        from_status=from_status,
        to_status=to_status,
        note=note,
        payload=json.dumps(payload, sort_keys=True) if payload is not None else None,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(ev)
    return ev


def list_settlement_events(settlement_id: int, company_id: int) -> list[SettlementEvent]:
    """Events for one settlement, oldest first."""
    return (
        db.session.query(SettlementEvent)
        .filter(
            SettlementEvent.settlement_id == settlement_id,
            SettlementEvent.company_id == company_id,
        )
        .order_by(SettlementEvent.occurred_at.asc(), SettlementEvent.id.asc())
        .all()
    )
