"""
app/models/cash_request.py

Purpose: Cash request document model

- Requester, amount and free-text reason
- Status lifecycle (pending -> connected -> fulfilled | cancelled)
- connectedTo binds the request to exactly one responder
- Soft-delete flag, independent of status
"""

from enum import Enum
from typing import Any, Dict, Optional

from bson import ObjectId

from utils.time_utils import utcnow, to_iso


class CashRequestStatus(str, Enum):
    """Lifecycle of a cash request."""

    PENDING = "pending"
    CONNECTED = "connected"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


# Statuses from which a request can never be connected again
CLOSED_STATUSES = (CashRequestStatus.FULFILLED.value, CashRequestStatus.CANCELLED.value)


def build_cash_request(requester_id: ObjectId, amount: float, reason: Optional[str]) -> Dict[str, Any]:
    """Creates a new pending cash request document."""
    return {
        "requester": requester_id,
        "amount": amount,
        "reason": reason.strip() if reason else "",
        "status": CashRequestStatus.PENDING.value,
        "connectedTo": None,
        "deleted": False,
        "createdAt": utcnow(),
    }


def _id_or_summary(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, dict):
        return {**value, "_id": str(value.get("_id"))}
    return str(value)


def serialize_cash_request(doc: Dict[str, Any]) -> Dict[str, Any]:
    """
    Converts a cash request document into JSON-friendly output.
    `requester`/`connectedTo` may be raw ids or attached user summaries.
    """
    return {
        "_id": str(doc["_id"]),
        "requester": _id_or_summary(doc.get("requester")),
        "amount": doc.get("amount"),
        "reason": doc.get("reason", ""),
        "status": doc.get("status", CashRequestStatus.PENDING.value),
        "connectedTo": _id_or_summary(doc.get("connectedTo")),
        "deleted": doc.get("deleted", False),
        "createdAt": to_iso(doc.get("createdAt")),
    }
