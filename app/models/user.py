"""
app/models/user.py

Purpose: User document model (fields used by the realtime core)

- Display name and unique phone
- Advisory online flag and last-seen timestamp
- Mutual connections list
"""

from typing import Any, Dict

from utils.time_utils import to_iso


# Projection used whenever a user is embedded in another payload
USER_SUMMARY_PROJECTION = {"name": 1, "isOnline": 1, "lastSeen": 1}


def serialize_user_summary(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "_id": str(doc["_id"]),
        "name": doc.get("name"),
        "isOnline": doc.get("isOnline", False),
        "lastSeen": to_iso(doc.get("lastSeen")),
    }
