"""Last-write-wins conflict resolution between a local and a server record."""
import datetime
from typing import Any, Dict, Optional

from .models import parse_timestamp

OLDEST: datetime.datetime = datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)


def updated_at(record: Dict[str, Any]) -> Optional[datetime.datetime]:
    """Return the record's modification instant, reading ``updatedAt`` or ``updated_at``."""
    value = record.get('updatedAt')
    if value is None:
        value = record.get('updated_at')
    return parse_timestamp(value)


def resolve(local: Dict[str, Any], server: Dict[str, Any]) -> Dict[str, Any]:
    """Pick the winner of two versions of the same record.

    The record with the later modification instant wins. Ties go to the
    server, including when neither side carries a usable timestamp. A side
    with a missing or unparseable timestamp counts as the oldest possible.

    Args:
        local: The locally stored record.
        server: The record as received from the server.

    Returns:
        Either ``local`` or ``server``, unmodified.
    """
    local_time = updated_at(local) or OLDEST
    server_time = updated_at(server) or OLDEST

    if local_time > server_time:
        return local
    return server
