from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class TransportEvent(BaseModel):
    """Raw inbound event as reported by a transport driver."""

    event_id: Optional[str] = None
    from_address: Optional[str] = None
    is_self_sent: bool = False
    text: Optional[str] = None
    display_name: Optional[str] = None


class TransportStatus(BaseModel):
    connected: bool
    state: str
    pairing_code: Optional[str] = None
    bound_address: Optional[str] = None
    last_connected_at: Optional[datetime] = None
