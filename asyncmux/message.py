"""Message envelope for items the service pushes through the mux."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass
class Message:
    """A payload broadcast through the mux, tagged with where it came from."""

    payload: Any
    source: str = "push"
    message_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)
        if self.message_id is None:
            self.message_id = f"{self.source}_{id(self)}_{self.timestamp.timestamp()}"

    def to_dict(self) -> dict:
        """Serialize message for logging or transport."""
        return {
            "id": self.message_id,
            "source": self.source,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "metadata": self.metadata,
        }
