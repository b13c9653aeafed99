"""Transport interface between producer and consumer."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class SendResult:
    """Outcome of delivering one message."""

    ok: bool
    resync_required: bool = False
    error: str | None = None


class Transport(ABC):
    """Delivers message envelopes to the consumer."""

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> SendResult:
        """Send one envelope.

        Implementations never raise for delivery problems; they report
        them in the returned SendResult.
        """
        pass

    async def close(self) -> None:
        """Release any connection held by the transport."""
        return None
