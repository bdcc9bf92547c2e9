"""
Stale-response suppression.

Each user-initiated load takes a ticket from a RequestEpoch. Only the latest
ticket may publish its result, so a superseded load can never overwrite state
produced by a newer one.
"""

import threading

from .errors import RequestCancelled


class RequestTicket:
    def __init__(self, owner: "RequestEpoch", epoch: int):
        self._owner = owner
        self.epoch = epoch

    @property
    def cancelled(self) -> bool:
        return not self._owner.is_current(self)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RequestCancelled(f"request {self.epoch} superseded by {self._owner.latest}")


class RequestEpoch:
    """Monotonically increasing request counter with a published result slot."""

    def __init__(self):
        self._lock = threading.Lock()
        self._latest = 0
        self._published_epoch = 0
        self._result = None

    @property
    def latest(self) -> int:
        with self._lock:
            return self._latest

    @property
    def result(self):
        with self._lock:
            return self._result

    def begin(self) -> RequestTicket:
        with self._lock:
            self._latest += 1
            return RequestTicket(self, self._latest)

    def is_current(self, ticket: RequestTicket) -> bool:
        with self._lock:
            return ticket.epoch == self._latest

    def publish(self, ticket: RequestTicket, result) -> bool:
        """Store the result only if the ticket is still the latest."""
        with self._lock:
            if ticket.epoch != self._latest or ticket.epoch < self._published_epoch:
                return False
            self._published_epoch = ticket.epoch
            self._result = result
            return True

    def run(self, loader):
        """Run loader(ticket) and publish its result, or raise RequestCancelled."""
        ticket = self.begin()
        result = loader(ticket)
        if not self.publish(ticket, result):
            raise RequestCancelled(f"request {ticket.epoch} superseded by {self.latest}")
        return result
