"""
redemption_queue.py - Ordered set of reserve tranches awaiting redemption

FIFO by acceptance time, no duplicates. The queue is an immutable value:
every mutation returns a new queue, and the note engine stores it as a list
in the note unit's state.

peek() only reads. Maturity-based eviction is a separate, explicit step
(evict_while) that the note engine runs when it advances its state.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from .core import QueueError


@dataclass(frozen=True, slots=True)
class RedemptionQueue:
    items: Tuple[str, ...] = ()

    @classmethod
    def from_list(cls, items: Sequence[str]) -> RedemptionQueue:
        if len(set(items)) != len(items):
            raise QueueError(f"duplicate entries in {list(items)}")
        return cls(tuple(items))

    def to_list(self) -> List[str]:
        return list(self.items)

    # ------------------------------------------------------------------ reads

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[str]:
        return iter(self.items)

    def __contains__(self, tranche: str) -> bool:
        return tranche in self.items

    def contains(self, tranche: str) -> bool:
        return tranche in self.items

    def is_empty(self) -> bool:
        return not self.items

    def peek(self) -> Optional[str]:
        """Head of the queue, or None when empty."""
        return self.items[0] if self.items else None

    head = peek

    def tail(self) -> Optional[str]:
        return self.items[-1] if self.items else None

    def at(self, index: int) -> str:
        if not 0 <= index < len(self.items):
            raise QueueError(f"index {index} out of range for queue of {len(self.items)}")
        return self.items[index]

    # -------------------------------------------------------------- mutations

    def enqueue(self, tranche: str) -> RedemptionQueue:
        if tranche in self.items:
            raise QueueError(f"{tranche} already queued")
        return RedemptionQueue(self.items + (tranche,))

    def dequeue(self) -> Tuple[str, RedemptionQueue]:
        if not self.items:
            raise QueueError("dequeue from empty queue")
        return self.items[0], RedemptionQueue(self.items[1:])

    def evict_while(self, should_evict: Callable[[str], bool]) -> Tuple[List[str], RedemptionQueue]:
        """Dequeue heads while should_evict(head) holds; returns (evicted, new queue)."""
        queue = self
        evicted: List[str] = []
        while not queue.is_empty() and should_evict(queue.peek()):
            tranche, queue = queue.dequeue()
            evicted.append(tranche)
        return evicted, queue

    def __repr__(self) -> str:
        return f"RedemptionQueue({list(self.items)})"
