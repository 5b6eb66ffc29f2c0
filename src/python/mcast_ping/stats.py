import collections
import threading
from dataclasses import dataclass, field
from typing import Dict, List

def percent(part: int, whole: int) -> float:
    return part * 100.0 / max(whole, 1)

@dataclass(frozen=True)
class StatsSnapshot:
    total_sent: int = 0
    total_received: int = 0
    per_peer: Dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        return percent(self.total_received, self.total_sent)

    def peer_share(self, peer: str) -> float:
        """Share of all probes sent that ``peer`` answered; peers can each answer one probe."""
        return percent(self.per_peer.get(peer, 0), self.total_sent)

    def summary_line(self) -> str:
        return f"sent={self.total_sent} recv={self.total_received} success={self.success_rate:.2f}%"

    def peer_lines(self) -> List[str]:
        ordered = sorted(self.per_peer.items(), key=lambda kv: (-kv[1], kv[0]))
        return [f"  {peer}: {n} replies ({self.peer_share(peer):.2f}% of probes)" for peer, n in ordered]

class StatsAggregator:
    """
    Counters shared between the sender, receiver and reporter threads.

    One lock guards all three counters; it is held only for the increment
    or the copy, never across socket calls.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._sent = 0
        self._received = 0
        self._per_peer: Dict[str, int] = collections.defaultdict(int)

    def record_sent(self):
        with self._lock:
            self._sent += 1

    def record_reply(self, peer: str):
        with self._lock:
            self._received += 1
            self._per_peer[peer] += 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(self._sent, self._received, dict(self._per_peer))
