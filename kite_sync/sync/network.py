"""
Network cost oracle.

Desktop platforms offer no portable "is this connection metered?" query,
so the answer comes from configuration. The oracle can be flipped at
runtime (e.g. when the CLI is told it is on a tethered connection).
"""

import threading

from kite_sync.core.config import NetworkConfig


class NetworkCostOracle:
    """Answers whether the current network connection is metered."""

    def __init__(self, metered: bool = False) -> None:
        self._metered = metered
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: NetworkConfig) -> "NetworkCostOracle":
        return cls(metered=config.metered)

    def is_metered(self) -> bool:
        with self._lock:
            return self._metered

    def set_metered(self, metered: bool) -> None:
        with self._lock:
            self._metered = metered
