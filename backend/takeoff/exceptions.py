"""Exception types raised by the takeoff engine."""
from typing import Sequence


class TakeoffError(Exception):
    """Base class for engine errors."""


class CyclicAssemblyError(TakeoffError):
    """An assembly definition (directly or indirectly) includes itself."""

    def __init__(self, chain: Sequence[str]):
        self.chain = tuple(chain)
        super().__init__(f"Cyclic assembly reference: {' -> '.join(self.chain)}")
