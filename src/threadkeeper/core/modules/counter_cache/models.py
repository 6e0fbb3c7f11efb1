from pydantic import BaseModel

from threadkeeper.core.modules.counter.models import ChildKind


class SweepResult(BaseModel):
    """Outcome of one authoritative recount over every parent of a kind."""

    kind: ChildKind
    reconciled: int = 0  # Parents whose cached count was overwritten
    corrected: int = 0  # Of those, how many had drifted
    races: int = 0  # Parents left for the next sweep after losing every compare-and-set
