from __future__ import annotations

import random
from typing import Any, List, Sequence, TypeVar, cast

T = TypeVar("T")


def _to_jsonable(x: object) -> object:
    if isinstance(x, tuple):
        return [_to_jsonable(v) for v in x]
    if isinstance(x, list):
        return [_to_jsonable(v) for v in x]
    return x


def _to_tuple(x: object) -> object:
    if isinstance(x, list):
        return tuple(_to_tuple(v) for v in x)
    return x


class RandomSource:
    """All randomness the engine consumes.

    Each method is one call site in the model, so tests can subclass and pin a
    single behaviour (e.g. incidents never firing) while leaving the rest seeded.
    """

    def __init__(self, seed: int = 19920101) -> None:
        self.seed = int(seed)
        self._rng = random.Random(self.seed)

    # Reliability
    def incident_roll(self) -> float:
        return self._rng.random()

    def incident_downtime(self) -> float:
        return self._rng.random()

    def recovery_integrity(self) -> float:
        return self._rng.random()

    # Logistics
    def shipment_volume_jitter(self) -> float:
        return self._rng.uniform(0.8, 1.2)

    def shipment_window(self) -> float:
        return self._rng.uniform(6.0, 12.0)

    def shipment_interval_jitter(self) -> float:
        return self._rng.uniform(0.85, 1.15)

    # Directives
    def directive_pick(self, options: Sequence[T]) -> T:
        return options[self._rng.randrange(0, len(options))]

    def directive_roll(self) -> float:
        return self._rng.random()

    # Persistence
    def get_state(self) -> List[Any]:
        return cast(List[Any], _to_jsonable(self._rng.getstate()))

    def set_state(self, state: object) -> bool:
        try:
            self._rng.setstate(cast(tuple, _to_tuple(state)))
            return True
        except (TypeError, ValueError):
            return False
