"""Engine registry — maps engine names to factories.

Used by ``ScoutService`` to instantiate the engine named in ``Config.engine``.
"""

from typing import Callable, Union

from scout.strategy.base import CandleEngine, SnapshotEngine
from scout.strategy.nexus import NexusEngine
from scout.strategy.scoring import ConfluenceScoringEngine
from scout.strategy.sequence import AGGRESSIVE, STRICT, SequenceEngine

Engine = Union[CandleEngine, SnapshotEngine]

ENGINE_REGISTRY: dict[str, Callable[[], Engine]] = {
    "confluence": ConfluenceScoringEngine,
    "sequence": lambda: SequenceEngine(AGGRESSIVE, name="sequence"),
    "sequence_strict": lambda: SequenceEngine(STRICT, name="sequence_strict"),
    "nexus": NexusEngine,
}


def get_engine(name: str) -> Engine:
    """Look up and instantiate an engine by registry key.

    Raises ``KeyError`` if the engine name is not registered.
    """
    if name not in ENGINE_REGISTRY:
        raise KeyError(
            f"Unknown engine '{name}'. "
            f"Available: {', '.join(ENGINE_REGISTRY.keys())}"
        )
    return ENGINE_REGISTRY[name]()


def is_snapshot_engine(engine) -> bool:
    """True for cross-instrument engines (``process_snapshot``)."""
    return isinstance(engine, SnapshotEngine)
