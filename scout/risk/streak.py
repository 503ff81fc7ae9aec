"""Losing-streak tracking and confidence damping — pure math, no I/O.

Counts consecutive losing signals.  Once the streak reaches
``cap_threshold`` the displayed confidence of new signals is capped at
``max(floor, 100 - step * streak)``.  A shadow trade resolving WIN while the
streak is elevated nudges it down by one.
"""


class StreakTracker:
    """Tracks consecutive losses and derives a confidence cap.

    Args:
        consecutive_losses: Streak restored from persistence.
        cap_threshold: Streak length at which the cap starts applying.
        step: Confidence points removed per loss in the streak.
        floor: Lowest the cap can go.
    """

    def __init__(
        self,
        consecutive_losses: int = 0,
        cap_threshold: int = 2,
        step: int = 10,
        floor: int = 50,
    ) -> None:
        if consecutive_losses < 0:
            raise ValueError(
                f"consecutive_losses must be non-negative, got {consecutive_losses}"
            )
        self._streak = consecutive_losses
        self._cap_threshold = cap_threshold
        self._step = step
        self._floor = floor

    # ── Mutation ─────────────────────────────────────────────────────────

    def record(self, won: bool) -> None:
        """A real signal resolved: reset on WIN, extend on LOSS."""
        self._streak = 0 if won else self._streak + 1

    def shadow_recovery(self) -> bool:
        """A shadow trade won; decrement an elevated streak.

        Returns ``True`` if the streak changed.
        """
        if self._streak >= self._cap_threshold:
            self._streak -= 1
            return True
        return False

    def reset(self) -> None:
        self._streak = 0

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def consecutive_losses(self) -> int:
        return self._streak

    @property
    def confidence_cap(self) -> int:
        """Highest confidence allowed right now (100 outside a streak)."""
        if self._streak < self._cap_threshold:
            return 100
        return max(self._floor, 100 - self._step * self._streak)

    def apply_cap(self, confidence: int) -> int:
        return min(confidence, self.confidence_cap)
