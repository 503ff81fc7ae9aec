"""Shadow-trade log and reliability report.

``ShadowLogger`` appends JSONL records for every resolved shadow trade and
every inverted live call; ``analyze_shadow_log`` summarises them per
instrument.

Usage:
    python -m scout.strategy.shadow_log --log data/shadow_log.jsonl
"""

from __future__ import annotations

import argparse
import json
import logging
from collections import defaultdict
from pathlib import Path

from scout.strategy.base import ShadowOutcome
from scout.strategy.models import Signal

logger = logging.getLogger("scout.strategy.shadow")

INVERSION_MARKERS = ("GHOST_INVERSION", "FRACTAL_INVERSION")


class ShadowLogger:
    """Records shadow outcomes and inverted signals in JSONL format."""

    def __init__(self, log_path: str = "data/shadow_log.jsonl"):
        self._path = Path(log_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def log_outcome(self, outcome: ShadowOutcome) -> None:
        """Append one resolved shadow trade."""
        record = {
            "type": "outcome",
            "timestamp": outcome.resolved_at,
            "instrument": outcome.instrument,
            "direction": outcome.direction,
            "entry_price": outcome.entry_price,
            "exit_price": outcome.exit_price,
            "result": outcome.result,
        }
        with open(self._path, "a") as f:
            f.write(json.dumps(record) + "\n")

    def log_inversion(self, signal: Signal) -> None:
        """Append a live signal whose direction was inverted by learning."""
        markers = [r for r in signal.reasons if r in INVERSION_MARKERS]
        if not markers:
            return
        record = {
            "type": "inversion",
            "timestamp": signal.created_at,
            "instrument": signal.instrument,
            "direction": signal.direction,
            "confidence": signal.confidence,
            "markers": markers,
        }
        with open(self._path, "a") as f:
            f.write(json.dumps(record) + "\n")


def analyze_shadow_log(log_path: str) -> dict:
    """Per-instrument shadow win rates and inversion counts."""
    path = Path(log_path)
    if not path.exists():
        return {"error": f"Log file not found: {log_path}"}

    wins: dict[str, int] = defaultdict(int)
    losses: dict[str, int] = defaultdict(int)
    inversions: dict[str, int] = defaultdict(int)

    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            record = json.loads(line)
            instrument = record.get("instrument", "?")
            if record.get("type") == "inversion":
                inversions[instrument] += 1
            elif record.get("result") == "WIN":
                wins[instrument] += 1
            elif record.get("result") == "LOSS":
                losses[instrument] += 1

    instruments = sorted(set(wins) | set(losses) | set(inversions))
    if not instruments:
        return {"error": "No shadow records found in log"}

    per_instrument = {}
    for name in instruments:
        total = wins[name] + losses[name]
        per_instrument[name] = {
            "shadow_trades": total,
            "wins": wins[name],
            "losses": losses[name],
            "win_rate": round(wins[name] / total, 3) if total else None,
            "inversions": inversions[name],
        }

    total_wins = sum(wins.values())
    total_trades = total_wins + sum(losses.values())
    return {
        "shadow_trades": total_trades,
        "win_rate": round(total_wins / total_trades, 3) if total_trades else None,
        "inversions": sum(inversions.values()),
        "instruments": per_instrument,
    }


def main():
    parser = argparse.ArgumentParser(description="Summarise Scout shadow-trade reliability")
    parser.add_argument("--log", default="data/shadow_log.jsonl")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    result = analyze_shadow_log(args.log)
    print(json.dumps(result, indent=2))

    if "win_rate" in result:
        logger.info("Overall shadow win rate: %s", result["win_rate"])


if __name__ == "__main__":
    main()
