"""Cross-instrument currency strength.

Each pair's recent percentage change is credited to its base currency and
debited from its quote currency; a currency's strength is the mean of its
contributions.  The net bias of a pair is ``strength[base] - strength[quote]``.
"""

from typing import Mapping, Sequence

import numpy as np

from scout.market.instruments import split_pair
from scout.strategy.models import Candle

STRENGTH_LOOKBACK = 15


def compute_currency_strength(
    histories: Mapping[str, Sequence[Candle]],
    lookback: int = STRENGTH_LOOKBACK,
) -> dict[str, float]:
    """Return ``{currency: mean % change}`` across every parseable pair."""
    contributions: dict[str, list[float]] = {}
    for instrument, candles in histories.items():
        pair = split_pair(instrument)
        if pair is None or len(candles) <= lookback:
            continue
        start = candles[-lookback - 1].close
        if start <= 0:
            continue
        change = (candles[-1].close - start) / start * 100
        base, quote = pair
        contributions.setdefault(base, []).append(change)
        contributions.setdefault(quote, []).append(-change)
    return {
        currency: float(np.mean(values))
        for currency, values in contributions.items()
    }


def net_bias(instrument: str, strengths: Mapping[str, float]) -> float:
    """Positive favours BUY on *instrument*, negative favours SELL."""
    pair = split_pair(instrument)
    if pair is None:
        return 0.0
    base, quote = pair
    return strengths.get(base, 0.0) - strengths.get(quote, 0.0)
