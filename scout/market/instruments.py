"""Instrument naming and quote metadata.

Internal names look like ``"EUR/USD_OTC"``; the host site's asset ids look
like ``"EURUSD_otc"``.
"""

from typing import Optional

# ── Instrument metadata ─────────────────────────────────────────────────

DEFAULT_INSTRUMENTS: tuple[str, ...] = (
    "EUR/USD_OTC",
    "GBP/USD_OTC",
    "AUD/CAD_OTC",
    "EUR/JPY_OTC",
    "USD/JPY_OTC",
    "AUD/USD_OTC",
    "NZD/USD_OTC",
    "USD/CHF_OTC",
    "USD/CAD_OTC",
    "GBP/JPY_OTC",
)

# Quote currencies priced to 3 decimals; everything else uses 5
_THREE_DECIMAL_QUOTES = {"JPY"}


def split_pair(instrument: str) -> Optional[tuple[str, str]]:
    """``"EUR/USD_OTC"`` → ``("EUR", "USD")``; ``None`` if unparseable."""
    symbol = instrument.split("_", 1)[0]
    if "/" in symbol:
        base, _, quote = symbol.partition("/")
    elif len(symbol) == 6:
        base, quote = symbol[:3], symbol[3:]
    else:
        return None
    if len(base) != 3 or len(quote) != 3:
        return None
    return base.upper(), quote.upper()


def quote_precision(instrument: str) -> int:
    """Decimal places quoted for *instrument*."""
    pair = split_pair(instrument)
    if pair and pair[1] in _THREE_DECIMAL_QUOTES:
        return 3
    return 5


def pip_size(instrument: str) -> float:
    """One pip: ``0.01`` for 3-decimal quotes, ``0.0001`` otherwise."""
    return 10.0 ** -(quote_precision(instrument) - 1)


def to_asset_id(instrument: str) -> str:
    """``"EUR/USD_OTC"`` → ``"EURUSD_otc"``."""
    clean = instrument.replace("/", "")
    parts = clean.split("_")
    if len(parts) == 2:
        return f"{parts[0]}_{parts[1].lower()}"
    return clean


def from_asset_id(asset_id: str) -> str:
    """``"EURUSD_otc"`` → ``"EUR/USD_OTC"`` (assumes 3-letter currency codes)."""
    parts = asset_id.split("_")
    if len(parts) == 2:
        base = parts[0]
        return f"{base[:3]}/{base[3:]}_{parts[1].upper()}"
    return asset_id


def normalise_instrument(name: str) -> str:
    """Accept either naming style and return the internal one."""
    if "/" in name:
        return name
    return from_asset_id(name)
