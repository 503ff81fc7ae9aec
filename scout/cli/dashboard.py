"""CLI dashboard — prints Scout metrics to the console."""


def _rate(value) -> str:
    return f"{value:.1f}%" if value is not None else "N/A"


def print_status(metrics: dict) -> str:
    """Format and print a ``ScoutService.metrics()`` document.

    Args:
        metrics: Dict with ``metrics``, ``lastSignal`` and ``pairStatus`` keys.
            Missing sections render as ``N/A``.

    Returns:
        The formatted string (also printed to stdout).
    """
    stats = metrics.get("metrics", {})
    gates = stats.get("gates", {})
    last = metrics.get("lastSignal")
    pairs = metrics.get("pairStatus", {})

    if last:
        result = last.get("result") or "pending"
        last_str = (
            f"{last['pair']} {last['action']} {last['confidence']}% "
            f"{last['duration']}m ({result})"
        )
    else:
        last_str = "N/A"

    lines = [
        "───────────────── Scout Status ─────────────────",
        f"  Engine:          {metrics.get('engine') or 'none'}",
        f"  Interval:        {stats.get('currentInterval', 'N/A')}m",
        f"  Warmup:          {stats.get('currentWarmup', 'N/A')} candles",
        f"  Signals:         {stats.get('totalSignals', 0)} "
        f"({stats.get('wins', 0)}W/{stats.get('losses', 0)}L) "
        f"WR {_rate(stats.get('winRate'))}",
        f"  High conf:       {stats.get('highConfTotal', 0)} "
        f"({stats.get('highConfWins', 0)}W/{stats.get('highConfLosses', 0)}L) "
        f"WR {_rate(stats.get('highConfWinRate'))}",
        f"  Losing streak:   {stats.get('consecutiveLosses', 0)}",
        f"  Executor gates:  overall={'ACTIVE' if gates.get('overallBlock') else 'off'} "
        f"high-conf={'ACTIVE' if gates.get('highConfBlock') else 'off'}",
        f"  Last signal:     {last_str}",
        f"  Instruments:     {metrics.get('activePairs', len(pairs))} "
        f"({metrics.get('warmupCompletePairs', 0)} warmed up)",
    ]
    for name, status in sorted(pairs.items()):
        flags = []
        if status.get("frozen"):
            flags.append("FROZEN")
        if not status.get("warmupComplete"):
            flags.append("warmup")
        if not status.get("payoutEligible", True):
            flags.append("low payout")
        price = status.get("price")
        price_str = f"{price}" if price is not None else "N/A"
        lines.append(
            f"    {name:<14} {price_str:>12}  {status.get('candles', 0):>5} candles"
            + (f"  [{', '.join(flags)}]" if flags else "")
        )
    lines.append("────────────────────────────────────────────────")
    output = "\n".join(lines)
    print(output)
    return output
