from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

UPSELLS_RESOLVED = "upsells_resolved"
UPSELLS_DEFAULT_SERVED = "upsells_default_served"
ANALYTICS_CLICKS = "analytics_clicks"
ANALYTICS_CONVERSIONS = "analytics_conversions"
ANALYTICS_CONVERSION_FALLBACKS = "analytics_conversion_fallbacks"

KNOWN_COUNTERS = (
    UPSELLS_RESOLVED,
    UPSELLS_DEFAULT_SERVED,
    ANALYTICS_CLICKS,
    ANALYTICS_CONVERSIONS,
    ANALYTICS_CONVERSION_FALLBACKS,
)

_metrics: CounterType[str] = Counter()
_lock = Lock()


def increment(*names: str) -> None:
    with _lock:
        for name in names:
            _metrics[name] += 1


def snapshot() -> Dict[str, int]:
    """Every known counter, zero-filled, plus anything else incremented so far."""
    with _lock:
        data = {name: 0 for name in KNOWN_COUNTERS}
        data.update(_metrics)
        return data


def reset() -> None:
    with _lock:
        _metrics.clear()
