from typing import Iterable, List

from vault.parsers.models import UNKNOWN_DATE, Numeric, Report, TrendPoint


def available_metrics(reports: Iterable[Report]) -> List[str]:
    """Metric names with at least one numeric reading."""
    names = {
        name
        for r in reports
        for name, m in r.values.items()
        if isinstance(m.value, Numeric)
    }
    return sorted(names)


def metric_series(reports: Iterable[Report], metric: str) -> List[TrendPoint]:
    points = []
    for r in reports:
        m = r.values.get(metric)
        if m is None or not isinstance(m.value, Numeric) or r.captured_at == UNKNOWN_DATE:
            continue
        points.append(TrendPoint(date=r.captured_at, value=m.value.value))
    # stable: same-day points keep input order
    return sorted(points, key=lambda p: p.date)
