"""
Derived project statistics for the dashboards.

Every function here is pure: it reads the attributes of the records it is
given (ORM rows or any object exposing the same fields), performs no I/O and
returns the same result for the same inputs. Empty collections are valid
input everywhere.
"""
import math
from datetime import date, datetime, time, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Dict, Sequence

from ..models.models import COST_CATEGORIES

SECONDS_PER_DAY = 24 * 60 * 60


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (32.5 -> 33)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _num(value) -> float:
    return float(value or 0)


# ----- collections of projects -----


def total_budget(projects: Iterable) -> float:
    return sum((_num(p.budget) for p in projects), 0.0)


def total_spent(projects: Iterable) -> float:
    return sum((_num(p.spent) for p in projects), 0.0)


def active_count(projects: Iterable) -> int:
    return sum(1 for p in projects if p.status == "in_progress")


def completed_count(projects: Iterable) -> int:
    return sum(1 for p in projects if p.status == "done")


def average_progress(projects: Sequence) -> int:
    if not projects:
        return 0
    return round_half_up(sum(int(p.progress or 0) for p in projects) / len(projects))


def portfolio_summary(projects: Sequence) -> dict:
    return {
        "total_budget": total_budget(projects),
        "total_spent": total_spent(projects),
        "active_count": active_count(projects),
        "completed_count": completed_count(projects),
        "average_progress": average_progress(projects),
        "project_count": len(projects),
    }


# ----- a single project -----


def budget_utilization(project) -> int:
    budget = _num(project.budget)
    if budget == 0:
        return 0
    return round_half_up(100 * _num(project.spent) / budget)


def is_over_budget(project) -> bool:
    return _num(project.spent) > _num(project.budget)


def completed_phase_count(phases: Iterable) -> int:
    return sum(1 for ph in phases if ph.status == "done")


def current_phase(phases: Iterable):
    """First in-progress phase in sort order, or None."""
    for ph in sorted(phases, key=lambda ph: ph.sort_order or 0):
        if ph.status == "in_progress":
            return ph
    return None


def duration_weeks(start: Optional[date], end: Optional[date]) -> int:
    if start is None or end is None:
        return 0
    return math.ceil((end - start).days / 7)


def _as_utc_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def days_remaining(end: Optional[date], now: datetime) -> Optional[int]:
    """Whole days until ``end`` (rounded up); negative once overdue."""
    if end is None:
        return None
    delta = _as_utc_datetime(end) - _as_utc_datetime(now)
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def cost_totals_by_category(costs: Iterable) -> Dict[str, float]:
    totals = {category: 0.0 for category in COST_CATEGORIES}
    for cost in costs:
        if cost.category in totals:
            totals[cost.category] += _num(cost.amount)
    return totals


def cost_total(costs: Iterable) -> float:
    return sum((_num(c.amount) for c in costs), 0.0)


def costs_reconcile(project, costs: Iterable) -> bool:
    """True when the cost ledger adds up to the project's spent amount."""
    return math.isclose(cost_total(costs), _num(project.spent), abs_tol=0.005)


def project_metrics(project, phases: Sequence, costs: Sequence, now: datetime) -> dict:
    phase = current_phase(phases)
    return {
        "budget_utilization": budget_utilization(project),
        "over_budget": is_over_budget(project),
        "completed_phases": completed_phase_count(phases),
        "total_phases": len(phases),
        "current_phase": phase.name if phase is not None else None,
        "duration_weeks": duration_weeks(project.start_date, project.estimated_end_date),
        "days_remaining": days_remaining(project.estimated_end_date, now),
        "cost_totals": cost_totals_by_category(costs),
        "costs_reconciled": costs_reconcile(project, costs),
    }
