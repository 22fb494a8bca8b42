"""
Resolution of the daily and weekly delta windows needed to catch up.

Incremental feeds are published at two granularities with overlapping
retention. Before anything is fetched, the resolver proves that the windows
available on the server leave no gap between the last applied version and
the oldest data still published, and orders them so that coarse weekly data
is applied before the daily data that refines the same period.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from ..core.exceptions import InconsistentServerDataError, StaleDatabaseError, SyncConfigError
from ..core.models import DATE_FORMAT, DeltaKind, DeltaWindow


logger = logging.getLogger(__name__)


WEEKLY_LIMIT_DAYS = 6
WEEKLY_SPAN_DAYS = 7


@dataclass
class DeltaPlan:
    """
    Ordered delta windows to apply.

    Attributes:
        start_version: Effective starting marker
        deltas: Weekly windows (ascending) followed by daily windows (ascending)
        final_version: Highest selected daily name, or start_version
        covered_by_daily: Whether daily windows alone reach back to start_version
    """
    start_version: str
    deltas: List[DeltaWindow] = field(default_factory=list)
    final_version: Optional[str] = None
    covered_by_daily: bool = False

    @property
    def weekly(self) -> List[DeltaWindow]:
        return [d for d in self.deltas if d.kind == DeltaKind.WEEKLY]

    @property
    def daily(self) -> List[DeltaWindow]:
        return [d for d in self.deltas if d.kind == DeltaKind.DAILY]


class DeltaResolver:
    """Computes the delta windows to apply from the remote listings."""

    def resolve(
        self,
        last_version: Optional[str],
        base_version: Optional[str],
        daily: Sequence[str],
        weekly: Sequence[str],
    ) -> DeltaPlan:
        """
        Resolve the windows between the starting marker and the newest data.

        Args:
            last_version: Version persisted in the store, None if never synced
            base_version: Version of the base corpus, used when last_version is None
            daily: Daily window names
            weekly: Weekly window names

        Returns:
            DeltaPlan with the ordered windows and the final version

        Raises:
            SyncConfigError: If neither last_version nor base_version is set
            InconsistentServerDataError: If the listings leave a gap
            StaleDatabaseError: If the starting marker predates the retained history
        """
        start = last_version if last_version is not None else base_version
        if start is None:
            raise SyncConfigError(
                "No local version and no base version configured",
                missing_keys=["paths.base_version"],
            )

        daily = sorted(daily)
        weekly = sorted(weekly)

        if not daily:
            raise InconsistentServerDataError("daily window listing is empty")

        selected_daily = [name for name in daily if name > start]
        covered = any(name <= start for name in daily) and _is_contiguous(start, selected_daily)
        final_version = selected_daily[-1] if selected_daily else start

        plan = DeltaPlan(start_version=start, final_version=final_version, covered_by_daily=covered)

        if not covered:
            if not selected_daily:
                raise InconsistentServerDataError(
                    "daily window list contains a gap with no lower bound"
                )
            oldest_daily = selected_daily[0]
            limit = _shift(oldest_daily, WEEKLY_LIMIT_DAYS)

            selected_weekly = [name for name in weekly if start < name < limit]
            if not selected_weekly:
                raise InconsistentServerDataError(
                    "no weekly window bridges the gap before the oldest daily window "
                    f"({start} -> {oldest_daily})"
                )

            oldest_weekly = selected_weekly[0]
            first_uncovered = _shift(oldest_weekly, -WEEKLY_SPAN_DAYS)
            if first_uncovered > start:
                raise StaleDatabaseError(
                    f"the local version {start} predates all recoverable remote history "
                    f"(oldest weekly window covers from {first_uncovered})"
                )

            plan.deltas.extend(DeltaWindow(DeltaKind.WEEKLY, name) for name in selected_weekly)

        plan.deltas.extend(DeltaWindow(DeltaKind.DAILY, name) for name in selected_daily)

        logger.info(
            f"Resolved {len(plan.weekly)} weekly and {len(plan.daily)} daily windows "
            f"from {start} to {final_version}"
        )
        return plan


def _shift(name: str, days: int) -> str:
    try:
        day = datetime.strptime(name, DATE_FORMAT)
    except ValueError as e:
        raise InconsistentServerDataError(f"window name {name!r} is not a date") from e
    return (day + timedelta(days=days)).strftime(DATE_FORMAT)


def _is_contiguous(start: str, names: Sequence[str]) -> bool:
    """Whether ``names`` are the days directly following ``start``, none missing."""
    previous = start
    for name in names:
        if _shift(previous, 1) != name:
            return False
        previous = name
    return True
