"""
Sélection des scans à synchroniser dans un batch selon la stratégie configurée.

- fifo     : le plus ancien scan d'abord
- lifo     : le plus récent d'abord
- priority : les scans du jour courant avant tous les autres, puis du plus ancien au plus récent
"""

from datetime import datetime
from typing import List

from attendance_sync.schemas.offline_queue import OfflineAttendanceRecord


def is_same_day(captured_at: datetime, now: datetime) -> bool:
    """Même jour calendaire, dans le fuseau de l'horloge."""
    return captured_at.astimezone(now.tzinfo).date() == now.date()


def select_batch(
    pending: List[OfflineAttendanceRecord],
    strategy: str,
    batch_size: int,
    now: datetime,
) -> List[OfflineAttendanceRecord]:
    if strategy == "fifo":
        ordered = sorted(pending, key=lambda r: r.captured_at)
    elif strategy == "lifo":
        ordered = sorted(pending, key=lambda r: r.captured_at, reverse=True)
    elif strategy == "priority":
        ordered = sorted(pending, key=lambda r: (not is_same_day(r.captured_at, now), r.captured_at))
    else:
        ordered = list(pending)
    return ordered[:batch_size]
