"""Durable poller state: watermark and active-instance lease.

Both live as small files under ``~/.imbridge/`` and are the only mutable
state shared between overlapping poller instances.
"""

from imbridge.state.lease import ActiveInstanceLease, new_instance_id
from imbridge.state.watermark import RECENT_IDS_LIMIT, Watermark, WatermarkStore

__all__ = [
    "RECENT_IDS_LIMIT",
    "ActiveInstanceLease",
    "Watermark",
    "WatermarkStore",
    "new_instance_id",
]
