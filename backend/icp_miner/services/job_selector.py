# backend/icp_miner/services/job_selector.py
"""Pick the single mining job to advance next."""

import math
from typing import Optional, Sequence

from icp_miner.models import ACTIVE_MINING_STATUSES


def _remaining(job) -> float:
    # Unknown total: rank first so page 0 can measure it
    if job.total_targets is None:
        return math.inf
    return job.total_targets - (job.processed_targets or 0)


def select_next_job(jobs: Sequence) -> Optional[object]:
    """
    Running jobs beat pending ones; within a tier, most remaining targets wins.

    Jobs in a terminal status are never returned. Tie order is unspecified.
    """
    active = [job for job in jobs if job.status in ACTIVE_MINING_STATUSES]
    if not active:
        return None

    return max(active, key=lambda job: (job.status == "running", _remaining(job)))
