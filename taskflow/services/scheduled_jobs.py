"""
Ops Console — Task Workflow Engine
Scheduled Jobs.

Concrete job implementations that run on a schedule.

Jobs:
    - escalation_sweep: Reassigns overdue tasks per the automation rules
"""

from __future__ import annotations

import logging
from typing import Any

from taskflow.services.escalation import EscalationEngine
from taskflow.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("escalation_sweep")
def escalation_sweep(app) -> dict[str, Any]:
    """Reassign overdue tasks according to the configured automation rules."""
    return EscalationEngine.run_sweep()
