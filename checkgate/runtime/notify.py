"""
notify.py - Outbound notification of escalations.

The gate engine does not own a human channel; it hands every raised and
resolved escalation to an EscalationNotifier. The default implementation
writes to the log. Delivery is fire-and-forget: a failing notifier is logged
and never fails the state change that triggered it, which is already durable.

Usage:
    from checkgate.runtime.notify import EscalationNotifier, LogNotifier

    class PagerNotifier(EscalationNotifier):
        def raised(self, escalation):
            pager.page(escalation.reason)

    engine = GateEngine(notifier=PagerNotifier())
"""

from __future__ import annotations

import logging

from .types import Escalation

logger = logging.getLogger(__name__)


class EscalationNotifier:
    """Sink for escalation lifecycle notifications. Methods default to no-ops."""

    def raised(self, escalation: Escalation) -> None:
        pass

    def resolved(self, escalation: Escalation) -> None:
        pass


class LogNotifier(EscalationNotifier):
    """Report escalations through the standard logger."""

    def raised(self, escalation: Escalation) -> None:
        logger.warning(
            "Escalation %s raised for task %s at %s [%s]: %s",
            escalation.id,
            escalation.task_id,
            escalation.checkpoint.value,
            escalation.risk_tag.value,
            escalation.reason,
        )

    def resolved(self, escalation: Escalation) -> None:
        logger.info(
            "Escalation %s for task %s resolved as %s by %s",
            escalation.id,
            escalation.task_id,
            escalation.decision.value if escalation.decision else None,
            escalation.resolved_by or "unknown",
        )


def deliver(notifier: EscalationNotifier, escalation: Escalation, resolved: bool = False) -> None:
    """Call a notifier, logging instead of propagating its failures."""
    try:
        if resolved:
            notifier.resolved(escalation)
        else:
            notifier.raised(escalation)
    except Exception as e:
        logger.warning(
            "Notifier %s failed for escalation %s: %s",
            type(notifier).__name__,
            escalation.id,
            e,
        )
