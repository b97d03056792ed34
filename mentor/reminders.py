"""Scheduled reminder jobs: warmed-chip completion and due tasks.

Both jobs are run by an external scheduler. The due-task window is
``[now - interval, now)`` and its width must equal the scheduler cadence:
a wider cadence leaves gaps, a narrower one matches the same task twice.
A missed run is not caught up.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from mentor.models import Mentee, Task, User, WarmingChip
from mentor.push import PushClient
from mentor.utils import to_naive_utc, utcnow

log = logging.getLogger(__name__)

WARMING_STATUS = "WARMING"
DONE_STATUS = "DONE"


@dataclass
class JobReport:
    job: str
    matched: int = 0
    notified: int = 0
    skipped: int = 0
    ok: bool = True
    error: str | None = None
    notified_ids: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Recipient resolution
# ---------------------------------------------------------------------------


def _user_tokens(session: Session, user_id: str | None) -> list[str]:
    if not user_id:
        return []
    user = session.get(User, user_id)
    return user.fcm_tokens if user else []


def resolve_task_tokens(session: Session, owner_role: str, owner_id: str) -> list[str]:
    """Device tokens for a task owner; the first non-empty lookup wins.

    mentor: ``users/{owner}``.
    otherwise: ``users/{owner}``, then ``mentees/{owner}``, then
    ``users/{mentee.user_id}``.
    """
    tokens = _user_tokens(session, owner_id)
    if tokens or (owner_role or "").lower() == "mentor":
        return tokens

    mentee = session.get(Mentee, owner_id)
    if mentee is None:
        return []
    if mentee.fcm_tokens:
        return mentee.fcm_tokens
    return _user_tokens(session, mentee.user_id)


def resolve_chip_tokens(session: Session, owner_id: str) -> list[str]:
    """Device tokens for a chip owner: ``mentees/{owner}``, then its linked user, then ``users/{owner}``."""
    mentee = session.get(Mentee, owner_id)
    if mentee is not None:
        if mentee.fcm_tokens:
            return mentee.fcm_tokens
        tokens = _user_tokens(session, mentee.user_id)
        if tokens:
            return tokens
    return _user_tokens(session, owner_id)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


def due_window(now: datetime, interval: timedelta) -> tuple[datetime, datetime]:
    now = to_naive_utc(now)
    return now - interval, now


def check_due_tasks(
    session: Session, push: PushClient, now: datetime | None = None,
    interval: timedelta | None = None,
) -> JobReport:
    """Notify owners of open tasks whose due time falls in the current window."""
    if interval is None:
        from mentor.config import get_settings
        interval = timedelta(minutes=get_settings().due_task_interval_minutes)
    start, end = due_window(now or utcnow(), interval)
    tasks = session.execute(
        select(Task)
        .where(Task.due_at >= start, Task.due_at < end, Task.status != DONE_STATUS)
        .order_by(Task.due_at)
    ).scalars().all()

    report = JobReport(job="due-tasks", matched=len(tasks))
    for task in tasks:
        tokens = resolve_task_tokens(session, task.owner_role, task.owner_id)
        if not tokens:
            log.info("Task %s: no device tokens for %s %s, skipping", task.id, task.owner_role, task.owner_id)
            report.skipped += 1
            continue
        push.send(
            tokens,
            title="⏰ Hora da Missão!",
            body=f'"{task.title}" está agendada para agora.',
            data={"type": "TASK_DUE", "taskId": task.id},
        )
        report.notified += 1
        report.notified_ids.append(task.id)
    log.info("Due-task check [%s, %s): %d matched, %d notified", start, end, report.matched, report.notified)
    return report


def check_warming_chips(session: Session, push: PushClient, target_day: int | None = None) -> JobReport:
    """Notify owners of chips that reached the final warming day (caller must commit).

    Each chip is notified once: the send stamps ``completion_notified_at``.
    Chips whose owner has no tokens stay unmarked and are retried next run.
    """
    if target_day is None:
        from mentor.config import get_settings
        target_day = get_settings().warming_target_day
    chips = session.execute(
        select(WarmingChip).where(
            WarmingChip.status == WARMING_STATUS,
            WarmingChip.current_day == target_day,
            WarmingChip.completion_notified_at.is_(None),
        )
    ).scalars().all()

    report = JobReport(job="warming-chips", matched=len(chips))
    for chip in chips:
        tokens = resolve_chip_tokens(session, chip.user_id)
        if not tokens:
            report.skipped += 1
            continue
        push.send(
            tokens,
            title="Chip Blindado! 🛡️",
            body=f"O chip {chip.name} concluiu o protocolo de aquecimento.",
            data={"type": "WARMING_COMPLETE", "chipId": chip.id},
        )
        chip.completion_notified_at = utcnow()
        report.notified += 1
        report.notified_ids.append(chip.id)
    session.flush()
    log.info("Warming check (day %d): %d matched, %d notified", target_day, report.matched, report.notified)
    return report


def run_job(name: str, job: Callable[[Session], JobReport], session: Session) -> JobReport:
    """Scheduler boundary: commit on success; log and roll back on failure, never raise."""
    try:
        report = job(session)
        session.commit()
        return report
    except Exception as exc:
        session.rollback()
        log.exception("Scheduled job %s failed", name)
        return JobReport(job=name, ok=False, error=str(exc))
