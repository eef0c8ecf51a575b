"""
Lifecycle Cascade Engine — Task → Feature → Epic propagation.

Runs after a task mutation has committed:

  1. Feature of the task: when it has at least one task and every task is
     closed (``closed_at`` set), the feature becomes Verified.
  2. Only when step 1 changed the feature: when the epic of that feature
     has at least one feature and all are Verified, the epic becomes
     Completed.
  3. Epic of the task: ``progress`` = Done tasks / all tasks × 100
     (0 with no tasks). Counts ``status == Done``, never ``closed_at``.

The reverse direction keeps the same rules true when a task is reopened,
added or moved away: a Verified feature that no longer qualifies goes back
to In Progress, and a Completed epic likewise.

Each transition is a conditional UPDATE (``... WHERE status != target``);
the engine audits only when its own statement changed a row, so running it
twice produces no extra writes and no extra audit entries. Parents that
vanished concurrently are skipped.

Usage:
    result = engine.on_task_mutated(task_id, actor_id=user_id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import sqlalchemy as sa

from agileflow.models.audit import AuditAction
from agileflow.models.project import BoardColumn
from agileflow.models.work_items import (
    Epic,
    EpicStatus,
    Feature,
    FeatureStatus,
    Task,
    TaskStatus,
)

logger = logging.getLogger(__name__)


# ── Pure rules ──────────────────────────────────────────────────────────────

def task_is_closed(status, column_id: str | None, terminal_column_id: str | None) -> bool:
    if status == TaskStatus.DONE or status == TaskStatus.DONE.value:
        return True
    return terminal_column_id is not None and column_id == terminal_column_id


def all_closed(total: int, closed: int) -> bool:
    return total > 0 and total == closed


def compute_progress(done: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return done / total * 100


@dataclass
class CascadeResult:
    task_id: str
    feature_changes: dict[str, str] = field(default_factory=dict)
    epic_changes: dict[str, str] = field(default_factory=dict)
    progress: dict[str, float] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.feature_changes or self.epic_changes or self.progress)

    def to_dict(self) -> dict:
        return {
            "feature_changes": self.feature_changes,
            "epic_changes": self.epic_changes,
            "progress": self.progress,
            "skipped": self.skipped,
        }


class CascadeEngine:
    def __init__(self, session, audit):
        self.session = session
        self.audit = audit

    # ── Closure at mutation time ────────────────────────────────────────

    def terminal_column_id(self, tenant_id: str) -> str | None:
        return self.session.execute(
            sa.select(BoardColumn.id)
            .where(BoardColumn.tenant_id == tenant_id, BoardColumn.is_terminal.is_(True))
            .order_by(BoardColumn.order.desc())
            .limit(1)
        ).scalar_one_or_none()

    def apply_closure(self, task: Task, terminal_column_id: str | None = None,
                      now: datetime | None = None) -> bool:
        """Set or clear ``task.closed_at`` from status/column. Returns True if changed.

        An already-closed task keeps its original ``closed_at``.
        """
        if terminal_column_id is None:
            terminal_column_id = self.terminal_column_id(task.tenant_id)
        closed = task_is_closed(task.status, task.column_id, terminal_column_id)
        if closed and task.closed_at is None:
            task.closed_at = now or datetime.now(timezone.utc)
            return True
        if not closed and task.closed_at is not None:
            task.closed_at = None
            return True
        return False

    # ── Propagation ─────────────────────────────────────────────────────

    def on_task_mutated(
        self,
        task_id: str,
        *,
        tenant_id: str | None = None,
        actor_id: str | None = None,
        previous_feature_id: str | None = None,
        previous_epic_id: str | None = None,
    ) -> CascadeResult:
        """Settle every parent touched by the task, current and previous."""
        result = CascadeResult(task_id=task_id)
        task = self.session.get(Task, task_id)
        if task is None:
            result.skipped.append(f"task:{task_id}")
            feature_ids, epic_ids = [], []
        else:
            tenant_id = task.tenant_id
            feature_ids, epic_ids = [task.feature_id], [task.epic_id]

        if tenant_id is None:
            return result

        feature_ids.append(previous_feature_id)
        epic_ids.append(previous_epic_id)

        for feature_id in dict.fromkeys(f for f in feature_ids if f):
            self._settle_feature(tenant_id, feature_id, actor_id, result)
        for epic_id in dict.fromkeys(e for e in epic_ids if e):
            self._settle_progress(tenant_id, epic_id, actor_id, result)

        if result.changed:
            logger.info("Cascade from task %s: %s", task_id, result.to_dict())
        return result

    def settle_epic(self, tenant_id: str, epic_id: str, actor_id: str | None = None) -> CascadeResult:
        """Re-check epic closure directly, e.g. after one of its features was deleted."""
        result = CascadeResult(task_id="")
        self._settle_epic_closure(tenant_id, epic_id, actor_id, result)
        return result

    def _settle_feature(self, tenant_id, feature_id, actor_id, result: CascadeResult):
        feature = self.session.execute(
            sa.select(Feature).where(Feature.id == feature_id, Feature.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if feature is None:
            result.skipped.append(f"feature:{feature_id}")
            return

        total, closed = self.session.execute(
            sa.select(
                sa.func.count(Task.id),
                sa.func.count(Task.closed_at),
            ).where(Task.tenant_id == tenant_id, Task.feature_id == feature_id)
        ).one()

        now = datetime.now(timezone.utc)
        if all_closed(total, closed):
            target, closed_at, guard = FeatureStatus.VERIFIED, now, Feature.status != FeatureStatus.VERIFIED.value
        else:
            target, closed_at, guard = FeatureStatus.IN_PROGRESS, None, Feature.status == FeatureStatus.VERIFIED.value

        changed = self._transition(Feature, feature_id, tenant_id, guard, {
            "status": target.value, "closed_at": closed_at,
        })
        if not changed:
            return
        result.feature_changes[feature_id] = target.value
        self.audit.record(
            tenant_id, "feature", feature_id, actor_id, AuditAction.STATUS_CHANGE,
            {"status": target, "closed_at": closed_at, "tasks_total": total, "tasks_closed": closed},
        )
        # Epic closure is only re-evaluated when the feature itself moved.
        epic_id = self.session.execute(
            sa.select(Feature.epic_id).where(Feature.id == feature_id)
        ).scalar_one_or_none()
        if epic_id:
            self._settle_epic_closure(tenant_id, epic_id, actor_id, result)

    def _settle_epic_closure(self, tenant_id, epic_id, actor_id, result: CascadeResult):
        exists = self.session.execute(
            sa.select(Epic.id).where(Epic.id == epic_id, Epic.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if exists is None:
            result.skipped.append(f"epic:{epic_id}")
            return

        total, verified = self.session.execute(
            sa.select(
                sa.func.count(Feature.id),
                sa.func.count(sa.case((Feature.status == FeatureStatus.VERIFIED.value, Feature.id))),
            ).where(Feature.tenant_id == tenant_id, Feature.epic_id == epic_id)
        ).one()

        now = datetime.now(timezone.utc)
        if all_closed(total, verified):
            target, closed_at, guard = EpicStatus.COMPLETED, now, Epic.status != EpicStatus.COMPLETED.value
        else:
            target, closed_at, guard = EpicStatus.IN_PROGRESS, None, Epic.status == EpicStatus.COMPLETED.value

        changed = self._transition(Epic, epic_id, tenant_id, guard, {
            "status": target.value, "closed_at": closed_at,
        })
        if not changed:
            return
        result.epic_changes[epic_id] = target.value
        self.audit.record(
            tenant_id, "epic", epic_id, actor_id, AuditAction.STATUS_CHANGE,
            {"status": target, "closed_at": closed_at,
             "features_total": total, "features_verified": verified},
        )

    def _settle_progress(self, tenant_id, epic_id, actor_id, result: CascadeResult):
        exists = self.session.execute(
            sa.select(Epic.id).where(Epic.id == epic_id, Epic.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if exists is None:
            result.skipped.append(f"epic:{epic_id}")
            return

        total, done = self.session.execute(
            sa.select(
                sa.func.count(Task.id),
                sa.func.count(sa.case((Task.status == TaskStatus.DONE.value, Task.id))),
            ).where(Task.tenant_id == tenant_id, Task.epic_id == epic_id)
        ).one()
        progress = compute_progress(done, total)

        changed = self._transition(Epic, epic_id, tenant_id, Epic.progress != progress, {
            "progress": progress,
        })
        if not changed:
            return
        result.progress[epic_id] = progress
        self.audit.record(
            tenant_id, "epic", epic_id, actor_id, AuditAction.PROGRESS_CHANGE,
            {"progress": progress, "tasks_total": total, "tasks_done": done},
        )

    def _transition(self, model, pk, tenant_id, guard, values: dict) -> bool:
        """Conditional UPDATE; True when this call changed the row."""
        res = self.session.execute(
            sa.update(model)
            .where(model.id == pk, model.tenant_id == tenant_id, guard)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return res.rowcount == 1
