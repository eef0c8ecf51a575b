"""
Lifecycle Cascade Engine tests — Task → Feature → Epic propagation.

Tests cover:
  - Task closure from status Done or the terminal board column
  - Feature → Verified when every task is closed (and back on reopen)
  - Epic → Completed only when every feature is Verified
  - Epic progress = Done tasks / all tasks × 100
  - Idempotence: a second run writes nothing and audits nothing
  - Vanished parents are skipped; a failing cascade leaves the task committed
"""

import pytest
from sqlalchemy.exc import OperationalError

from agileflow.models import db
from agileflow.models.audit import AuditAction, AuditLog
from agileflow.models.project import BoardColumn
from agileflow.models.work_items import Epic, Feature, Task
from agileflow.services.cascade_service import all_closed, compute_progress, task_is_closed


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture()
def actor(principal_for, superadmin):
    return principal_for(superadmin)


@pytest.fixture()
def project(tenant, superadmin, make_project):
    return make_project(tenant, superadmin)


@pytest.fixture()
def epic(services, actor, project):
    return services.work_items.create_epic(actor, {"title": "Checkout", "project_id": project.id})


@pytest.fixture()
def new_feature(services, actor, epic):
    def _make(title="Feature", **extra):
        return services.work_items.create_feature(actor, {"title": title, "epic_id": epic.id, **extra})
    return _make


@pytest.fixture()
def new_task(services, actor):
    def _make(feature, title="Task", **extra):
        task, _ = services.work_items.create_task(
            actor, {"title": title, "feature_id": feature.id, **extra},
        )
        return task
    return _make


def _audits(entity_type, entity_id, action=None):
    query = AuditLog.query.filter_by(entity_type=entity_type, entity_id=entity_id)
    if action is not None:
        query = query.filter_by(action=AuditAction(action).value)
    return query.count()


# ═══════════════════════════════════════════════════════════════
# BLOCK 1: Pure rules
# ═══════════════════════════════════════════════════════════════

class TestRules:
    @pytest.mark.parametrize("status,column,terminal,expected", [
        ("Done", None, None, True),
        ("In Progress", "t-done", "t-done", True),
        ("In Progress", "t-review", "t-done", False),
        ("To Do", None, None, False),
    ])
    def test_task_is_closed(self, status, column, terminal, expected):
        assert task_is_closed(status, column, terminal) is expected

    def test_all_closed_needs_at_least_one(self):
        assert all_closed(0, 0) is False
        assert all_closed(3, 3) is True
        assert all_closed(3, 2) is False

    def test_progress(self):
        assert compute_progress(0, 0) == 0.0
        assert compute_progress(1, 4) == 25.0
        assert compute_progress(3, 3) == 100.0


# ═══════════════════════════════════════════════════════════════
# BLOCK 2: Feature closure
# ═══════════════════════════════════════════════════════════════

class TestFeatureClosure:
    def test_only_task_done_verifies_feature(self, services, actor, new_feature, new_task):
        """PATCH X to Done: X.closed_at set, F Verified with closed_at."""
        feature = new_feature()
        task = new_task(feature)

        task, outcome = services.work_items.update_task(actor, task.id, {"status": "Done"})

        assert task.closed_at is not None
        assert outcome["cascade"]["feature_changes"] == {feature.id: "Verified"}
        refreshed = db.session.get(Feature, feature.id)
        assert refreshed.status == "Verified"
        assert refreshed.closed_at is not None

    def test_partial_closure_keeps_feature_open(self, services, actor, new_feature, new_task):
        feature = new_feature()
        first = new_task(feature, "first")
        new_task(feature, "second")

        services.work_items.update_task(actor, first.id, {"status": "Done"})

        assert db.session.get(Feature, feature.id).status == "Draft"

    def test_terminal_column_closes_task(self, services, actor, tenant, new_feature, new_task):
        feature = new_feature()
        task = new_task(feature)
        done_column = BoardColumn.column_id(tenant.id, "done")

        task, _ = services.work_items.update_task(actor, task.id, {"column_id": done_column})

        assert task.status == "To Do"
        assert task.closed_at is not None
        assert db.session.get(Feature, feature.id).status == "Verified"

    def test_closed_at_kept_when_already_closed(self, services, actor, tenant, new_feature, new_task):
        feature = new_feature()
        task = new_task(feature, status="Done")
        first_closed_at = task.closed_at

        task, _ = services.work_items.update_task(
            actor, task.id, {"column_id": BoardColumn.column_id(tenant.id, "done")},
        )
        assert task.closed_at == first_closed_at

    def test_reopen_reverts_feature(self, services, actor, new_feature, new_task):
        feature = new_feature()
        task = new_task(feature, status="Done")
        assert db.session.get(Feature, feature.id).status == "Verified"

        task, outcome = services.work_items.update_task(actor, task.id, {"status": "In Progress"})

        assert task.closed_at is None
        assert outcome["cascade"]["feature_changes"] == {feature.id: "In Progress"}
        refreshed = db.session.get(Feature, feature.id)
        assert refreshed.status == "In Progress"
        assert refreshed.closed_at is None

    def test_new_open_task_reopens_verified_feature(self, services, actor, new_feature, new_task):
        feature = new_feature()
        new_task(feature, "shipped", status="Done")
        new_task(feature, "follow-up")
        assert db.session.get(Feature, feature.id).status == "In Progress"

    def test_moving_last_open_task_away_verifies_old_feature(self, services, actor,
                                                             new_feature, new_task):
        old = new_feature("Old")
        new = new_feature("New")
        new_task(old, "closed", status="Done")
        wandering = new_task(old, "open")
        assert db.session.get(Feature, old.id).status != "Verified"

        services.work_items.update_task(actor, wandering.id, {"feature_id": new.id})

        assert db.session.get(Feature, old.id).status == "Verified"


# ═══════════════════════════════════════════════════════════════
# BLOCK 3: Epic closure & progress
# ═══════════════════════════════════════════════════════════════

class TestEpicClosure:
    def test_epic_completes_only_after_all_features(self, services, actor, epic,
                                                     new_feature, new_task):
        """One Verified feature is not enough; the second closes the epic."""
        f1 = new_feature("F1")
        f2 = new_feature("F2")
        only = new_task(f1, "f1-only")
        a = new_task(f2, "a")
        b = new_task(f2, "b")

        services.work_items.update_task(actor, only.id, {"status": "Done"})
        assert db.session.get(Feature, f1.id).status == "Verified"
        assert db.session.get(Epic, epic.id).status != "Completed"

        services.work_items.update_task(actor, a.id, {"status": "Done"})
        assert db.session.get(Epic, epic.id).status != "Completed"

        _, outcome = services.work_items.update_task(actor, b.id, {"status": "Done"})
        assert outcome["cascade"]["epic_changes"] == {epic.id: "Completed"}
        refreshed = db.session.get(Epic, epic.id)
        assert refreshed.status == "Completed"
        assert refreshed.closed_at is not None

    def test_reopen_reverts_epic(self, services, actor, epic, new_feature, new_task):
        feature = new_feature()
        task = new_task(feature, status="Done")
        assert db.session.get(Epic, epic.id).status == "Completed"

        services.work_items.update_task(actor, task.id, {"status": "Review"})

        refreshed = db.session.get(Epic, epic.id)
        assert refreshed.status == "In Progress"
        assert refreshed.closed_at is None

    def test_new_feature_reopens_completed_epic(self, services, actor, epic,
                                                new_feature, new_task):
        new_task(new_feature("Shipped"), status="Done")
        assert db.session.get(Epic, epic.id).status == "Completed"

        new_feature("Late addition")

        assert db.session.get(Epic, epic.id).status == "In Progress"

    def test_deleting_open_feature_settles_epic(self, services, actor, epic,
                                                new_feature, new_task):
        done = new_feature("Done")
        new_task(done, status="Done")
        blocker = new_feature("Blocker")
        new_task(blocker, "open")
        assert db.session.get(Epic, epic.id).status != "Completed"

        services.work_items.delete_feature(actor, blocker.id)

        assert db.session.get(Epic, epic.id).status == "Completed"


class TestEpicProgress:
    def test_no_tasks_means_zero(self, epic):
        assert epic.progress == 0.0

    def test_progress_counts_done_tasks(self, services, actor, epic, new_feature, new_task):
        feature = new_feature()
        tasks = [new_task(feature, f"t{i}") for i in range(4)]

        _, outcome = services.work_items.update_task(actor, tasks[0].id, {"status": "Done"})

        assert outcome["cascade"]["progress"] == {epic.id: 25.0}
        assert db.session.get(Epic, epic.id).progress == 25.0

    def test_progress_ignores_terminal_column(self, services, actor, tenant, epic,
                                              new_feature, new_task):
        feature = new_feature()
        task = new_task(feature)
        new_task(feature, "other")

        services.work_items.update_task(
            actor, task.id, {"column_id": BoardColumn.column_id(tenant.id, "done")},
        )

        assert db.session.get(Epic, epic.id).progress == 0.0

    def test_delete_recomputes_progress(self, services, actor, epic, new_feature, new_task):
        feature = new_feature()
        new_task(feature, "done", status="Done")
        open_task = new_task(feature, "open")
        assert db.session.get(Epic, epic.id).progress == 50.0

        services.work_items.delete_task(actor, open_task.id)

        assert db.session.get(Epic, epic.id).progress == 100.0


# ═══════════════════════════════════════════════════════════════
# BLOCK 4: Idempotence, skips, failure
# ═══════════════════════════════════════════════════════════════

class TestIdempotence:
    def test_second_run_changes_and_audits_nothing(self, services, actor, epic,
                                                   new_feature, new_task):
        feature = new_feature()
        task = new_task(feature, status="Done")
        feature_audits = _audits("feature", feature.id)
        epic_audits = _audits("epic", epic.id)

        result = services.cascade.on_task_mutated(task.id, actor_id=actor.user_id)

        assert result.changed is False
        assert _audits("feature", feature.id) == feature_audits
        assert _audits("epic", epic.id) == epic_audits

    def test_one_status_change_audit_per_transition(self, services, actor, new_feature, new_task):
        feature = new_feature()
        task = new_task(feature, status="Done")
        services.cascade.on_task_mutated(task.id)
        services.cascade.on_task_mutated(task.id)
        assert _audits("feature", feature.id, AuditAction.STATUS_CHANGE) == 1

    def test_missing_parents_are_skipped(self, services, tenant):
        result = services.cascade.on_task_mutated(
            "no-such-task", tenant_id=tenant.id,
            previous_feature_id="gone-feature", previous_epic_id="gone-epic",
        )
        assert result.skipped == ["task:no-such-task", "feature:gone-feature", "epic:gone-epic"]
        assert result.changed is False


class TestCascadeFailure:
    def test_failure_reported_and_task_kept(self, services, actor, project, monkeypatch):
        def boom(*args, **kwargs):
            raise OperationalError("UPDATE features", {}, Exception("database is locked"))

        monkeypatch.setattr(services.cascade, "on_task_mutated", boom)

        task, outcome = services.work_items.create_task(
            actor, {"title": "Survivor", "project_id": project.id},
        )

        assert "cascade_error" in outcome
        assert "cascade" not in outcome
        assert db.session.get(Task, task.id) is not None
