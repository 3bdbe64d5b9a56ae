"""Epic → Task → Subtask state machine.

Every mutation reads a fresh :class:`TaskStore` from the governance store,
applies the transition and writes the whole document back while holding the
store lock. A rejected transition writes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from .schemas.state import SessionRecord
from .schemas.task import (
    CATEGORIES,
    CATEGORY_DEFAULTS,
    DEFAULT_SESSION_STALE_HOURS,
    ActiveChain,
    ChainWarning,
    Epic,
    Subtask,
    Task,
    TaskStore,
    active_epic,
    detect_chain_breaks,
    epic_blockers,
    find_epic,
    find_parent_epic,
    find_parent_task,
    find_stale_tasks,
    find_subtask,
    find_task,
    format_task_tree,
    get_active_chain,
    validate_completion,
)
from .schemas.timestamp import utcnow
from .storage.json_store import GovernanceStore

if TYPE_CHECKING:  # pragma: no cover
    from .delegation import DelegationLedger

logger = logging.getLogger(__name__)

TERMINAL_EPIC_STATUSES = frozenset({"completed", "archived", "abandoned"})
STARTABLE_TASK_STATUSES = frozenset({"planned", "deferred"})
OPEN_TASK_STATUSES = frozenset({"planned", "active", "review"})


@dataclass(slots=True)
class HierarchyResult:
    ok: bool
    message: str
    notes: list[str] = field(default_factory=list)
    epic: Epic | None = None
    task: Task | None = None
    subtask: Subtask | None = None

    def render(self) -> str:
        return "\n".join([self.message, *self.notes])


LIST_EXAMPLE = "aegis_task action=list"


def _error(message: str, example: str = LIST_EXAMPLE) -> HierarchyResult:
    """Rejection carrying a command the agent can run next."""

    return HierarchyResult(ok=False, message=f"ERROR: {message}\nExample: {example}")


class TaskHierarchy:
    """Service owning task lifecycle transitions and session task pointers."""

    def __init__(
        self,
        store: GovernanceStore,
        *,
        ledger: "DelegationLedger | None" = None,
        stale_hours: float = DEFAULT_SESSION_STALE_HOURS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._stale_hours = stale_hours
        self._clock = clock or utcnow

    # ─── reads ───────────────────────────────────────────────────────

    def snapshot(self) -> TaskStore:
        return self._store.read_tasks()

    def active_chain(self) -> ActiveChain:
        return get_active_chain(self.snapshot())

    def render_tree(self) -> str:
        return format_task_tree(self.snapshot())

    def stale_tasks(self) -> list[Task]:
        return find_stale_tasks(self.snapshot(), self._stale_hours, self._clock())

    def chain_breaks(self) -> list[ChainWarning]:
        known = {delegation.id for delegation in self._store.read_delegations().delegations}
        return detect_chain_breaks(self.snapshot(), known)

    # ─── session pointers ────────────────────────────────────────────

    def active_task_for_session(self, session_id: str) -> str | None:
        """Return the session's active task id, if that task is still active."""

        record = self._store.load_session(session_id)
        if record is None or record.active_task_id is None:
            return None
        task = find_task(self.snapshot(), record.active_task_id)
        if task is None or task.status != "active":
            return None
        return task.id

    def set_session_task(self, session_id: str, task_id: str | None) -> SessionRecord:
        with self._store.lock:
            record = self._store.load_session(session_id) or SessionRecord(session_id=session_id)
            record = record.model_copy(
                update={"active_task_id": task_id, "last_activity": self._clock()}
            )
            self._store.save_session(record)
            return record

    def _clear_pointers(self, task_ids: set[str]) -> int:
        cleared = 0
        for record in self._store.list_sessions():
            if record.active_task_id in task_ids:
                self._store.save_session(
                    record.model_copy(update={"active_task_id": None, "last_activity": self._clock()})
                )
                cleared += 1
        return cleared

    # ─── mutation plumbing ───────────────────────────────────────────

    def _mutate(self, operation: Callable[[TaskStore, datetime], HierarchyResult]) -> HierarchyResult:
        with self._store.lock:
            tasks = self._store.read_tasks()
            result = operation(tasks, self._clock())
            if result.ok:
                self._store.write_tasks(tasks)
            return result

    # ─── epics ───────────────────────────────────────────────────────

    def create_epic(
        self,
        name: str,
        category: str = "development",
        governance_level: str | None = None,
    ) -> HierarchyResult:
        if not name or not name.strip():
            return _error(
                "'create_epic' requires name.",
                'aegis_task action=create_epic name="Auth rework" category=development',
            )
        if category not in CATEGORIES:
            return _error(
                f"Unknown category '{category}'. Valid: {', '.join(CATEGORIES)}.",
                f'aegis_task action=create_epic name="{name}" category=development',
            )
        level = governance_level or CATEGORY_DEFAULTS[category]
        if level not in ("strict", "balanced", "minimal"):
            return _error(
                f"Unknown governance level '{level}'. Valid: strict, balanced, minimal.",
                f'aegis_task action=create_epic name="{name}" category={category} governance_level=balanced',
            )

        def operation(tasks: TaskStore, now: datetime) -> HierarchyResult:
            notes: list[str] = []
            previous = active_epic(tasks)
            if previous is not None and previous.status == "active":
                previous.status = "draft"
                previous.modified_at = now
                notes.append(f'Previously active epic "{previous.name}" returned to draft.')
            epic = Epic(
                name=name.strip(),
                category=category,
                governance_level=level,
                status="active",
                created_at=now,
                modified_at=now,
            )
            tasks.epics.append(epic)
            tasks.active_epic_id = epic.id
            return HierarchyResult(
                ok=True,
                message=f'Epic created: "{epic.name}" ({epic.id}) [{epic.category}/{epic.governance_level}]',
                notes=notes,
                epic=epic,
            )

        result = self._mutate(operation)
        if result.ok:
            logger.info("Epic created", extra={"epic_id": result.epic.id, "category": category})
        return result

    # ─── tasks ───────────────────────────────────────────────────────

    def create_task(
        self,
        name: str,
        epic_id: str | None = None,
        assignee: str | None = None,
    ) -> HierarchyResult:
        if not name or not name.strip():
            return _error("'create_task' requires name.", 'aegis_task action=create_task name="Login form"')

        def operation(tasks: TaskStore, now: datetime) -> HierarchyResult:
            epic = find_epic(tasks, epic_id) if epic_id else active_epic(tasks)
            if epic is None:
                if epic_id:
                    return _error(f'Epic "{epic_id}" not found.')
                return _error("No active epic.", 'aegis_task action=create_epic name="..."')
            if epic.status in TERMINAL_EPIC_STATUSES:
                return _error(
                    f'Epic "{epic.name}" is {epic.status}; it cannot take new tasks.',
                    'aegis_task action=create_epic name="..."',
                )
            task = Task(
                epic_id=epic.id,
                name=name.strip(),
                assignee=assignee,
                created_at=now,
                modified_at=now,
            )
            epic.tasks.append(task)
            epic.modified_at = now
            return HierarchyResult(
                ok=True,
                message=f'Task created: "{task.name}" ({task.id}) in epic "{epic.name}"',
                notes=[f"Start it with: aegis_task action=start task_id={task.id}"],
                epic=epic,
                task=task,
            )

        return self._mutate(operation)

    def add_subtask(self, task_id: str, name: str, tool_used: str | None = None) -> HierarchyResult:
        if not name or not name.strip():
            return _error(
                "'add_subtask' requires name.",
                f'aegis_task action=add_subtask task_id={task_id} name="Write tests"',
            )

        def operation(tasks: TaskStore, now: datetime) -> HierarchyResult:
            task = find_task(tasks, task_id)
            if task is None:
                return _error(f'Task "{task_id}" not found.')
            if task.status in ("completed", "failed"):
                return _error(
                    f'Task "{task.name}" is {task.status}; it cannot take new subtasks.',
                    f"aegis_task action=branch task_id={task.id}",
                )
            subtask = Subtask(task_id=task.id, name=name.strip(), tool_used=tool_used, timestamp=now)
            task.subtasks.append(subtask)
            task.modified_at = now
            return HierarchyResult(
                ok=True,
                message=f'Subtask added: "{subtask.name}" ({subtask.id}) to task "{task.name}"',
                task=task,
                subtask=subtask,
            )

        return self._mutate(operation)

    def assign(self, task_id: str, assignee: str) -> HierarchyResult:
        if not assignee or not assignee.strip():
            return _error(
                "'assign' requires assignee.",
                f"aegis_task action=assign task_id={task_id} assignee=builder-1",
            )

        def operation(tasks: TaskStore, now: datetime) -> HierarchyResult:
            task = find_task(tasks, task_id)
            if task is None:
                return _error(f'Task "{task_id}" not found.')
            task.assignee = assignee.strip()
            task.modified_at = now
            return HierarchyResult(
                ok=True, message=f'Task "{task.name}" assigned to {task.assignee}', task=task
            )

        return self._mutate(operation)

    def start(self, task_id: str, session_id: str | None = None) -> HierarchyResult:
        reverted: list[str] = []

        def operation(tasks: TaskStore, now: datetime) -> HierarchyResult:
            task = find_task(tasks, task_id)
            if task is None:
                return _error(f'Task "{task_id}" not found.')
            epic = find_parent_epic(tasks, task.id)
            if epic is not None and epic.status in TERMINAL_EPIC_STATUSES:
                return _error(
                    f'Epic "{epic.name}" is {epic.status}; its tasks cannot be started.',
                    f"aegis_task action=branch task_id={task.id}",
                )
            if task.status == "active":
                return HierarchyResult(ok=True, message=f'Task "{task.name}" is already active.', task=task)
            if task.status not in STARTABLE_TASK_STATUSES:
                return _error(
                    f'Cannot start task "{task.name}" with status "{task.status}". '
                    "Only planned or deferred tasks can be started.",
                    f"aegis_task action=branch task_id={task.id}",
                )

            notes: list[str] = []
            for sibling in epic.tasks if epic else []:
                if sibling.id != task.id and sibling.status == "active":
                    sibling.status = "planned"
                    sibling.modified_at = now
                    reverted.append(sibling.id)
                    notes.append(f'Task "{sibling.name}" reverted to planned (one active task per epic).')

            task.status = "active"
            task.reason = None
            task.modified_at = now
            if session_id:
                notes.append("Write/edit tools are now unlocked for this session.")
            return HierarchyResult(
                ok=True,
                message=f'Task started: "{task.name}" ({task.id})',
                notes=notes,
                epic=epic,
                task=task,
            )

        with self._store.lock:
            result = self._mutate(operation)
            if result.ok:
                if reverted:
                    self._clear_pointers(set(reverted))
                if session_id:
                    self.set_session_task(session_id, result.task.id)
                if self._ledger is not None:
                    self._ledger.accept_for_task(result.task.id)
        return result

    # ─── polymorphic transitions ─────────────────────────────────────

    def complete(self, target_id: str, evidence: str | None = None) -> HierarchyResult:
        settled: list[str] = []

        def operation(tasks: TaskStore, now: datetime) -> HierarchyResult:
            subtask = find_subtask(tasks, target_id)
            if subtask is not None:
                if subtask.status != "pending":
                    return _error(f'Subtask "{subtask.name}" is already {subtask.status}.')
                subtask.status = "done"
                subtask.timestamp = now
                parent = find_parent_task(tasks, subtask.id)
                if parent is not None:
                    parent.modified_at = now
                remaining = len(parent.pending_subtasks()) if parent else 0
                return HierarchyResult(
                    ok=True,
                    message=f'Subtask done: "{subtask.name}" ({remaining} pending remaining)',
                    task=parent,
                    subtask=subtask,
                )

            task = find_task(tasks, target_id)
            if task is not None:
                if task.status not in ("active", "review"):
                    return _error(
                        f'Task "{task.name}" is {task.status}; only active or review tasks can be completed.',
                        f"aegis_task action=start task_id={task.id}",
                    )
                proof = evidence if evidence and evidence.strip() else task.evidence
                check = validate_completion(task, proof)
                if not check.valid:
                    return HierarchyResult(ok=False, message=check.reason, task=task)
                task.status = "completed"
                task.evidence = proof
                task.modified_at = now
                settled.append(task.id)
                return HierarchyResult(
                    ok=True,
                    message=f'Task completed: "{task.name}" (evidence: {proof})',
                    task=task,
                )

            epic = find_epic(tasks, target_id)
            if epic is not None:
                if epic.status in TERMINAL_EPIC_STATUSES:
                    return _error(f'Epic "{epic.name}" is already {epic.status}.')
                blockers = epic_blockers(epic)
                if blockers:
                    listing = "\n".join(f'  - "{t.name}" [{t.status}] ({t.id})' for t in blockers)
                    return HierarchyResult(
                        ok=False,
                        message=(
                            f'BLOCKED: Epic "{epic.name}" has {len(blockers)} task(s) that are not '
                            f"completed or deferred:\n{listing}\n"
                            f'Example: aegis_task action=defer target_id={blockers[0].id} reason="..."'
                        ),
                        epic=epic,
                    )
                epic.status = "completed"
                epic.modified_at = now
                if tasks.active_epic_id == epic.id:
                    tasks.active_epic_id = None
                return HierarchyResult(ok=True, message=f'Epic completed: "{epic.name}"', epic=epic)

            return _error(f'Nothing found with id "{target_id}".')

        with self._store.lock:
            result = self._mutate(operation)
            if settled:
                self._clear_pointers(set(settled))
                if self._ledger is not None:
                    self._ledger.complete_for_task(settled[0])
        return result

    def defer(self, target_id: str, reason: str | None) -> HierarchyResult:
        if not reason or not reason.strip():
            return _error(
                "'defer' requires reason.",
                f'aegis_task action=defer target_id={target_id} reason="blocked upstream"',
            )
        reason = reason.strip()
        deferred: list[str] = []

        def defer_task(task: Task, why: str, now: datetime) -> None:
            task.status = "deferred"
            task.reason = why
            task.modified_at = now
            deferred.append(task.id)

        def operation(tasks: TaskStore, now: datetime) -> HierarchyResult:
            subtask = find_subtask(tasks, target_id)
            if subtask is not None:
                if subtask.status != "pending":
                    return _error(f'Subtask "{subtask.name}" is already {subtask.status}.')
                subtask.status = "skipped"
                subtask.timestamp = now
                parent = find_parent_task(tasks, subtask.id)
                if parent is not None:
                    parent.modified_at = now
                return HierarchyResult(
                    ok=True, message=f'Subtask skipped: "{subtask.name}" ({reason})', subtask=subtask
                )

            task = find_task(tasks, target_id)
            if task is not None:
                if task.status not in OPEN_TASK_STATUSES:
                    return _error(f'Task "{task.name}" is {task.status}; it cannot be deferred.')
                defer_task(task, reason, now)
                return HierarchyResult(ok=True, message=f'Task deferred: "{task.name}" ({reason})', task=task)

            epic = find_epic(tasks, target_id)
            if epic is not None:
                if epic.status in TERMINAL_EPIC_STATUSES:
                    return _error(f'Epic "{epic.name}" is already {epic.status}.')
                epic.status = "archived"
                epic.reason = reason
                epic.modified_at = now
                for task in epic.tasks:
                    if task.status == "active":
                        defer_task(task, f"Epic deferred: {reason}", now)
                if tasks.active_epic_id == epic.id:
                    tasks.active_epic_id = None
                notes = [f"{len(deferred)} active task(s) deferred."] if deferred else []
                return HierarchyResult(
                    ok=True, message=f'Epic archived: "{epic.name}" ({reason})', notes=notes, epic=epic
                )

            return _error(f'Nothing found with id "{target_id}".')

        with self._store.lock:
            result = self._mutate(operation)
            if deferred:
                self._settle_closed(deferred, reason)
        return result

    def abandon(self, epic_id: str, reason: str | None = None) -> HierarchyResult:
        why = (reason or "").strip() or "No reason given"
        deferred: list[str] = []

        def operation(tasks: TaskStore, now: datetime) -> HierarchyResult:
            epic = find_epic(tasks, epic_id)
            if epic is None:
                if find_task(tasks, epic_id) or find_subtask(tasks, epic_id):
                    return _error(
                        "'abandon' applies to epics only.",
                        f'aegis_task action=defer target_id={epic_id} reason="..."',
                    )
                return _error(f'Epic "{epic_id}" not found.')
            if epic.status in TERMINAL_EPIC_STATUSES:
                return _error(f'Epic "{epic.name}" is already {epic.status}.')
            epic.status = "abandoned"
            epic.reason = why
            epic.modified_at = now
            for task in epic.tasks:
                if task.status == "active":
                    task.status = "deferred"
                    task.reason = f"Epic abandoned: {why}"
                    task.modified_at = now
                    deferred.append(task.id)
            if tasks.active_epic_id == epic.id:
                tasks.active_epic_id = None
            notes = [f"{len(deferred)} active task(s) deferred."] if deferred else []
            return HierarchyResult(ok=True, message=f'Epic abandoned: "{epic.name}" ({why})', notes=notes, epic=epic)

        with self._store.lock:
            result = self._mutate(operation)
            if deferred:
                self._settle_closed(deferred, why)
        return result

    def update(
        self,
        target_id: str,
        *,
        name: str | None = None,
        assignee: str | None = None,
        evidence: str | None = None,
        category: str | None = None,
        status: str | None = None,
    ) -> HierarchyResult:
        failed: list[str] = []

        def operation(tasks: TaskStore, now: datetime) -> HierarchyResult:
            changes: list[str] = []

            epic = find_epic(tasks, target_id)
            if epic is not None:
                if assignee or evidence or status:
                    return _error(
                        "Epics support only name and category updates.",
                        f"aegis_task action=update target_id={epic.id} category=research",
                    )
                if category is not None:
                    if category not in CATEGORIES:
                        return _error(
                            f"Unknown category '{category}'. Valid: {', '.join(CATEGORIES)}.",
                            f"aegis_task action=update target_id={epic.id} category=development",
                        )
                    epic.category = category
                    epic.governance_level = CATEGORY_DEFAULTS[category]
                    changes.append(f"category={category}/{epic.governance_level}")
                if name:
                    epic.name = name.strip()
                    changes.append(f'name="{epic.name}"')
                if not changes:
                    return _error(
                        "'update' requires name or category for an epic.",
                        f'aegis_task action=update target_id={epic.id} name="..."',
                    )
                epic.modified_at = now
                return HierarchyResult(ok=True, message=f"Epic updated: {', '.join(changes)}", epic=epic)

            task = find_task(tasks, target_id)
            if task is not None:
                if category:
                    return _error(
                        "Category belongs to the epic; update the epic instead.",
                        f"aegis_task action=update target_id={task.epic_id} category={category}",
                    )
                if status is not None:
                    if status == "review":
                        if task.status != "active":
                            return _error(
                                f'Only active tasks move to review; "{task.name}" is {task.status}.',
                                f"aegis_task action=start task_id={task.id}",
                            )
                    elif status == "failed":
                        if task.status not in ("active", "review"):
                            return _error(
                                f'Only active or review tasks can fail; "{task.name}" is {task.status}.',
                                f"aegis_task action=start task_id={task.id}",
                            )
                        failed.append(task.id)
                    else:
                        return _error(
                            f"'update' can set status to review or failed only; use start, complete "
                            f"or defer for '{status}'.",
                            f"aegis_task action=update target_id={task.id} status=review",
                        )
                    task.status = status
                    changes.append(f"status={status}")
                if name:
                    task.name = name.strip()
                    changes.append(f'name="{task.name}"')
                if assignee:
                    task.assignee = assignee.strip()
                    changes.append(f"assignee={task.assignee}")
                if evidence:
                    task.evidence = evidence.strip()
                    changes.append("evidence attached")
                if not changes:
                    return _error(
                        "'update' requires name, assignee, evidence or status for a task.",
                        f'aegis_task action=update target_id={task.id} name="..."',
                    )
                task.modified_at = now
                return HierarchyResult(ok=True, message=f"Task updated: {', '.join(changes)}", task=task)

            subtask = find_subtask(tasks, target_id)
            if subtask is not None:
                if not name:
                    return _error(
                        "Subtasks support only name updates.",
                        f'aegis_task action=update target_id={subtask.id} name="..."',
                    )
                subtask.name = name.strip()
                subtask.timestamp = now
                return HierarchyResult(ok=True, message=f'Subtask renamed: "{subtask.name}"', subtask=subtask)

            return _error(f'Nothing found with id "{target_id}".')

        with self._store.lock:
            result = self._mutate(operation)
            if failed:
                self._settle_closed(failed, "Task failed")
        return result

    def branch(self, task_id: str, name: str | None = None) -> HierarchyResult:
        def operation(tasks: TaskStore, now: datetime) -> HierarchyResult:
            source = find_task(tasks, task_id)
            if source is None:
                return _error(f'Task "{task_id}" not found.')
            epic = find_parent_epic(tasks, source.id)
            if epic is None or epic.status in TERMINAL_EPIC_STATUSES:
                return _error(
                    "Cannot branch a task whose epic is closed.",
                    'aegis_task action=create_epic name="..."',
                )
            fork = Task(
                epic_id=epic.id,
                name=(name or f"{source.name} (branch)").strip(),
                assignee=source.assignee,
                branched_from=source.id,
                created_at=now,
                modified_at=now,
            )
            fork.subtasks = [
                Subtask(task_id=fork.id, name=sub.name, tool_used=sub.tool_used, timestamp=now)
                for sub in source.pending_subtasks()
            ]
            epic.tasks.append(fork)
            epic.modified_at = now
            return HierarchyResult(
                ok=True,
                message=(
                    f'Task branched: "{fork.name}" ({fork.id}) from "{source.name}" '
                    f"with {len(fork.subtasks)} pending subtask(s)"
                ),
                epic=epic,
                task=fork,
            )

        return self._mutate(operation)

    # ─── delegation side effects ─────────────────────────────────────

    def _settle_closed(self, task_ids: list[str], reason: str) -> None:
        self._clear_pointers(set(task_ids))
        if self._ledger is None:
            return
        for task_id in task_ids:
            self._ledger.reject_for_task(task_id, reason)


__all__ = ["HierarchyResult", "TaskHierarchy"]
