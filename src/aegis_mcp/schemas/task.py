"""Epic → Task → Subtask hierarchy models and read-only helpers.

The helpers here never mutate a store; state transitions live in
:mod:`aegis_mcp.hierarchy`, which works on copies and persists the result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field

from .timestamp import hours_since, utcnow

EpicStatus = Literal["draft", "active", "completed", "archived", "abandoned"]
TaskStatus = Literal["planned", "active", "review", "completed", "failed", "deferred"]
SubtaskStatus = Literal["pending", "done", "skipped"]
WorkStreamCategory = Literal[
    "development", "research", "governance", "maintenance", "spec-kit", "ad-hoc"
]
GovernanceLevel = Literal["strict", "balanced", "minimal"]

TASK_STORE_VERSION = "2.0.0"
DEFAULT_SESSION_STALE_HOURS = 4.0

CATEGORIES: tuple[str, ...] = (
    "development",
    "research",
    "governance",
    "maintenance",
    "spec-kit",
    "ad-hoc",
)

CATEGORY_DEFAULTS: dict[str, GovernanceLevel] = {
    "development": "strict",
    "research": "balanced",
    "governance": "strict",
    "maintenance": "balanced",
    "spec-kit": "balanced",
    "ad-hoc": "minimal",
}

# Task statuses that no longer block an epic from completing.
EPIC_CLOSABLE_TASK_STATUSES = frozenset({"completed", "deferred"})


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:10]}"


class Subtask(BaseModel):
    id: str = Field(default_factory=lambda: new_id("sub"))
    task_id: str
    name: str
    status: SubtaskStatus = "pending"
    tool_used: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class Task(BaseModel):
    id: str = Field(default_factory=lambda: new_id("task"))
    epic_id: str
    name: str
    status: TaskStatus = "planned"
    assignee: str | None = None
    evidence: str | None = None
    delegated_to: str | None = None
    delegation_id: str | None = None
    reason: str | None = None
    branched_from: str | None = None
    subtasks: list[Subtask] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    modified_at: datetime = Field(default_factory=utcnow)

    def pending_subtasks(self) -> list[Subtask]:
        return [sub for sub in self.subtasks if sub.status == "pending"]


class Epic(BaseModel):
    id: str = Field(default_factory=lambda: new_id("epic"))
    name: str
    category: WorkStreamCategory = "development"
    governance_level: GovernanceLevel = "strict"
    status: EpicStatus = "draft"
    reason: str | None = None
    tasks: list[Task] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    modified_at: datetime = Field(default_factory=utcnow)


class TaskStore(BaseModel):
    version: str = TASK_STORE_VERSION
    active_epic_id: str | None = None
    epics: list[Epic] = Field(default_factory=list)


# ─── Lookup ──────────────────────────────────────────────────────────


def find_epic(store: TaskStore, epic_id: str) -> Epic | None:
    return next((epic for epic in store.epics if epic.id == epic_id), None)


def find_task(store: TaskStore, task_id: str) -> Task | None:
    for epic in store.epics:
        for task in epic.tasks:
            if task.id == task_id:
                return task
    return None


def find_subtask(store: TaskStore, subtask_id: str) -> Subtask | None:
    for epic in store.epics:
        for task in epic.tasks:
            for sub in task.subtasks:
                if sub.id == subtask_id:
                    return sub
    return None


def find_parent_task(store: TaskStore, subtask_id: str) -> Task | None:
    for epic in store.epics:
        for task in epic.tasks:
            if any(sub.id == subtask_id for sub in task.subtasks):
                return task
    return None


def find_parent_epic(store: TaskStore, task_id: str) -> Epic | None:
    return next(
        (epic for epic in store.epics if any(task.id == task_id for task in epic.tasks)),
        None,
    )


def active_epic(store: TaskStore) -> Epic | None:
    if store.active_epic_id is None:
        return None
    return find_epic(store, store.active_epic_id)


@dataclass(slots=True)
class ActiveChain:
    epic: Epic | None
    task: Task | None
    pending_subtasks: list[Subtask] = field(default_factory=list)


def get_active_chain(store: TaskStore) -> ActiveChain:
    epic = active_epic(store)
    if epic is None:
        return ActiveChain(epic=None, task=None)
    task = next((task for task in epic.tasks if task.status == "active"), None)
    pending = task.pending_subtasks() if task else []
    return ActiveChain(epic=epic, task=task, pending_subtasks=pending)


# ─── Validation ──────────────────────────────────────────────────────


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    reason: str = ""
    missing: str | None = None


def validate_completion(task: Task, evidence: str | None) -> ValidationResult:
    """Completion requires every subtask done/skipped and non-empty evidence."""

    pending = task.pending_subtasks()
    if pending:
        listing = "\n".join(f"  - [ ] {sub.name} ({sub.id})" for sub in pending)
        hints = "\n".join(
            f'  - aegis_task action=complete target_id={sub.id}  # finishes "{sub.name}"'
            for sub in pending
        )
        return ValidationResult(
            valid=False,
            missing="subtasks",
            reason=(
                f"BLOCKED: Task has {len(pending)} pending subtask(s):\n{listing}\n"
                f"Complete or skip these first:\n{hints}\n"
                f'Or skip: aegis_task action=defer target_id=<subtask-id> reason="not needed"'
            ),
        )

    if not evidence or not evidence.strip():
        return ValidationResult(
            valid=False,
            missing="evidence",
            reason=(
                "BLOCKED: Cannot complete without evidence.\n"
                f'Provide proof: aegis_task action=complete target_id={task.id} '
                'evidence="All tests passing, feature works correctly"\n'
                "Evidence examples: test results, file paths created, behavior verified"
            ),
        )

    return ValidationResult(valid=True)


def epic_blockers(epic: Epic) -> list[Task]:
    return [task for task in epic.tasks if task.status not in EPIC_CLOSABLE_TASK_STATUSES]


def find_stale_tasks(
    store: TaskStore,
    threshold_hours: float = DEFAULT_SESSION_STALE_HOURS,
    now: datetime | None = None,
) -> list[Task]:
    return [
        task
        for epic in store.epics
        for task in epic.tasks
        if task.status == "active" and hours_since(task.modified_at, now) > threshold_hours
    ]


ChainWarningType = Literal[
    "missing_active_epic",
    "empty_active_epic",
    "no_active_tasks",
    "completed_with_pending",
    "dangling_delegation",
    "orphan_task",
]


@dataclass(slots=True)
class ChainWarning:
    type: ChainWarningType
    message: str
    epic_id: str | None = None
    task_id: str | None = None


def detect_chain_breaks(store: TaskStore, delegation_ids: set[str] | None = None) -> list[ChainWarning]:
    """Read-only scan for structural anomalies in the hierarchy.

    ``delegation_ids`` is the set of known delegation ids; when ``None`` the
    dangling-delegation check is skipped.
    """

    warnings: list[ChainWarning] = []

    if store.active_epic_id is not None and active_epic(store) is None:
        warnings.append(
            ChainWarning(
                type="missing_active_epic",
                epic_id=store.active_epic_id,
                message=f'Active epic pointer "{store.active_epic_id}" does not resolve to an epic.',
            )
        )

    for epic in store.epics:
        if epic.status == "active":
            if not epic.tasks:
                warnings.append(
                    ChainWarning(
                        type="empty_active_epic",
                        epic_id=epic.id,
                        message=(
                            f'Epic "{epic.name}" is active with zero tasks. '
                            f'Create one: aegis_task action=create_task name="..." epic_id={epic.id}'
                        ),
                    )
                )
            elif not any(task.status == "active" for task in epic.tasks):
                planned = [task for task in epic.tasks if task.status == "planned"]
                hint = (
                    f" {len(planned)} planned task(s) waiting. Start one with: "
                    f"aegis_task action=start task_id={planned[0].id}"
                    if planned
                    else ""
                )
                warnings.append(
                    ChainWarning(
                        type="no_active_tasks",
                        epic_id=epic.id,
                        message=f'Epic "{epic.name}" is active but has no active tasks.{hint}',
                    )
                )

        for task in epic.tasks:
            if task.epic_id != epic.id:
                warnings.append(
                    ChainWarning(
                        type="orphan_task",
                        epic_id=epic.id,
                        task_id=task.id,
                        message=(
                            f'Task "{task.name}" references epic "{task.epic_id}" '
                            f'but is stored under "{epic.id}".'
                        ),
                    )
                )
            if task.status == "completed" and task.pending_subtasks():
                warnings.append(
                    ChainWarning(
                        type="completed_with_pending",
                        epic_id=epic.id,
                        task_id=task.id,
                        message=(
                            f'Task "{task.name}" is completed but has '
                            f"{len(task.pending_subtasks())} pending subtask(s)."
                        ),
                    )
                )
            if (
                delegation_ids is not None
                and task.delegation_id
                and task.delegation_id not in delegation_ids
            ):
                warnings.append(
                    ChainWarning(
                        type="dangling_delegation",
                        epic_id=epic.id,
                        task_id=task.id,
                        message=(
                            f'Task "{task.name}" references delegation '
                            f'"{task.delegation_id}" which does not exist.'
                        ),
                    )
                )

    return warnings


def format_stale_warning(task: Task, now: datetime | None = None) -> str:
    minutes = round(hours_since(task.modified_at, now) * 60)
    return "\n".join(
        [
            f'STALE WARNING: Task "{task.name}" has been active for {minutes} min without updates.',
            "  Options:",
            f'  - Add subtasks: aegis_task action=add_subtask task_id={task.id} name="..."',
            f'  - Complete it: aegis_task action=complete target_id={task.id} evidence="..."',
            f'  - Defer it: aegis_task action=defer target_id={task.id} reason="..."',
        ]
    )


# ─── Display ─────────────────────────────────────────────────────────

STATUS_MARKERS: dict[str, str] = {
    "draft": "[ ]",
    "planned": "[ ]",
    "active": "[>]",
    "review": "[?]",
    "completed": "[x]",
    "failed": "[!]",
    "deferred": "[-]",
    "archived": "[-]",
    "abandoned": "[~]",
    "pending": "( )",
    "done": "(x)",
    "skipped": "(-)",
}


def format_task_tree(store: TaskStore) -> str:
    if not store.epics:
        return "\n".join(
            [
                "=== Task Hierarchy ===",
                "",
                "No epics created yet.",
                'Start with: aegis_task action=create_epic name="Your plan" category=development',
            ]
        )

    lines = ["=== Task Hierarchy ===", ""]
    for epic in store.epics:
        done = sum(1 for task in epic.tasks if task.status == "completed")
        marker = " <- ACTIVE" if epic.id == store.active_epic_id else ""
        lines.append(
            f'{STATUS_MARKERS.get(epic.status, "?")} EPIC "{epic.name}" '
            f"[{epic.category}/{epic.governance_level}] ({done}/{len(epic.tasks)} tasks) "
            f"{epic.id}{marker}"
        )
        for task in epic.tasks:
            assignee = f" [{task.assignee}]" if task.assignee else ""
            delegated = f" -> {task.delegated_to}" if task.delegated_to else ""
            evidence = f" (evidence: {task.evidence})" if task.evidence else ""
            lines.append(
                f"  {STATUS_MARKERS.get(task.status, '?')} {task.name}{assignee}{delegated}"
                f"{evidence} {task.id}"
            )
            for sub in task.subtasks:
                tool = f" (via: {sub.tool_used})" if sub.tool_used else ""
                lines.append(f"     {STATUS_MARKERS.get(sub.status, '?')} {sub.name}{tool} {sub.id}")
        lines.append("")
    return "\n".join(lines).rstrip()


def build_governance_reminder(store: TaskStore) -> str:
    chain = get_active_chain(store)
    if chain.epic is None:
        return (
            "--- Governance Reminder ---\n"
            'No active epic. Create one with: aegis_task action=create_epic name="..."'
        )

    done = sum(1 for task in chain.epic.tasks if task.status == "completed")
    lines = [
        "--- Governance Reminder ---",
        f'Active Epic: "{chain.epic.name}" ({done}/{len(chain.epic.tasks)} tasks)',
    ]
    if chain.task is not None:
        subs_done = sum(1 for sub in chain.task.subtasks if sub.status != "pending")
        progress = (
            f"{subs_done}/{len(chain.task.subtasks)} subtasks closed"
            if chain.task.subtasks
            else "no subtasks"
        )
        assignee = f", assigned: {chain.task.assignee}" if chain.task.assignee else ""
        lines.append(f'Current Task: "{chain.task.name}" ({progress}{assignee})')
        if chain.pending_subtasks:
            lines.append(f'Next: Complete subtask "{chain.pending_subtasks[0].name}" or add more subtasks')
        else:
            lines.append("Next: Complete the task with evidence")
    else:
        planned = [task for task in chain.epic.tasks if task.status == "planned"]
        if planned:
            lines.append(f'Next: Start task "{planned[0].name}" with: aegis_task action=start task_id={planned[0].id}')
        else:
            lines.append('Next: Create a task with: aegis_task action=create_task name="..."')
    return "\n".join(lines)


# ─── Migration ───────────────────────────────────────────────────────


def migrate_task_store(raw: dict) -> dict:
    """Upgrade a v1 task document in place; v2 documents pass through.

    Shapes it does not recognise are left untouched for model validation to
    reject.
    """

    if raw.get("version") == TASK_STORE_VERSION:
        return raw
    epics = raw.get("epics", [])
    for epic in epics if isinstance(epics, list) else ():
        if not isinstance(epic, dict):
            continue
        category = epic.setdefault("category", "development")
        level = CATEGORY_DEFAULTS.get(category, "strict") if isinstance(category, str) else "strict"
        epic.setdefault("governance_level", level)
    raw["version"] = TASK_STORE_VERSION
    return raw


__all__ = [
    "ActiveChain",
    "CATEGORIES",
    "CATEGORY_DEFAULTS",
    "ChainWarning",
    "DEFAULT_SESSION_STALE_HOURS",
    "EPIC_CLOSABLE_TASK_STATUSES",
    "Epic",
    "EpicStatus",
    "GovernanceLevel",
    "Subtask",
    "SubtaskStatus",
    "TASK_STORE_VERSION",
    "Task",
    "TaskStatus",
    "TaskStore",
    "ValidationResult",
    "WorkStreamCategory",
    "active_epic",
    "build_governance_reminder",
    "detect_chain_breaks",
    "epic_blockers",
    "find_epic",
    "find_parent_epic",
    "find_parent_task",
    "find_stale_tasks",
    "find_subtask",
    "find_task",
    "format_stale_warning",
    "format_task_tree",
    "get_active_chain",
    "migrate_task_store",
    "new_id",
    "validate_completion",
]
