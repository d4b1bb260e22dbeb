"""In-process durable orchestration engine.

Orchestrators are ``async def fn(context)`` coroutines. Each instance is a
single asyncio task addressed by an instance key; starting an instance under
a key that is already in use replaces the previous one, so at most one
instance is ever addressable per key.

An orchestrator ends in one of three ways:

* returning a value: the instance becomes ``Completed`` with that output;
* returning :class:`ContinueAsNew`: the instance restarts with the carried
  input and a fresh history (status passes through ``ContinuedAsNew``);
* raising: the instance becomes ``Failed``.

External events raised before the orchestrator waits for them are buffered in
delivery order. Events addressed to an instance that is missing or no longer
waiting are dropped.

When a :class:`SupabaseInstanceStore` is supplied, every state change is
written through so :meth:`DurableOrchestrationEngine.resume` can restart
waiting instances after a process restart. A raised event is saved before the
orchestrator sees it and stays in the saved row until the step that consumed
it commits, so a restart replays it instead of losing it. Orchestrators must therefore have
no side effects before their first wait; re-running them from the carried
input is then equivalent to a replay.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

from .instance_store import SupabaseInstanceStore

logger = logging.getLogger(__name__)


class RuntimeStatus(str, Enum):
    """Lifecycle states of an orchestration instance."""

    PENDING = "Pending"
    RUNNING = "Running"
    CONTINUED_AS_NEW = "ContinuedAsNew"
    COMPLETED = "Completed"
    FAILED = "Failed"
    TERMINATED = "Terminated"
    CANCELED = "Canceled"


WAITING_STATUSES = frozenset(
    {RuntimeStatus.PENDING, RuntimeStatus.RUNNING, RuntimeStatus.CONTINUED_AS_NEW}
)
STOPPED_STATUSES = frozenset(
    {RuntimeStatus.TERMINATED, RuntimeStatus.CANCELED, RuntimeStatus.FAILED}
)


class OrchestrationError(Exception):
    """Base class for engine errors."""


class UnknownOrchestratorError(OrchestrationError):
    """Raised when starting an orchestrator that was never registered."""


class UnknownActivityError(OrchestrationError):
    """Raised when an orchestrator calls an activity that was never registered."""


@dataclass
class ContinueAsNew:
    """Return value asking the engine to restart the instance with ``input``."""

    input: Any = None


@dataclass
class InstanceStatus:
    """Point-in-time snapshot of an instance, as returned by ``get_status``."""

    instance_id: str
    name: str
    runtime_status: RuntimeStatus
    input: Any
    output: Any
    created_at: datetime
    last_updated_at: datetime
    pending_events: dict[str, int] = field(default_factory=dict)

    @property
    def is_waiting(self) -> bool:
        return self.runtime_status in WAITING_STATUSES

    def pending(self, event_name: str) -> int:
        """Number of ``event_name`` events raised but not yet consumed."""

        return self.pending_events.get(event_name, 0)


Orchestrator = Callable[["OrchestrationContext"], Awaitable[Any]]
Activity = Callable[[Any], Awaitable[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class _Instance:
    instance_id: str
    name: str
    input: Any = None
    runtime_status: RuntimeStatus = RuntimeStatus.PENDING
    output: Any = None
    created_at: datetime = field(default_factory=_utcnow)
    last_updated_at: datetime = field(default_factory=_utcnow)
    inbox: dict[str, deque] = field(default_factory=dict)
    # Events handed to the orchestrator since the last committed transition.
    consumed: dict[str, list] = field(default_factory=dict)
    waiters: dict[str, asyncio.Future] = field(default_factory=dict)
    task: Optional[asyncio.Task] = None

    def transition(self, status: RuntimeStatus) -> None:
        self.runtime_status = status
        self.last_updated_at = _utcnow()

    def commit(self, status: RuntimeStatus) -> None:
        """Transition and drop the consumed events this step accounted for."""

        self.consumed.clear()
        self.transition(status)

    def clear_events(self) -> None:
        self.inbox.clear()
        self.consumed.clear()

    def snapshot(self) -> InstanceStatus:
        pending = {name: len(queue) for name, queue in self.inbox.items() if queue}
        return InstanceStatus(
            instance_id=self.instance_id,
            name=self.name,
            runtime_status=self.runtime_status,
            input=self.input,
            output=self.output,
            created_at=self.created_at,
            last_updated_at=self.last_updated_at,
            pending_events=pending,
        )

    def to_row(self) -> dict[str, Any]:
        # Consumed events stay in the row until the step that used them commits,
        # so a restart in between replays them ahead of the still-queued ones.
        pending: dict[str, list] = {}
        for name in set(self.consumed) | set(self.inbox):
            payloads = list(self.consumed.get(name, ())) + list(self.inbox.get(name, ()))
            if payloads:
                pending[name] = payloads
        return {
            "instance_id": self.instance_id,
            "name": self.name,
            "runtime_status": self.runtime_status.value,
            "input": self.input,
            "output": self.output,
            "pending_events": pending,
            "created_at": self.created_at.isoformat(),
            "last_updated_at": self.last_updated_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "_Instance":
        instance = cls(
            instance_id=row["instance_id"],
            name=row["name"],
            input=row.get("input"),
            runtime_status=RuntimeStatus(row["runtime_status"]),
            output=row.get("output"),
        )
        for key in ("created_at", "last_updated_at"):
            if row.get(key):
                setattr(instance, key, datetime.fromisoformat(row[key]))
        for name, payloads in (row.get("pending_events") or {}).items():
            instance.inbox[name] = deque(payloads)
        return instance


class OrchestrationContext:
    """Handle passed to a running orchestrator."""

    def __init__(self, engine: "DurableOrchestrationEngine", instance: _Instance) -> None:
        self._engine = engine
        self._instance = instance

    @property
    def instance_id(self) -> str:
        return self._instance.instance_id

    def get_input(self) -> Any:
        return self._instance.input

    async def wait_for_external_event(self, name: str) -> Any:
        """Suspend until an event called ``name`` is raised to this instance."""

        while True:
            queue = self._instance.inbox.get(name)
            if queue:
                payload = queue.popleft()
                self._instance.consumed.setdefault(name, []).append(payload)
                return payload

            waiter = asyncio.get_running_loop().create_future()
            self._instance.waiters[name] = waiter
            try:
                await waiter
            finally:
                self._instance.waiters.pop(name, None)

    async def call_activity(self, name: str, payload: Any = None) -> Any:
        """Run a registered activity and return its result."""

        return await self._engine._call_activity(self._instance, name, payload)


class DurableOrchestrationEngine:
    """Schedules orchestrator instances and routes external events to them."""

    def __init__(self, store: Optional[SupabaseInstanceStore] = None) -> None:
        self._store = store
        self._orchestrators: dict[str, Orchestrator] = {}
        self._activities: dict[str, Activity] = {}
        self._instances: dict[str, _Instance] = {}

    def register_orchestrator(self, name: str, fn: Orchestrator) -> None:
        self._orchestrators[name] = fn

    def register_activity(self, name: str, fn: Activity) -> None:
        self._activities[name] = fn

    async def start(self, name: str, instance_id: str, input: Any = None) -> str:
        """Create a new instance of orchestrator ``name`` under ``instance_id``."""

        if name not in self._orchestrators:
            raise UnknownOrchestratorError(name)

        previous = self._instances.get(instance_id)
        if previous is not None:
            if previous.runtime_status in WAITING_STATUSES:
                logger.info("Replacing live instance %s (%s)", instance_id, previous.runtime_status.value)
            self._cancel(previous)

        instance = _Instance(instance_id=instance_id, name=name, input=input)
        self._instances[instance_id] = instance
        await self._persist(instance)
        self._schedule(instance)
        logger.debug("Started %s as %s", name, instance_id)
        return instance_id

    async def get_status(self, instance_id: str) -> Optional[InstanceStatus]:
        instance = self._instances.get(instance_id)
        return instance.snapshot() if instance is not None else None

    async def raise_event(self, instance_id: str, event_name: str, payload: Any = None) -> bool:
        """Deliver an event; returns False when it was dropped."""

        instance = self._instances.get(instance_id)
        if instance is None or instance.runtime_status not in WAITING_STATUSES:
            logger.warning("Dropping %s event for %s: no waiting instance", event_name, instance_id)
            return False

        # Persist before waking the orchestrator so a restart cannot lose the event.
        instance.inbox.setdefault(event_name, deque()).append(payload)
        await self._persist(instance)
        waiter = instance.waiters.get(event_name)
        if waiter is not None and not waiter.done():
            waiter.set_result(None)
        return True

    async def terminate(self, instance_id: str, reason: str) -> bool:
        """Stop a waiting instance; returns False if there was nothing to stop."""

        instance = self._instances.get(instance_id)
        if instance is None or instance.runtime_status not in WAITING_STATUSES:
            logger.info("Nothing to terminate for %s", instance_id)
            return False

        instance.output = reason
        instance.transition(RuntimeStatus.TERMINATED)
        self._cancel(instance)
        await self._persist(instance)
        logger.info("Terminated %s: %s", instance_id, reason)
        return True

    async def purge_history(self, older_than: datetime, statuses: Iterable[RuntimeStatus]) -> int:
        """Forget instances in ``statuses`` last updated before ``older_than``."""

        wanted = frozenset(statuses)
        stale = [
            instance
            for instance in self._instances.values()
            if instance.runtime_status in wanted and instance.last_updated_at < older_than
        ]
        for instance in stale:
            self._cancel(instance)
            del self._instances[instance.instance_id]

        if self._store is not None:
            await self._store.purge(older_than, [status.value for status in wanted])
        return len(stale)

    async def resume(self) -> int:
        """Reload instances persisted by a previous process.

        Every row comes back so finished instances keep answering
        ``get_status`` with their output; only waiting ones are rescheduled.
        Returns the number of rescheduled instances.
        """

        if self._store is None or not self._store.enabled:
            return 0

        rows = await self._store.load([status.value for status in RuntimeStatus])
        resumed = 0
        for row in rows:
            if row.get("instance_id") in self._instances:
                continue
            if row.get("name") not in self._orchestrators:
                logger.warning("Skipping persisted instance %s: unknown orchestrator %s", row.get("instance_id"), row.get("name"))
                continue
            instance = _Instance.from_row(row)
            self._instances[instance.instance_id] = instance
            if instance.runtime_status in WAITING_STATUSES:
                self._schedule(instance)
                resumed += 1
        if resumed:
            logger.info("Resumed %d persisted instance(s)", resumed)
        return resumed

    async def shutdown(self) -> None:
        """Cancel every task, leaving statuses untouched so they can be resumed."""

        tasks = [instance.task for instance in self._instances.values() if instance.task is not None]
        for instance in self._instances.values():
            self._cancel(instance, clear_inbox=False)
        await asyncio.gather(*tasks, return_exceptions=True)

    def _schedule(self, instance: _Instance) -> None:
        instance.task = asyncio.create_task(self._run(instance), name=f"orchestration:{instance.instance_id}")

    @staticmethod
    def _cancel(instance: _Instance, clear_inbox: bool = True) -> None:
        if instance.task is not None and not instance.task.done():
            instance.task.cancel()
        if clear_inbox:
            instance.clear_events()

    async def _run(self, instance: _Instance) -> None:
        orchestrator = self._orchestrators[instance.name]
        while True:
            instance.transition(RuntimeStatus.RUNNING)
            await self._persist(instance)
            try:
                result = await orchestrator(OrchestrationContext(self, instance))
            except Exception as exc:
                logger.exception("Orchestration %s (%s) failed", instance.instance_id, instance.name)
                instance.output = f"{type(exc).__name__}: {exc}"
                instance.commit(RuntimeStatus.FAILED)
                await self._persist(instance)
                return

            if isinstance(result, ContinueAsNew):
                instance.input = result.input
                instance.commit(RuntimeStatus.CONTINUED_AS_NEW)
                await self._persist(instance)
                continue

            instance.output = result
            instance.commit(RuntimeStatus.COMPLETED)
            await self._persist(instance)
            return

    async def _call_activity(self, instance: _Instance, name: str, payload: Any) -> Any:
        activity = self._activities.get(name)
        if activity is None:
            raise UnknownActivityError(name)
        logger.debug("Instance %s calling activity %s", instance.instance_id, name)
        return await activity(payload)

    async def _persist(self, instance: _Instance) -> None:
        if self._store is None:
            return
        # A replaced instance must not overwrite its successor's row.
        if self._instances.get(instance.instance_id) is not instance:
            return
        await self._store.save(instance.to_row())
