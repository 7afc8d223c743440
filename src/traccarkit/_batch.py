"""
Request coalescing for the traccarkit client.

The Traccar API has no batch endpoint, so batching here means bounded
concurrent fan-out: concurrent reads of the same endpoint are gathered into a
group for a short time and then executed together on a bounded worker pool.
Every member still performs its own upstream call and receives its own result.

Example:
    >>> batcher = RequestBatcher(execute=pipeline.send, max_batch_size=5, max_wait_time=0.05)
    >>> future = batcher.submit(ApiRequest("GET", "/api/devices"))
    >>> response = future.result()
"""

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from traccarkit._errors import RequestCancelledError
from traccarkit._models import ApiRequest, ApiResponse

if TYPE_CHECKING:
    from traccarkit._config import BatchConfig

logger = logging.getLogger(__name__)

BatchKey = tuple[str, str]


@dataclass(frozen=True)
class BatchStats:
    """
    Snapshot of the batcher.

    Attributes:
        pending_batches: Groups waiting to be flushed.
        pending_requests: Requests inside those groups.
        active_batch_keys: "METHOD:/path" of every pending group.
    """

    pending_batches: int
    pending_requests: int
    active_batch_keys: tuple[str, ...]


@dataclass
class _BatchMember:
    request: ApiRequest
    future: Future[ApiResponse] = field(default_factory=Future)


@dataclass
class _BatchGroup:
    key: BatchKey
    members: list[_BatchMember] = field(default_factory=list)
    timer: threading.Timer | None = None


class RequestBatcher:
    """
    Groups concurrent same-shape reads and fans them out on a bounded pool.

    Only GET requests without a body whose path is listed in
    `batchable_endpoints` are grouped; anything else executes individually.
    Groups are keyed by (method, path). The first member starts a flush timer
    of `max_wait_time`; reaching `max_batch_size` flushes immediately. A group
    is detached from the pending map at the moment it is flushed.

    Args:
        execute: Performs one upstream call. Invoked once per member.
        max_batch_size: Group size that triggers an immediate flush.
        max_wait_time: Seconds the first member waits for company.
        enabled: When False, every request executes individually.
        batchable_endpoints: Paths eligible for grouping.
        max_workers: Worker pool size bounding the fan-out.
    """

    def __init__(
        self,
        execute: Callable[[ApiRequest], ApiResponse],
        max_batch_size: int = 10,
        max_wait_time: float = 0.1,
        enabled: bool = True,
        batchable_endpoints: Iterable[str] = ("/api/devices", "/api/positions", "/api/events", "/api/geofences"),
        max_workers: int = 8,
    ):
        assert execute is not None, "execute cannot be None."
        assert max_batch_size > 0, "max_batch_size must be greater than 0."
        assert max_wait_time >= 0, "max_wait_time must be >= 0."
        assert max_workers > 0, "max_workers must be greater than 0."

        self._execute = execute
        self.max_batch_size = max_batch_size
        self.max_wait_time = max_wait_time
        self.enabled = enabled
        self.batchable_endpoints = frozenset(batchable_endpoints)

        self._groups: dict[BatchKey, _BatchGroup] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="traccarkit-batch")
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: "BatchConfig",
        execute: Callable[[ApiRequest], ApiResponse],
    ) -> "RequestBatcher":
        """Build a batcher from a BatchConfig section."""
        return cls(
            execute=execute,
            max_batch_size=config.max_batch_size,
            max_wait_time=config.max_wait_time,
            enabled=config.enabled,
            batchable_endpoints=config.batchable_endpoints,
            max_workers=config.max_workers,
        )

    def is_batchable(self, request: ApiRequest) -> bool:
        """Returns True if `request` may be grouped with others."""
        return (
            self.enabled
            and request.method == "GET"
            and request.is_bodiless
            and request.path in self.batchable_endpoints
        )

    def submit(self, request: ApiRequest) -> Future[ApiResponse]:
        """
        Schedule `request` and return a future for its own response.

        Non-batchable requests execute immediately in the calling thread and
        the returned future is already resolved.

        Raises:
            RequestCancelledError: If the batcher was closed.
        """
        member = _BatchMember(request=request)

        if not self.is_batchable(request):
            if self._closed:
                raise RequestCancelledError("Request batcher is closed")
            self._run_member(member)
            return member.future

        to_flush: _BatchGroup | None = None
        with self._lock:
            if self._closed:
                raise RequestCancelledError("Request batcher is closed")

            key: BatchKey = (request.method, request.path)
            group = self._groups.get(key)
            is_new_group = group is None
            if group is None:
                group = _BatchGroup(key=key)
                self._groups[key] = group
            group.members.append(member)

            if len(group.members) >= self.max_batch_size:
                del self._groups[key]
                if group.timer is not None:
                    group.timer.cancel()
                to_flush = group
            elif is_new_group:
                group.timer = threading.Timer(self.max_wait_time, self._flush_on_timer, args=(key, group))
                group.timer.daemon = True
                group.timer.start()

        if to_flush is not None:
            logger.debug(f"Batch {key[0]}:{key[1]} reached {len(to_flush.members)} requests, flushing")
            self._dispatch(to_flush)
        return member.future

    def flush_all(self) -> None:
        """Flush every pending group now and wait until all members completed."""
        with self._lock:
            groups = list(self._groups.values())
            self._groups.clear()
            for group in groups:
                if group.timer is not None:
                    group.timer.cancel()

        futures: list[Future[ApiResponse]] = []
        for group in groups:
            futures.extend(m.future for m in group.members)
            self._dispatch(group)
        if futures:
            wait(futures)

    def clear(self) -> None:
        """Reject every pending (not yet dispatched) member with RequestCancelledError."""
        with self._lock:
            groups = list(self._groups.values())
            self._groups.clear()
            for group in groups:
                if group.timer is not None:
                    group.timer.cancel()

        cleared = 0
        for group in groups:
            for member in group.members:
                if not member.future.done():
                    member.future.set_exception(RequestCancelledError("Request batch was cleared"))
                    cleared += 1
        if cleared:
            logger.info(f"Request batcher cleared {cleared} pending request(s)")

    def stats(self) -> BatchStats:
        """Return a snapshot of the pending groups."""
        with self._lock:
            return BatchStats(
                pending_batches=len(self._groups),
                pending_requests=sum(len(g.members) for g in self._groups.values()),
                active_batch_keys=tuple(f"{m}:{p}" for m, p in self._groups),
            )

    def close(self) -> None:
        """Reject pending members, then wait for in-flight members and stop the pool."""
        with self._lock:
            self._closed = True
        self.clear()
        self._executor.shutdown(wait=True)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _flush_on_timer(self, key: BatchKey, group: _BatchGroup) -> None:
        with self._lock:
            if self._groups.get(key) is not group:
                return  # already flushed by size, flush_all() or clear()
            del self._groups[key]
        logger.debug(f"Batch {key[0]}:{key[1]} flushed after {self.max_wait_time}s with {len(group.members)} request(s)")
        self._dispatch(group)

    def _dispatch(self, group: _BatchGroup) -> None:
        if len(group.members) == 1:
            self._run_member(group.members[0])
            return

        for member in group.members:
            try:
                self._executor.submit(self._run_member, member)
            except RuntimeError as e:
                # Pool already shut down
                if not member.future.done():
                    member.future.set_exception(RequestCancelledError("Request batcher is closed", cause=e))

    def _run_member(self, member: _BatchMember) -> None:
        if not member.future.set_running_or_notify_cancel():
            return
        try:
            response = self._execute(member.request)
        except Exception as e:
            member.future.set_exception(e)
        else:
            member.future.set_result(response)
