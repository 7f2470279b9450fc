"""Delivery of queued local mutations to the server.

One push cycle:

1. Selects the eligible queued operations and marks them ``syncing``.
2. Sends them as one batch to ``POST /sync/push``.
3. Removes accepted operations and records an attempt on rejected ones.
4. Updates the sync status and notifies the user about failures.

Transport failures count as an attempt for every operation in the batch.
Nothing is raised past :meth:`PushPipeline.push`.
"""
import dataclasses
import logging
import sqlite3
import threading
from typing import Any, Dict, List, Optional, Set

from .client import SyncApi
from .idmap import IdMapper
from .models import OperationStatus, SyncOperation
from .queue import SyncQueue
from .retry import RetryPolicy
from .state import SyncState, SyncStatus
from ..status import status
from ..ui.actions import Severity, notify, signals


@dataclasses.dataclass
class FailedOperation:
    id: str
    error: str
    terminal: bool = False


@dataclasses.dataclass
class PushResult:
    """Outcome of one push cycle.

    Attributes:
        successful: Ids of operations the server accepted.
        failed: Operations that failed during this cycle.
        skipped: True when another cycle was already running and nothing was done.
        error: Set when the cycle broke off before every operation was accounted for.
    """
    successful: List[str] = dataclasses.field(default_factory=list)
    failed: List[FailedOperation] = dataclasses.field(default_factory=list)
    skipped: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped and self.error is None


class PushPipeline:
    """Sends eligible queued operations to the server in one batch.

    Args:
        queue: The sync queue.
        api: The sync endpoints.
        sync_status: Status indicator updated while pushing.
        mapper: Applies server-assigned ids. Remaps are ignored without one.
        policy: Retry policy, defaults to the queue's.
    """

    def __init__(self, queue: SyncQueue, api: SyncApi, sync_status: SyncStatus,
                 mapper: Optional[IdMapper] = None, policy: Optional[RetryPolicy] = None) -> None:
        self.queue = queue
        self.api = api
        self.status = sync_status
        self.mapper = mapper
        self.policy = policy or queue.policy

        self._cycle_lock = threading.Lock()

    def push(self, wait: bool = False) -> PushResult:
        """Run one push cycle.

        Args:
            wait: Wait for a running cycle to finish instead of skipping.

        Returns:
            The cycle's result, with ``skipped`` set when another cycle was
            running and ``wait`` is False.
        """
        if not self._cycle_lock.acquire(blocking=wait):
            logging.debug('Push already in progress, skipping.')
            return PushResult(skipped=True)
        try:
            return self._push()
        finally:
            self._cycle_lock.release()

    def select_batch(self) -> List[SyncOperation]:
        """Pick the operations to send and mark them as syncing.

        An operation is held back while an older operation on the same record
        is still queued outside the batch, unless that one failed for good.
        """
        with self.queue.lock:
            queued = self.queue.list_all()
            position = {op.id: i for i, op in enumerate(queued)}

            eligible = self.policy.filter_eligible(self.queue.list_pending())
            eligible.sort(key=lambda op: position.get(op.id, len(position)))

            batch: List[SyncOperation] = []
            chosen: Set[str] = set()
            for op in eligible:
                blocked = any(
                    other.table == op.table and other.record_id == op.record_id
                    and position[other.id] < position.get(op.id, len(position))
                    and other.id not in chosen
                    and not self.policy.is_exhausted(other)
                    for other in queued
                )
                if blocked:
                    logging.debug(f'Holding back {op.id}: an older change to {op.table}/{op.record_id} is queued')
                    continue
                batch.append(op)
                chosen.add(op.id)

            if batch:
                with self.queue.store.transaction() as conn:
                    for op in batch:
                        op.status = OperationStatus.Syncing
                        self.queue.update(op, conn=conn)
        return batch

    def _push(self) -> PushResult:
        try:
            batch = self.select_batch()
        except Exception as ex:
            logging.exception('Could not select operations to push.')
            self.status.set_state(SyncState.Error)
            return PushResult(error=str(ex) or type(ex).__name__)
        if not batch:
            logging.debug('Nothing to push.')
            return PushResult()

        logging.info(f'Pushing {len(batch)} operation(s)')
        self.status.set_state(SyncState.Syncing)

        try:
            result = self._deliver(batch)
        except Exception as ex:
            logging.exception('Push cycle failed while updating the queue.')
            result = PushResult(error=str(ex) or type(ex).__name__)
            self.status.set_state(SyncState.Error)
            notify('Some changes could not be synced and will be retried.', Severity.Info)
        finally:
            try:
                self._release(batch)
            except sqlite3.Error:
                # Left syncing until SyncQueue.recover runs on the next start
                logging.exception('Could not release operations left syncing.')

        signals.pushFinished.emit(result)
        return result

    def _deliver(self, batch: List[SyncOperation]) -> PushResult:
        try:
            response = self.api.push(batch)
            _check_response(response)
        except status.BaseStatusException as ex:
            return self._fail_batch(batch, ex.detail or ex.status_message)
        except Exception as ex:
            logging.exception('Push failed unexpectedly.')
            return self._fail_batch(batch, str(ex) or type(ex).__name__)
        return self._apply(batch, response)

    def _release(self, batch: List[SyncOperation]) -> None:
        """Put operations of ``batch`` still marked syncing back to pending."""
        released = 0
        with self.queue.lock:
            with self.queue.store.transaction() as conn:
                for op in batch:
                    record = self.queue.collection.get(op.id, conn=conn)
                    if not record or record.get('status') != OperationStatus.Syncing:
                        continue
                    stored = SyncOperation.from_dict(record)
                    stored.status = OperationStatus.Pending
                    self.queue.update(stored, conn=conn)
                    released += 1
        if released:
            logging.warning(f'{released} operation(s) were left syncing and go back to pending.')
            self.queue.notify_changed()

    def _fail_batch(self, batch: List[SyncOperation], error: str) -> PushResult:
        logging.warning(f'Push of {len(batch)} operation(s) failed: {error}')
        result = PushResult()
        now = self.policy.now()
        with self.queue.lock:
            with self.queue.store.transaction() as conn:
                for op in batch:
                    self.policy.rearm(op, error, now)
                    self.queue.update(op, conn=conn)
                    result.failed.append(FailedOperation(op.id, error, self.policy.is_exhausted(op)))
        self.queue.notify_changed()

        self.status.set_state(SyncState.Error)
        self._notify_failures(batch, result)
        return result

    def _apply(self, batch: List[SyncOperation], response: Dict[str, Any]) -> PushResult:
        by_id = {op.id: op for op in batch}
        result = PushResult()
        now = self.policy.now()

        successful = [str(i) for i in (response.get('successful') or [])]
        failed = _failed_entries(response.get('failed') or [])

        with self.queue.lock:
            with self.queue.store.transaction() as conn:
                for op_id in successful:
                    if op_id not in by_id:
                        logging.warning(f'Server acknowledged unknown operation {op_id}')
                        continue
                    if op_id in result.successful:
                        continue
                    self.queue.remove(op_id, conn=conn)
                    result.successful.append(op_id)

                handled = set(result.successful)
                for op_id, error in failed:
                    op = by_id.get(op_id)
                    if op is None or op_id in handled:
                        continue
                    # Recorded on the operation, never raised
                    status.OperationRejectedException(f'{op.operation} {op.table}/{op.record_id}: {error}')
                    self.policy.rearm(op, error, now)
                    self.queue.update(op, conn=conn)
                    result.failed.append(FailedOperation(op_id, error, self.policy.is_exhausted(op)))
                    handled.add(op_id)

                # Not acknowledged either way: back to pending, no attempt consumed
                unaccounted = [op for op in batch if op.id not in handled]
                for op in unaccounted:
                    logging.warning(f'Server did not report on operation {op.id}, it will be sent again.')
                    op.status = OperationStatus.Pending
                    self.queue.update(op, conn=conn)
        self.queue.notify_changed()

        if self.mapper is not None:
            self._apply_remaps(by_id, set(result.successful), response.get('remapped') or [])
        elif response.get('remapped'):
            logging.warning('Server re-keyed records but no id mapper is configured.')

        if result.failed:
            self.status.set_state(SyncState.Error)
            self._notify_failures(batch, result)
        else:
            self.status.set_state(SyncState.Idle)
            if not unaccounted:
                self.status.stamp()

        logging.info(f'Push finished: {len(result.successful)} accepted, {len(result.failed)} failed')
        return result

    def _apply_remaps(self, by_id: Dict[str, SyncOperation], accepted: Set[str], remapped: List[Any]) -> None:
        for entry in remapped:
            if not isinstance(entry, dict):
                continue
            op = by_id.get(str(entry.get('id')))
            new_id = entry.get('recordId')
            if op is None or op.id not in accepted or not new_id:
                continue
            self.mapper.remap(op.table, op.record_id, str(new_id))

    def _notify_failures(self, batch: List[SyncOperation], result: PushResult) -> None:
        by_id = {op.id: op for op in batch}
        transient = False
        for failure in result.failed:
            if not failure.terminal:
                transient = True
                continue
            op = by_id[failure.id]
            ex = status.RetriesExhaustedException(f'({op.table}): {failure.error}')
            notify(str(ex), Severity.Error)

        if transient:
            notify('Some changes could not be synced and will be retried.', Severity.Info)


def _check_response(response: Any) -> None:
    """Raise if a push response is not ``{successful: [], failed: [], remapped?: []}``.

    Raises:
        status.RequestFailedException: If the response has the wrong shape.
    """
    if not isinstance(response, dict):
        raise status.RequestFailedException('The server sent a malformed push response.')
    for key in ('successful', 'failed', 'remapped'):
        value = response.get(key)
        if value is not None and not isinstance(value, list):
            raise status.RequestFailedException(
                f'The server sent a malformed push response: "{key}" must be a list.'
            )


def _failed_entries(entries: List[Any]) -> List[tuple]:
    out = []
    for entry in entries:
        if isinstance(entry, dict):
            if entry.get('id') is None:
                continue
            out.append((str(entry['id']), str(entry.get('error') or 'Rejected by the server.')))
        else:
            out.append((str(entry), 'Rejected by the server.'))
    return out
