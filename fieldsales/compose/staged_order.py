"""Staged order - in-memory collection of finalized lines and its lifecycle."""
import enum
import logging
import threading
from collections import OrderedDict
from typing import Any, Optional, Tuple

from fieldsales.compose.types import OrderLine
from fieldsales.exceptions import CommitInProgressError, InvalidStateError, NotFoundError

logger = logging.getLogger(__name__)


class StagedOrderState(str, enum.Enum):
    EMPTY = 'empty'
    BUILDING = 'building'
    LINE_STAGED = 'line_staged'
    COMMITTING = 'committing'
    COMMITTED = 'committed'
    COMMIT_FAILED = 'commit_failed'


S = StagedOrderState

TRANSITIONS = {
    S.EMPTY: {S.BUILDING},
    S.BUILDING: {S.BUILDING, S.LINE_STAGED, S.COMMITTING},
    S.LINE_STAGED: {S.LINE_STAGED, S.BUILDING, S.COMMITTING},
    S.COMMITTING: {S.COMMITTED, S.COMMIT_FAILED, S.BUILDING, S.LINE_STAGED},
    S.COMMIT_FAILED: {S.LINE_STAGED, S.BUILDING, S.COMMITTING},
    S.COMMITTED: set(),
}


class StagedOrder:
    """
    Finalized lines of the order being composed, keyed by line id.

    Lives only in memory. Lines survive failed commits; they are cleared
    only after both commit phases succeeded.

    ``submission`` holds a commit the ERP has already accepted but the local
    store has not recorded. While it is set the lines are frozen and the next
    commit only retries the local store.
    """

    def __init__(self):
        self._lines: 'OrderedDict[str, OrderLine]' = OrderedDict()
        self.state = S.EMPTY
        self.submission: Optional[Any] = None
        self._in_flight = threading.Lock()

    @property
    def lines(self) -> Tuple[OrderLine, ...]:
        return tuple(self._lines.values())

    def __len__(self):
        return len(self._lines)

    def __contains__(self, line_id):
        return line_id in self._lines

    @property
    def is_committing(self) -> bool:
        return self._in_flight.locked()

    def _transition(self, target: StagedOrderState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidStateError(f'Cannot move order from {self.state.value} to {target.value}')
        if target != self.state:
            logger.debug(f"[ORDER] {self.state.value} -> {target.value}")
        self.state = target

    def _ensure_editable(self) -> None:
        if self.state == S.COMMITTED:
            raise InvalidStateError('Order was already committed')
        if self.state == S.COMMITTING:
            raise CommitInProgressError()
        if self.submission is not None:
            raise InvalidStateError(
                f'Order {self.submission.receipt.order_sequence} is already in the ERP; '
                f'commit again to record it locally'
            )

    def touch(self) -> None:
        """Record that the draft is being edited."""
        self._ensure_editable()
        if self.state in (S.EMPTY, S.COMMIT_FAILED):
            self._transition(S.LINE_STAGED if self._lines else S.BUILDING)

    def add(self, line: OrderLine) -> None:
        self._ensure_editable()
        if self.state == S.EMPTY:
            self._transition(S.BUILDING)
        self._lines[line.id] = line
        self._transition(S.LINE_STAGED)

    def remove(self, line_id: str) -> OrderLine:
        self._ensure_editable()
        try:
            line = self._lines.pop(line_id)
        except KeyError:
            raise NotFoundError(f'Line {line_id} is not in the order')
        if self.state != S.EMPTY:
            self._transition(S.LINE_STAGED if self._lines else S.BUILDING)
        return line

    def begin_commit(self) -> None:
        """Take the in-flight guard; only one commit may be outstanding."""
        if not self._in_flight.acquire(blocking=False):
            raise CommitInProgressError()
        try:
            if self.state == S.EMPTY:
                self._transition(S.BUILDING)
            self._transition(S.COMMITTING)
        except InvalidStateError:
            self._in_flight.release()
            raise

    def fail_commit(self) -> None:
        self._transition(S.COMMIT_FAILED)
        self._in_flight.release()

    def complete_commit(self) -> None:
        self._transition(S.COMMITTED)
        self.submission = None
        self._in_flight.release()

    def abort_commit(self) -> None:
        """Release the guard when a commit stops before anything was sent."""
        self._transition(S.LINE_STAGED if self._lines else S.BUILDING)
        self._in_flight.release()

    def record_submission(self, submission) -> None:
        """Keep a commit the ERP accepted until the local store records it."""
        self.submission = submission

    def clear(self) -> None:
        """Drop every line; only legal once the order is committed."""
        if self.state != S.COMMITTED:
            raise InvalidStateError('Staged lines are only discarded after a successful commit')
        self._lines.clear()
