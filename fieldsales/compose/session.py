"""Compose sessions - one owned object per order being composed."""
import logging
import secrets
import threading
import time
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

from fieldsales.blueprints.metrics import compose_sessions_open
from fieldsales.compose.builder import LineItemBuilder
from fieldsales.compose.ledger import PolicyBalanceLedger
from fieldsales.compose.orchestrator import CommitOrchestrator
from fieldsales.compose.resolver import SelectionResolver
from fieldsales.compose.staged_order import StagedOrder
from fieldsales.compose.types import CENT, CommitResult, OperatorProfile, OrderLine
from fieldsales.exceptions import NotFoundError, UnknownOptionError, ValidationError

logger = logging.getLogger(__name__)

CONTEXT_FIELDS = ('territory', 'customer', 'delivery_address', 'policy_type', 'warehouse')


class ComposeSession:
    """
    Resolver, ledger, builder, staged order and orchestrator for one order.

    Every operation of the composition goes through this object and runs
    under its lock; nothing is shared between sessions. A commit holds the
    lock only while it freezes the lines, so edits arriving during the remote
    calls are refused rather than silently left out.
    """

    def __init__(self, profile: OperatorProfile, backend, gateway):
        self.id = secrets.token_urlsafe(16)
        self.profile = profile
        self.resolver = SelectionResolver(profile, backend, gateway)
        self.ledger = PolicyBalanceLedger()
        self.staged = StagedOrder()
        self.builder = LineItemBuilder(self.resolver, self.ledger, self.staged)
        self.orchestrator = CommitOrchestrator(
            profile, self.resolver, self.builder, self.staged, backend, gateway
        )
        self.last_used = time.monotonic()
        self._lock = threading.RLock()

    def select(self, field: str, value) -> None:
        """Set one of the order context fields."""
        if field not in CONTEXT_FIELDS:
            raise ValidationError(f'Unknown selection field "{field}"', payload={'field': field})
        with self._lock:
            self.staged.touch()

            if field in ('delivery_address', 'policy_type'):
                if value in (None, ''):
                    raise UnknownOptionError(field, value)
                getattr(self.resolver, f'select_{field}')(str(value))
                return

            try:
                option_id = int(value)
            except (TypeError, ValueError):
                raise UnknownOptionError(field, value)
            getattr(self.resolver, f'select_{field}')(option_id)

    def set_field(self, name: str, value) -> None:
        with self._lock:
            self.builder.set_field(name, value)

    def stage(self) -> OrderLine:
        with self._lock:
            return self.builder.stage()

    def remove_line(self, line_id: str) -> OrderLine:
        with self._lock:
            return self.builder.remove(line_id)

    def commit(self) -> CommitResult:
        with self._lock:
            prepared = self.orchestrator.prepare()
        return self.orchestrator.submit(prepared)

    def snapshot(self) -> dict:
        with self._lock:
            lines = self.staged.lines
            staged_total = sum((line.total for line in lines), Decimal('0'))
            submission = self.staged.submission
            data = self.resolver.snapshot()
            data.update({
                'id': self.id,
                'state': self.staged.state.value,
                'draft': self.builder.draft.to_dict(),
                'missing_fields': self.builder.missing_fields(),
                'lines': [line.to_dict() for line in lines],
                'headroom': {
                    str(key): str(value.quantize(CENT))
                    for key, value in self.builder.headrooms().items()
                },
                'total': str(staged_total.quantize(CENT)),
                'submitted': {
                    'order_id': submission.receipt.order_id,
                    'order_sequence': submission.receipt.order_sequence,
                } if submission is not None else None,
            })
            return data


class ComposeSessionRegistry:
    """
    In-process store of live sessions, keyed by session id.

    Sessions unused for ``idle_ttl`` seconds are dropped the next time the
    registry is accessed; a session with a commit in flight is kept.
    """

    def __init__(
        self,
        clients_factory: Callable[[], Tuple[object, object]],
        idle_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clients_factory = clients_factory
        self._sessions: Dict[str, ComposeSession] = {}
        self._lock = threading.Lock()
        self.idle_ttl = idle_ttl
        self._clock = clock

    def open(self, profile: OperatorProfile) -> ComposeSession:
        backend, gateway = self._clients_factory()
        session = ComposeSession(profile, backend, gateway)
        with self._lock:
            self._evict_idle()
            session.last_used = self._clock()
            self._sessions[session.id] = session
        compose_sessions_open.inc()
        logger.info(f"[COMPOSE] Session {session.id} opened for employee {profile.employee_id}")
        return session

    def get(self, session_id: str) -> ComposeSession:
        with self._lock:
            self._evict_idle()
            session = self._sessions.get(session_id)
            if session is not None:
                session.last_used = self._clock()
        if session is None:
            raise NotFoundError(f'Compose session {session_id} not found')
        return session

    def close(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise NotFoundError(f'Compose session {session_id} not found')
        compose_sessions_open.dec()
        logger.info(f"[COMPOSE] Session {session_id} closed")

    def evict_idle(self) -> int:
        """Drop idle sessions now; returns how many were dropped."""
        with self._lock:
            return self._evict_idle()

    def _evict_idle(self) -> int:
        if not self.idle_ttl:
            return 0
        cutoff = self._clock() - self.idle_ttl
        idle = [
            sid for sid, session in self._sessions.items()
            if session.last_used < cutoff and not session.staged.is_committing
        ]
        for sid in idle:
            session = self._sessions.pop(sid)
            submission = session.staged.submission
            if submission is not None:
                logger.warning(
                    f"[COMPOSE] Session {sid} expired holding ERP order "
                    f"{submission.receipt.order_sequence} (#{submission.receipt.order_id}) "
                    f"that was never stored locally"
                )
            else:
                logger.info(f"[COMPOSE] Session {sid} expired with {len(session.staged)} staged lines")
        if idle:
            compose_sessions_open.dec(len(idle))
        return len(idle)

    def __len__(self):
        with self._lock:
            return len(self._sessions)
