"""Policy balance ledger - client-side headroom projection per policy key."""
import logging
from decimal import Decimal
from typing import Dict, Iterable, Optional

from fieldsales.compose.types import OrderLine, Policy
from fieldsales.exceptions import ValidationError, InsufficientBalanceError

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


class PolicyBalanceLedger:
    """
    Remaining balances as last reported by the server, keyed by policy id.

    The ledger never lowers a balance itself; consumption is always derived
    from the staged lines passed in, so removing a staged line restores its
    headroom without any bookkeeping.
    """

    def __init__(self):
        self._remaining: Dict[int, Decimal] = {}

    def record_balances(self, policies: Iterable[Policy]) -> None:
        """Merge a fresh balance fetch; keys not in the fetch keep their last value."""
        for policy in policies:
            if policy.remaining_amount is None:
                continue
            self._remaining[policy.id] = Decimal(policy.remaining_amount)
            logger.debug(f"[LEDGER] Policy {policy.id} ({policy.code}) remaining {policy.remaining_amount}")

    def remaining(self, policy_key: int) -> Decimal:
        try:
            return self._remaining[policy_key]
        except KeyError:
            raise ValidationError(f'No balance known for policy {policy_key}', payload={'policy_key': policy_key})

    @staticmethod
    def consumed(policy_key: int, lines: Iterable[OrderLine]) -> Decimal:
        return sum((line.total for line in lines if line.policy_key == policy_key), ZERO)

    def headroom(self, policy_key: int, lines: Iterable[OrderLine]) -> Decimal:
        return self.remaining(policy_key) - self.consumed(policy_key, lines)

    def headrooms(self, lines: Iterable[OrderLine]) -> Dict[int, Decimal]:
        lines = list(lines)
        return {key: self.headroom(key, lines) for key in self._remaining}

    def validate(self, candidate: OrderLine, lines: Iterable[OrderLine]) -> Decimal:
        """
        Accept or reject ``candidate`` as a whole against its policy's balance.

        Returns the headroom left after the candidate would be added.

        Raises:
            InsufficientBalanceError: if staged totals plus the candidate exceed
                the remaining amount.
        """
        key = candidate.policy_key
        remaining = self.remaining(key)
        consumed = self.consumed(key, lines)
        if candidate.total + consumed > remaining:
            logger.info(
                f"[LEDGER] Rejected line for policy {key}: {candidate.total} + {consumed} > {remaining}"
            )
            raise InsufficientBalanceError(
                policy_key=key,
                requested=candidate.total,
                headroom=remaining - consumed,
                remaining=remaining,
            )
        return remaining - consumed - candidate.total

    def check_invariant(self, lines: Iterable[OrderLine]) -> Optional[int]:
        """Return the first policy key whose staged total exceeds its balance, if any."""
        lines = list(lines)
        for key in {line.policy_key for line in lines}:
            if key in self._remaining and self.consumed(key, lines) > self._remaining[key]:
                return key
        return None
