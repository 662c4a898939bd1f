"""Line item builder - the draft line and its promotion into the staged order."""
import logging
from dataclasses import dataclass, fields as dataclass_fields
from decimal import Decimal
from typing import List, Optional
from uuid import uuid4

from fieldsales.compose.ledger import PolicyBalanceLedger
from fieldsales.compose.resolver import SelectionResolver
from fieldsales.compose.staged_order import StagedOrder
from fieldsales.compose.types import CENT, OrderLine, line_total
from fieldsales.exceptions import (
    EmptyOrderError, MissingFieldError, ReadOnlyFieldError, UnknownOptionError, ValidationError,
)
from fieldsales.utils.number_format import parse_count

logger = logging.getLogger(__name__)

# Set only by the resolver and pricing lookups
SERVER_FIELDS = ('unit_qty', 'unit_price', 'discount_pct', 'total')

SELECTION_FIELDS = ('policy', 'reference_policy', 'product', 'packaging')

EDITABLE_FIELDS = SELECTION_FIELDS + ('pack_count',)


@dataclass
class DraftLine:
    """The line currently being edited. ``None`` means unselected."""

    policy_id: Optional[int] = None
    reference_policy_id: Optional[int] = None
    product_id: Optional[int] = None
    packaging_id: Optional[int] = None
    pack_count: Optional[int] = None
    unit_qty: Optional[int] = None
    unit_price: Optional[Decimal] = None
    discount_pct: Optional[Decimal] = None
    priced: bool = False

    @property
    def is_started(self) -> bool:
        return any(
            getattr(self, f.name) is not None for f in dataclass_fields(self) if f.name != 'priced'
        )

    @property
    def total(self) -> Optional[Decimal]:
        parts = (self.pack_count, self.unit_qty, self.unit_price, self.discount_pct)
        if any(part is None for part in parts):
            return None
        return line_total(*parts)

    def to_dict(self) -> dict:
        total = self.total
        return {
            'policy_id': self.policy_id,
            'reference_policy_id': self.reference_policy_id,
            'product_id': self.product_id,
            'packaging_id': self.packaging_id,
            'pack_count': self.pack_count,
            'unit_qty': self.unit_qty,
            'unit_price': str(self.unit_price) if self.unit_price is not None else None,
            'discount_pct': str(self.discount_pct) if self.discount_pct is not None else None,
            'priced': self.priced,
            'total': str(total.quantize(CENT)) if total is not None else None,
        }


class LineItemBuilder:
    """
    Edits the draft line and stages finished lines.

    Selection fields are forwarded to the resolver; the builder learns the
    outcome through the resolver's listener callbacks, so the draft never
    holds a value the resolver has since cleared.
    """

    def __init__(self, resolver: SelectionResolver, ledger: PolicyBalanceLedger, staged: StagedOrder):
        self.resolver = resolver
        self.ledger = ledger
        self.staged = staged
        self.draft = DraftLine()
        resolver.subscribe(self)

    # ------------------------------------------------------------------
    # Resolver callbacks
    # ------------------------------------------------------------------

    def on_cleared(self, fields) -> None:
        draft = self.draft
        if 'policy' in fields:
            draft.policy_id = None
        if 'reference_policy' in fields:
            draft.reference_policy_id = None
        if 'product' in fields:
            draft.product_id = None
            draft.unit_price = None
        if 'packaging' in fields:
            draft.packaging_id = None
        if 'pricing' in fields:
            draft.unit_qty = None
            draft.unit_price = None
            draft.discount_pct = None
            draft.pack_count = None
            draft.priced = False

    def on_resolved(self, field: str, value) -> None:
        draft = self.draft
        if field == 'balances':
            self.ledger.record_balances(value)
        elif field == 'policy':
            draft.policy_id = value.id
        elif field == 'reference_policy':
            draft.reference_policy_id = value.id
        elif field == 'product':
            draft.product_id = value.id
            # Provisional until pricing resolves
            draft.unit_price = value.catalog_price
        elif field == 'packaging':
            draft.packaging_id = value.id
        elif field == 'pricing':
            draft.unit_price = value.unit_price
            draft.discount_pct = value.discount_pct
            draft.unit_qty = value.unit_qty
            draft.pack_count = 1
            draft.priced = True

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def set_field(self, name: str, value) -> None:
        """
        Apply user input to the draft.

        Raises:
            ReadOnlyFieldError: for server-derived fields.
            ValidationError: for unknown fields or invalid values.
        """
        if name in SERVER_FIELDS:
            raise ReadOnlyFieldError(name)
        if name not in EDITABLE_FIELDS:
            raise ValidationError(f'Unknown draft field "{name}"', payload={'field': name})
        self.staged.touch()

        if name == 'pack_count':
            if self.draft.product_id is None:
                raise MissingFieldError(['product'])
            try:
                self.draft.pack_count = parse_count(value, 'pack_count')
            except ValueError as e:
                raise ValidationError(str(e), payload={'field': name})
            return

        try:
            option_id = int(value)
        except (TypeError, ValueError):
            raise UnknownOptionError(name, value)
        getattr(self.resolver, f'select_{name}')(option_id)

    def missing_fields(self) -> List[str]:
        draft = self.draft
        missing = []
        if draft.policy_id is None:
            missing.append('policy')
        if self.resolver.is_secure_credit and draft.reference_policy_id is None:
            missing.append('reference_policy')
        if draft.product_id is None:
            missing.append('product')
        if draft.packaging_id is None:
            missing.append('packaging')
        if draft.pack_count is None:
            missing.append('pack_count')
        if draft.product_id is not None and not draft.priced:
            missing.append('pricing')
        return missing

    def _finalize(self) -> OrderLine:
        draft, resolver = self.draft, self.resolver
        return OrderLine(
            id=uuid4().hex,
            policy_id=draft.policy_id,
            product_id=draft.product_id,
            packaging_id=draft.packaging_id,
            pack_count=draft.pack_count,
            unit_qty=draft.unit_qty,
            unit_price=draft.unit_price,
            discount_pct=draft.discount_pct,
            reference_policy_id=draft.reference_policy_id,
            policy_code=resolver.label_for('policy', draft.policy_id),
            reference_policy_code=resolver.label_for('reference_policy', draft.reference_policy_id),
            product_name=resolver.label_for('product', draft.product_id),
            packaging_name=resolver.label_for('packaging', draft.packaging_id),
        )

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def stage(self) -> OrderLine:
        """
        Validate the draft against its policy balance and append it to the order.

        Nothing is mutated when validation fails.
        """
        missing = self.missing_fields()
        if missing:
            raise MissingFieldError(missing)

        line = self._finalize()
        headroom = self.ledger.validate(line, self.staged.lines)
        self.staged.add(line)
        logger.info(
            f"[BUILDER] Staged line {line.id}: {line.product_name} x{line.pack_count} "
            f"= {line.total.quantize(CENT)} (headroom left {headroom.quantize(CENT)})"
        )
        self.resolver.reset_line()
        self.draft = DraftLine()
        return line

    def remove(self, line_id: str) -> OrderLine:
        line = self.staged.remove(line_id)
        logger.info(f"[BUILDER] Removed line {line_id}")
        return line

    def discard_all(self) -> None:
        """Drop every staged line; only called after a fully successful commit."""
        self.staged.clear()
        self.draft = DraftLine()

    def lines_for_commit(self) -> List[OrderLine]:
        """
        The complete draft (if any) followed by the staged lines, in staging order.

        Raises:
            EmptyOrderError: if there is nothing to submit.
            InsufficientBalanceError: if the draft does not fit its balance.
        """
        staged = list(self.staged.lines)
        lines = []
        if not self.missing_fields():
            draft_line = self._finalize()
            self.ledger.validate(draft_line, staged)
            lines.append(draft_line)
        elif self.draft.is_started:
            logger.info(f"[BUILDER] Incomplete draft left out of the order: {self.missing_fields()}")
        lines.extend(staged)

        if not lines:
            raise EmptyOrderError()
        over = self.ledger.check_invariant(lines)
        if over is not None:
            raise ValidationError(
                f'Order lines exceed the remaining balance of policy {over}',
                payload={'policy_key': over}
            )
        return lines

    def headrooms(self) -> dict:
        return self.ledger.headrooms(self.staged.lines)
