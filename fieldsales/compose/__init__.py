"""Order composition: selection chain, balance checks, staging and two-phase commit."""
from .builder import DraftLine, LineItemBuilder
from .ledger import PolicyBalanceLedger
from .orchestrator import CommitOrchestrator, WarehouseAssignmentOrchestrator, build_order_payload
from .resolver import SelectionResolver
from .session import ComposeSession, ComposeSessionRegistry
from .staged_order import StagedOrder, StagedOrderState

__all__ = [
    'DraftLine', 'LineItemBuilder', 'PolicyBalanceLedger', 'CommitOrchestrator',
    'WarehouseAssignmentOrchestrator', 'build_order_payload', 'SelectionResolver',
    'ComposeSession', 'ComposeSessionRegistry', 'StagedOrder', 'StagedOrderState',
]
