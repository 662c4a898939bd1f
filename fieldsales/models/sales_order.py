"""Sales order model (local record of an order committed to the ERP)."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from fieldsales.database import Base
import enum

# BIGINT keys everywhere, INTEGER on SQLite so the rowid autoincrements
Id = BigInteger().with_variant(Integer(), 'sqlite')


class SalesOrderStatus(str, enum.Enum):
    """App-level status of a sales order."""
    SENT = 'sent'
    PENDING = 'pending'
    CANCELLED = 'cancelled'


class OdooStatus(str, enum.Enum):
    """Status of the order as reported by the ERP."""
    QUOTATION = 'Quotation'
    SALE_ORDER = 'Sale Order'
    CANCELLED = 'cancelled'


class PolicyType(str, enum.Enum):
    """Policy types an order can be funded under."""
    ADVANCE = 'is_advance'
    CASH = 'cash'
    CREDIT = 'is_credit'
    SECURE_CREDIT = 'is_secure_credit'

    @property
    def label(self) -> str:
        return POLICY_TYPE_LABELS[self]


POLICY_TYPE_LABELS = {
    PolicyType.ADVANCE: 'Advance',
    PolicyType.CASH: 'Advance',
    PolicyType.CREDIT: 'Credit',
    PolicyType.SECURE_CREDIT: 'Secure Credit',
}


class SalesOrder(Base):
    """
    Sales order as stored by the application.

    Created only after the ERP has assigned ``order_id`` and
    ``order_sequence``. Orders the ERP received from other channels may
    arrive without a warehouse and get one assigned later.
    """

    __tablename__ = 'sales_order'

    id = Column(Id, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, unique=True, nullable=True, index=True)  # ERP-assigned
    order_sequence = Column(String(64), nullable=True)

    partner_id = Column(BigInteger, nullable=False, index=True)
    partner_name = Column(String(200), nullable=True)
    territory_id = Column(BigInteger, nullable=True)
    territory_name = Column(String(200), nullable=True)
    policy_type = Column(String(32), nullable=False)
    employee_id = Column(BigInteger, nullable=True)
    company_id = Column(BigInteger, nullable=True)
    warehouse_id = Column(BigInteger, nullable=True)

    status = Column(String(20), nullable=False, default=SalesOrderStatus.SENT.value)
    odoo_status = Column(String(32), nullable=False, default=OdooStatus.QUOTATION.value)
    total = Column(Numeric(12, 2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    lines = relationship('SalesOrderLine', back_populates='order', cascade='all, delete-orphan',
                         order_by='SalesOrderLine.id')

    @property
    def policy_type_label(self) -> str:
        try:
            return PolicyType(self.policy_type).label
        except ValueError:
            return 'N/A'

    @property
    def is_cancellable(self) -> bool:
        """Only quotations can still be cancelled."""
        return self.odoo_status == OdooStatus.QUOTATION.value

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'order_id': self.order_id,
            'order_sequence': self.order_sequence,
            'partner': {'id': self.partner_id, 'name': self.partner_name},
            'territory': {'id': self.territory_id, 'name': self.territory_name},
            'policy_type': self.policy_type,
            'policy_type_label': self.policy_type_label,
            'employee_id': self.employee_id,
            'company_id': self.company_id,
            'warehouse_id': self.warehouse_id,
            'status': self.status,
            'odooStatus': self.odoo_status,
            'total': str(self.total) if self.total is not None else None,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'lines': [line.to_dict() for line in self.lines],
        }

    def __repr__(self):
        return f"<SalesOrder(id={self.id}, order_id={self.order_id}, sequence='{self.order_sequence}')>"
