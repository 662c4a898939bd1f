"""Sales order line model."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from fieldsales.database import Base
from fieldsales.models.sales_order import Id
from fieldsales.utils.number_format import amount_text


class SalesOrderLine(Base):
    """
    One product line of a stored sales order.

    ``qty`` is the total unit count (units per pack × packs).
    """

    __tablename__ = 'sales_order_line'

    id = Column(Id, primary_key=True, autoincrement=True)
    sales_order_id = Column(BigInteger, ForeignKey('sales_order.id', ondelete='CASCADE'), nullable=False, index=True)

    product_template_id = Column(BigInteger, nullable=False)
    product_name = Column(String(200), nullable=True)
    policy_id = Column(BigInteger, nullable=False)
    policy_code = Column(String(100), nullable=True)
    ref_policy_id = Column(BigInteger, nullable=True)
    ref_policy_code = Column(String(100), nullable=True)
    product_packaging_id = Column(BigInteger, nullable=False)
    packaging_name = Column(String(100), nullable=True)

    product_packaging_qty = Column(Integer, nullable=False)
    qty = Column(Integer, nullable=False)
    price_unit = Column(Numeric(16, 6), nullable=False)  # ERP prices carry sub-cent precision
    discount = Column(Numeric(7, 4), nullable=False, default=0)

    # Relationships
    order = relationship('SalesOrder', back_populates='lines')

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'product_template': {'id': self.product_template_id, 'name': self.product_name},
            'policy': {'id': self.policy_id, 'code': self.policy_code},
            'ref_policy': {'id': self.ref_policy_id, 'code': self.ref_policy_code} if self.ref_policy_id else None,
            'packaging': {'id': self.product_packaging_id, 'name': self.packaging_name},
            'product_packaging_qty': self.product_packaging_qty,
            'qty': self.qty,
            'price_unit': amount_text(self.price_unit),
            'discount': amount_text(self.discount),
        }

    def __repr__(self):
        return f"<SalesOrderLine(id={self.id}, product_template_id={self.product_template_id}, qty={self.qty})>"
