"""
Supplier Model
ERP supplier master records created from completed supplier requests
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from datetime import datetime

from approval_portal.config.database import Base


class Supplier(Base):
    """Supplier master record"""
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True, index=True)
    supplier_code = Column(String, unique=True, index=True, nullable=True)
    company_name = Column(String, nullable=False)
    tax_id = Column(String, unique=True, index=True, nullable=False)

    # Remaining request fields (contacts, bank account, payment terms)
    details = Column(JSON, nullable=True)

    source_request_id = Column(Integer, ForeignKey("approval_requests.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Supplier {self.tax_id} - {self.company_name}>"
