"""
Supplier Service
Maintains the supplier master from completed supplier requests
"""

from sqlalchemy.orm import Session

from approval_portal.database.registry import Supplier
from approval_portal.schemas.workflow import RequestState, WorkflowKind
from approval_portal.utils.logger import setup_logger

logger = setup_logger()

MASTER_FIELDS = ("supplier_code", "company_name", "tax_id")


class SupplierService:
    """Service for the ERP supplier master"""

    def upsert_from_request(self, db: Session, request: RequestState) -> Supplier:
        """
        Create or update the supplier a completed supplier request describes

        Suppliers are keyed by tax id; a change request for a known tax id
        updates the existing record.

        Args:
            db: Database session
            request: Completed erp_supplier request

        Returns:
            Supplier: The created or updated record
        """
        if request.kind != WorkflowKind.ERP_SUPPLIER:
            raise ValueError(f"{request.request_number} is not a supplier request")

        payload = request.payload
        details = {k: v for k, v in payload.items() if k not in MASTER_FIELDS}

        supplier = db.query(Supplier).filter(Supplier.tax_id == payload["tax_id"]).first()

        supplier_code = payload.get("supplier_code") or None
        if supplier_code:
            holder = db.query(Supplier).filter(Supplier.supplier_code == supplier_code).first()
            if holder and holder is not supplier:
                logger.warning(
                    f"Supplier code {supplier_code} from {request.request_number} already belongs to"
                    f" tax id {holder.tax_id}, leaving it unassigned"
                )
                supplier_code = None

        if supplier:
            supplier.company_name = payload["company_name"]
            if supplier_code:
                supplier.supplier_code = supplier_code
            supplier.details = details
            supplier.source_request_id = request.id
            logger.info(f"Updated supplier {supplier.tax_id} from {request.request_number}")
        else:
            supplier = Supplier(
                supplier_code=supplier_code,
                company_name=payload["company_name"],
                tax_id=payload["tax_id"],
                details=details,
                source_request_id=request.id
            )
            db.add(supplier)
            logger.info(f"Created supplier {supplier.tax_id} from {request.request_number}")

        db.flush()
        return supplier


# Create singleton instance
supplier_service = SupplierService()
