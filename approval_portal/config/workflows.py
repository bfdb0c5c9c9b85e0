# ============================================
# WORKFLOW DEFINITIONS
# ============================================

"""
Static stage sequences for every approval workflow kind.

Each stage names the permission an actor must hold to act on it and the
field prefix under which its sign-off is recorded ({prefix}_at, {prefix}_by,
{prefix}_url). Order is fixed; the successor of the last stage is COMPLETED.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from approval_portal.schemas.workflow import WorkflowKind, TerminalStatus


@dataclass(frozen=True)
class StageDefinition:
    """One step of a workflow"""
    name: str
    label: str
    required_permission: str
    field_prefix: str
    # Auto-approved when the submitter already holds required_permission
    skippable_when_submitter_holds: bool = False
    # Payload fields the approver of this stage may fill in
    extra_fields: Tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkflowDefinition:
    """Ordered stages of one workflow kind"""
    kind: WorkflowKind
    stages: Tuple[StageDefinition, ...]

    @property
    def first_stage(self) -> StageDefinition:
        return self.stages[0]

    @property
    def stage_names(self) -> Tuple[str, ...]:
        return tuple(stage.name for stage in self.stages)

    @property
    def completed_step(self) -> int:
        return len(self.stages) + 1

    def get_stage(self, name: str) -> Optional[StageDefinition]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def index_of(self, name: str) -> int:
        return self.stage_names.index(name)

    def transition_table(self) -> Dict[str, str]:
        """Total mapping stage -> next stage | completed"""
        names = self.stage_names
        table = {}
        for idx, name in enumerate(names):
            table[name] = names[idx + 1] if idx + 1 < len(names) else TerminalStatus.COMPLETED.value
        return table


PAYMENT_WORKFLOW = WorkflowDefinition(
    kind=WorkflowKind.PAYMENT,
    stages=(
        StageDefinition(
            name="pending_unit_manager",
            label="Unit manager sign-off",
            required_permission="payment.approve.manager",
            field_prefix="sign_manager"
        ),
        StageDefinition(
            name="pending_accountant",
            label="Accountant review",
            required_permission="payment.approve.accountant",
            field_prefix="sign_accountant",
            skippable_when_submitter_holds=True
        ),
        StageDefinition(
            name="pending_audit_manager",
            label="Audit manager sign-off",
            required_permission="payment.approve.audit_manager",
            field_prefix="sign_audit"
        ),
        StageDefinition(
            name="pending_cashier",
            label="Cashier disbursement",
            required_permission="payment.approve.cashier",
            field_prefix="sign_cashier",
            extra_fields=("handling_fee",)
        ),
        StageDefinition(
            name="pending_boss",
            label="Final release",
            required_permission="payment.approve.boss",
            field_prefix="sign_boss"
        ),
    )
)

ERP_PRODUCT_WORKFLOW = WorkflowDefinition(
    kind=WorkflowKind.ERP_PRODUCT,
    stages=(
        StageDefinition(
            name="pending_purchasing",
            label="Purchasing review",
            required_permission="erp.product_request.approve.purchasing",
            field_prefix="purchasing_approved"
        ),
        StageDefinition(
            name="pending_dept_manager",
            label="Department manager sign-off",
            required_permission="erp.product_request.approve.dept_manager",
            field_prefix="dept_manager_approved"
        ),
        StageDefinition(
            name="pending_review",
            label="Master data review",
            required_permission="erp.product_request.approve.review",
            field_prefix="review_approved"
        ),
        StageDefinition(
            name="pending_create",
            label="Product creation",
            required_permission="erp.product_request.approve.create",
            field_prefix="created_approved"
        ),
    )
)

ERP_SUPPLIER_WORKFLOW = WorkflowDefinition(
    kind=WorkflowKind.ERP_SUPPLIER,
    stages=(
        StageDefinition(
            name="pending_finance",
            label="Finance review",
            required_permission="erp.supplier.approve.finance",
            field_prefix="finance_approved"
        ),
        StageDefinition(
            name="pending_accounting",
            label="Accounting review",
            required_permission="erp.supplier.approve.accounting",
            field_prefix="accounting_approved"
        ),
        StageDefinition(
            name="pending_creator",
            label="Supplier creation",
            required_permission="erp.supplier.approve.creator",
            field_prefix="creator_approved"
        ),
    )
)

WORKFLOWS: Dict[WorkflowKind, WorkflowDefinition] = {
    WorkflowKind.PAYMENT: PAYMENT_WORKFLOW,
    WorkflowKind.ERP_PRODUCT: ERP_PRODUCT_WORKFLOW,
    WorkflowKind.ERP_SUPPLIER: ERP_SUPPLIER_WORKFLOW,
}

# Required payload fields per kind
REQUIRED_PAYLOAD_FIELDS: Dict[WorkflowKind, Tuple[str, ...]] = {
    WorkflowKind.PAYMENT: ("payee_name", "amount"),
    WorkflowKind.ERP_PRODUCT: ("request_type", "items"),
    WorkflowKind.ERP_SUPPLIER: ("company_name", "tax_id"),
}

# Marker values recorded in {prefix}_url
APPROVED_BY_BUTTON = "BUTTON_APPROVED"
AUTO_SKIPPED = "AUTO_SKIPPED"

# Permission guarding RBAC administration
RBAC_MANAGE_PERMISSION = "rbac.manage"


def get_workflow(kind) -> WorkflowDefinition:
    """Get the definition for a workflow kind (enum or raw value)"""
    return WORKFLOWS[WorkflowKind(kind)]


def all_stage_permissions() -> Dict[str, str]:
    """Map every stage permission code to its stage label"""
    codes = {}
    for workflow in WORKFLOWS.values():
        for stage in workflow.stages:
            codes[stage.required_permission] = f"{workflow.kind.value}: {stage.label}"
    return codes
