"""
Quote Lifecycle Permission Table

This module is the SINGLE SOURCE OF TRUTH for who may do what to a quote.
Every transition and every quote edit is evaluated against these tables;
no other module checks role strings.

- TRANSITIONS:       action -> (legal source statuses, target status)
- ACTION_ROLES:      action -> roles allowed to perform it
- EDITABLE_STATUSES: role -> statuses in which the role may edit a quote
- OPERATION_ROLES:   non-transition operations (invoicing, stock, settings)

ADMIN is allowed everything any other role is allowed.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Tuple, Union

from app.core.exceptions import IllegalTransition, PermissionDenied
from app.models.quote import QuoteAction, QuoteStatus


class Role(str, Enum):
    """Actor roles."""
    ADMIN = "ADMIN"
    SALES_REP = "SALES_REP"
    MANAGER = "MANAGER"
    FINANCE = "FINANCE"
    FACTORY = "FACTORY"


@dataclass(frozen=True)
class Actor:
    """The identity performing an operation. Passed explicitly to every engine call."""
    actor_id: str
    actor_name: str
    role: Role


class Operation(str, Enum):
    """Non-transition operations guarded by role."""
    CREATE_QUOTE = "CREATE_QUOTE"
    TOGGLE_ITEM_COMPLETED = "TOGGLE_ITEM_COMPLETED"
    ISSUE_INVOICE = "ISSUE_INVOICE"
    RECORD_PAYMENT = "RECORD_PAYMENT"
    VOID_INVOICE = "VOID_INVOICE"
    SWEEP_OVERDUE = "SWEEP_OVERDUE"
    STOCK_IN = "STOCK_IN"
    ADJUST_STOCK = "ADJUST_STOCK"
    UPDATE_SETTINGS = "UPDATE_SETTINGS"


# =============================================================================
# STATUS GROUPS
# =============================================================================

TERMINAL_STATUSES: FrozenSet[QuoteStatus] = frozenset({
    QuoteStatus.COMPLETED,
    QuoteStatus.CANCELLED,
})

NON_TERMINAL_STATUSES: FrozenSet[QuoteStatus] = frozenset(
    s for s in QuoteStatus if s not in TERMINAL_STATUSES
)

# Statuses in which invoices may be raised against the order
INVOICEABLE_STATUSES: FrozenSet[QuoteStatus] = frozenset({
    QuoteStatus.ORDERED,
    QuoteStatus.ACCEPTED,
    QuoteStatus.IN_PRODUCTION,
    QuoteStatus.READY,
})

# Statuses in which the factory works through the line-item checklist
PRODUCTION_STATUSES: FrozenSet[QuoteStatus] = frozenset({
    QuoteStatus.ACCEPTED,
    QuoteStatus.IN_PRODUCTION,
})


# =============================================================================
# TRANSITION RULES
# =============================================================================

TRANSITIONS: Dict[QuoteAction, Tuple[FrozenSet[QuoteStatus], QuoteStatus]] = {
    QuoteAction.SUBMIT: (frozenset({QuoteStatus.DRAFT, QuoteStatus.REJECTED}), QuoteStatus.SUBMITTED),
    QuoteAction.APPROVE: (frozenset({QuoteStatus.SUBMITTED}), QuoteStatus.APPROVED),
    QuoteAction.REJECT: (frozenset({QuoteStatus.SUBMITTED}), QuoteStatus.REJECTED),
    QuoteAction.ORDER: (frozenset({QuoteStatus.APPROVED}), QuoteStatus.ORDERED),
    QuoteAction.ACCEPT: (frozenset({QuoteStatus.ORDERED}), QuoteStatus.ACCEPTED),
    QuoteAction.START_WORK: (frozenset({QuoteStatus.ACCEPTED}), QuoteStatus.IN_PRODUCTION),
    QuoteAction.READY: (frozenset({QuoteStatus.IN_PRODUCTION}), QuoteStatus.READY),
    QuoteAction.COMPLETE: (frozenset({QuoteStatus.READY}), QuoteStatus.COMPLETED),
    QuoteAction.CANCEL: (NON_TERMINAL_STATUSES, QuoteStatus.CANCELLED),
}

ACTION_ROLES: Dict[QuoteAction, FrozenSet[Role]] = {
    QuoteAction.SUBMIT: frozenset({Role.SALES_REP, Role.MANAGER}),
    QuoteAction.APPROVE: frozenset({Role.MANAGER}),
    QuoteAction.REJECT: frozenset({Role.MANAGER}),
    QuoteAction.ORDER: frozenset({Role.SALES_REP, Role.MANAGER, Role.FINANCE}),
    QuoteAction.ACCEPT: frozenset({Role.FACTORY}),
    QuoteAction.START_WORK: frozenset({Role.FACTORY}),
    QuoteAction.READY: frozenset({Role.FACTORY}),
    QuoteAction.COMPLETE: frozenset({Role.SALES_REP, Role.MANAGER, Role.FINANCE, Role.FACTORY}),
    QuoteAction.CANCEL: frozenset({Role.MANAGER}),
}

# Actions that must carry a non-empty comment
COMMENT_REQUIRED: FrozenSet[QuoteAction] = frozenset({
    QuoteAction.REJECT,
    QuoteAction.CANCEL,
})

EDITABLE_STATUSES: Dict[Role, FrozenSet[QuoteStatus]] = {
    Role.SALES_REP: frozenset({QuoteStatus.DRAFT, QuoteStatus.REJECTED}),
    Role.MANAGER: frozenset({QuoteStatus.DRAFT, QuoteStatus.SUBMITTED}),
    Role.FINANCE: frozenset(),
    Role.FACTORY: frozenset(),
}
EDITABLE_STATUSES[Role.ADMIN] = frozenset().union(*EDITABLE_STATUSES.values())

OPERATION_ROLES: Dict[Operation, FrozenSet[Role]] = {
    Operation.CREATE_QUOTE: frozenset({Role.SALES_REP, Role.MANAGER}),
    Operation.TOGGLE_ITEM_COMPLETED: frozenset({Role.FACTORY, Role.MANAGER}),
    Operation.ISSUE_INVOICE: frozenset({Role.FINANCE, Role.MANAGER}),
    Operation.RECORD_PAYMENT: frozenset({Role.FINANCE}),
    Operation.VOID_INVOICE: frozenset({Role.FINANCE}),
    Operation.SWEEP_OVERDUE: frozenset({Role.FINANCE}),
    Operation.STOCK_IN: frozenset({Role.MANAGER}),
    Operation.ADJUST_STOCK: frozenset({Role.MANAGER}),
    Operation.UPDATE_SETTINGS: frozenset(),
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _status(status: Union[str, QuoteStatus]) -> QuoteStatus:
    return status if isinstance(status, QuoteStatus) else QuoteStatus(status)


def is_terminal(status: Union[str, QuoteStatus]) -> bool:
    return _status(status) in TERMINAL_STATUSES


def next_status(action: QuoteAction) -> QuoteStatus:
    return TRANSITIONS[action][1]


def is_legal_source(action: QuoteAction, status: Union[str, QuoteStatus]) -> bool:
    """Check whether the action is defined from this status, ignoring roles."""
    return _status(status) in TRANSITIONS[action][0]


class PermissionChecker:
    """
    Evaluates the permission tables for one actor.
    ADMIN automatically has every permission.
    """

    def __init__(self, actor: Actor):
        self.actor = actor
        self.role = Role(actor.role)

    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def has_role_for(self, action: QuoteAction) -> bool:
        if self.is_admin():
            return True
        return self.role in ACTION_ROLES[action]

    def has_operation(self, operation: Operation) -> bool:
        if self.is_admin():
            return True
        return self.role in OPERATION_ROLES[operation]

    def can_edit(self, status: Union[str, QuoteStatus]) -> bool:
        """Editability predicate: may this actor change lines/header in this status."""
        return _status(status) in EDITABLE_STATUSES[self.role]

    def can_transition(self, action: QuoteAction, status: Union[str, QuoteStatus]) -> bool:
        if not is_legal_source(action, status):
            return False
        if not self.has_role_for(action):
            return False
        if action == QuoteAction.SUBMIT and not self.can_edit(status):
            return False
        return True

    def allowed_actions(self, status: Union[str, QuoteStatus]) -> List[QuoteAction]:
        """Actions this actor may attempt from status (guards not evaluated)."""
        return [action for action in QuoteAction if self.can_transition(action, status)]

    def check_transition(self, action: QuoteAction, status: Union[str, QuoteStatus]) -> QuoteStatus:
        """
        Validate a transition against the tables and return the target status.

        Raises:
            IllegalTransition: action is not defined from this status
            PermissionDenied: actor's role may not perform the action here
        """
        current = _status(status)
        if not is_legal_source(action, current):
            raise IllegalTransition(action.value, current.value)
        if not self.can_transition(action, current):
            raise PermissionDenied(self.role.value, action.value)
        return next_status(action)

    def require(self, operation: Operation) -> None:
        if not self.has_operation(operation):
            raise PermissionDenied(self.role.value, operation.value)
