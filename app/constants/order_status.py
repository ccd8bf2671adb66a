from enum import Enum


class OrderState(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


ALLOWED_TRANSITIONS = {
    OrderState.PENDING_PAYMENT: [OrderState.PAID, OrderState.EXPIRED, OrderState.CANCELLED],
    OrderState.PAID: [],
    OrderState.EXPIRED: [],
    OrderState.CANCELLED: [],
}

TERMINAL_STATES = {state for state, targets in ALLOWED_TRANSITIONS.items() if not targets}

# transfer codes must be unique among these
ACTIVE_CODE_STATES = (OrderState.PENDING_PAYMENT, OrderState.PAID)


def can_transition(current: OrderState, target: OrderState) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, [])


def sources_for(target: OrderState) -> list:
    """States from which `target` may be entered."""
    return [state for state, targets in ALLOWED_TRANSITIONS.items() if target in targets]
