from core.exceptions import StateConflictError

DRAFT = 'DRAFT'
SUBMITTED = 'SUBMITTED'
UNDER_REVIEW = 'UNDER_REVIEW'
APPROVED = 'APPROVED'
PARTIALLY_APPROVED = 'PARTIALLY_APPROVED'
DENIED = 'DENIED'
PAID = 'PAID'
REJECTED = 'REJECTED'
APPEAL_SUBMITTED = 'APPEAL_SUBMITTED'
APPEAL_APPROVED = 'APPEAL_APPROVED'
APPEAL_DENIED = 'APPEAL_DENIED'
CLOSED = 'CLOSED'
CANCELLED = 'CANCELLED'

TRANSITIONS = {
    DRAFT: {SUBMITTED, CANCELLED},
    SUBMITTED: {UNDER_REVIEW, REJECTED},
    UNDER_REVIEW: {APPROVED, PARTIALLY_APPROVED, DENIED, REJECTED},
    APPROVED: {PAID},
    PARTIALLY_APPROVED: {PAID},
    DENIED: {APPEAL_SUBMITTED, CLOSED},
    APPEAL_SUBMITTED: {APPEAL_APPROVED, APPEAL_DENIED},
    APPEAL_APPROVED: {PAID, CLOSED},
    PAID: set(),
    REJECTED: set(),
    APPEAL_DENIED: set(),
    CLOSED: set(),
    CANCELLED: set(),
}

TERMINAL = frozenset(state for state, targets in TRANSITIONS.items() if not targets)

# Content (codes, amounts, notes) is frozen once the claim is settled.
FROZEN_FOR_EDITS = frozenset({PAID, CLOSED})

# Statuses counted as approved for statistics.
APPROVED_STATES = frozenset({APPROVED, PARTIALLY_APPROVED, PAID})

# Insurer decisions that may carry an approved amount.
DECISION_STATES = frozenset({APPROVED, PARTIALLY_APPROVED, APPEAL_APPROVED})

# Statuses at which an insurer remittance may be posted.
PAYABLE_STATES = frozenset({APPROVED, PARTIALLY_APPROVED, APPEAL_APPROVED, PAID})


def allowed_targets(status):
    return TRANSITIONS.get(status, set())


def can_transition(current, target):
    return target in allowed_targets(current)


def check_transition(current, target, claim_number=''):
    if target not in TRANSITIONS:
        raise StateConflictError(f"Unknown claim status {target!r}.")
    if current in TERMINAL:
        raise StateConflictError(f"Claim {claim_number} is {current} and can no longer change status.")
    if not can_transition(current, target):
        raise StateConflictError(f"Claim {claim_number} cannot move from {current} to {target}.")
