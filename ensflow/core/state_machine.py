# Flow types (closed set)
REGISTRATION = "registration"
BRIDGE = "bridge"
SUBDOMAIN = "subdomain"
TRANSFER = "transfer"
RENEW = "renew"

FLOW_TYPES = (REGISTRATION, BRIDGE, SUBDOMAIN, TRANSFER, RENEW)


# Shared statuses

# Awaiting a form answer before anything is funded or signed
AWAITING_WALLET = "awaiting_wallet"
AWAITING_DURATION = "awaiting_duration"
AWAITING_CONFIRMATION = "awaiting_confirmation"

# Funded, commitment computed, commit not yet requested
INITIATED = "initiated"

# A signing request for step N is outstanding
STEP1_PENDING = "step1_pending"
STEP2_PENDING = "step2_pending"
STEP3_PENDING = "step3_pending"

# Step N landed; the next step has not been requested yet
STEP1_COMPLETE = "step1_complete"
STEP2_COMPLETE = "step2_complete"

COMPLETE = "complete"
FAILED = "failed"


# Bridge statuses
PENDING = "pending"
BRIDGING = "bridging"
COMPLETED = "completed"


TERMINAL = {
    REGISTRATION: {COMPLETE, FAILED},
    SUBDOMAIN: {COMPLETE, FAILED},
    TRANSFER: {COMPLETE, FAILED},
    RENEW: {COMPLETE, FAILED},
    BRIDGE: {COMPLETED, FAILED},
}

INITIAL = {
    REGISTRATION: {AWAITING_WALLET, INITIATED},
    BRIDGE: {PENDING},
    SUBDOMAIN: {STEP1_PENDING},
    TRANSFER: {AWAITING_CONFIRMATION},
    RENEW: {AWAITING_DURATION, AWAITING_CONFIRMATION},
}

# FAILED is reachable from every non-terminal status and is added below
TRANSITIONS = {
    REGISTRATION: {
        AWAITING_WALLET: {INITIATED},
        INITIATED: {STEP1_PENDING},
        STEP1_PENDING: {STEP1_COMPLETE},
        # expired commitment restarts from a fresh commitment
        STEP1_COMPLETE: {STEP2_PENDING, INITIATED},
        STEP2_PENDING: {COMPLETE, INITIATED},
    },
    BRIDGE: {
        PENDING: {BRIDGING},
        BRIDGING: {COMPLETED},
    },
    SUBDOMAIN: {
        STEP1_PENDING: {STEP1_COMPLETE},
        STEP1_COMPLETE: {STEP2_PENDING},
        STEP2_PENDING: {STEP2_COMPLETE},
        STEP2_COMPLETE: {STEP3_PENDING, COMPLETE},
        STEP3_PENDING: {COMPLETE},
    },
    TRANSFER: {
        AWAITING_CONFIRMATION: {STEP1_PENDING},
        STEP1_PENDING: {COMPLETE},
    },
    RENEW: {
        AWAITING_DURATION: {AWAITING_CONFIRMATION},
        AWAITING_CONFIRMATION: {STEP1_PENDING},
        STEP1_PENDING: {COMPLETE},
    },
}

for _flow_type, _table in TRANSITIONS.items():
    for _targets in _table.values():
        _targets.add(FAILED)


def is_terminal(flow_type: str, status: str) -> bool:
    return status in TERMINAL.get(flow_type, set())


def is_initial(flow_type: str, status: str) -> bool:
    return status in INITIAL.get(flow_type, set())


def can_transition(flow_type: str, current: str, target: str) -> bool:
    return target in TRANSITIONS.get(flow_type, {}).get(current, set())


def step_pending(step: int) -> str:
    return f"step{int(step)}_pending"


def step_complete(step: int) -> str:
    return f"step{int(step)}_complete"
