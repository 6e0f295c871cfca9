class FlowError(Exception):
    """Base class for orchestration errors."""


class AlreadyActive(FlowError):
    def __init__(self, user_id: str, thread_id: str, status: str = ""):
        super().__init__(f"flow already active for {user_id}:{thread_id} ({status})")
        self.user_id = user_id
        self.thread_id = thread_id
        self.status = status


class FlowNotFound(FlowError):
    pass


class InvalidTransition(FlowError):
    def __init__(self, flow_type: str, current: str, target: str):
        super().__init__(f"{flow_type}: {current} -> {target} not allowed")
        self.flow_type = flow_type
        self.current = current
        self.target = target


class IntegrityViolation(FlowError):
    pass


class CorrelationError(FlowError):
    """Raised when an interaction response cannot be matched to a live request."""


class Expired(CorrelationError):
    pass


class Forbidden(CorrelationError):
    pass


class SignerMismatch(FlowError):
    def __init__(self, owner: str, signer: str):
        super().__init__(f"commitment owner {owner} != signer {signer}")
        self.owner = owner
        self.signer = signer


class ExternalServiceError(FlowError):
    def __init__(self, service: str, detail: str = ""):
        super().__init__(f"{service}: {detail}" if detail else service)
        self.service = service
        self.detail = detail
