"""
Domain exceptions for the task lifecycle and star economy.
Each exception carries the HTTP status and machine-readable code the API
responds with, so routes can let them propagate to the exception handler.
"""


class StarEngineError(Exception):
    """Base exception for the star engine"""
    status_code = 400
    code = "star_engine_error"

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self)}


class InvalidRule(StarEngineError):
    """Raised when a recurrence rule is malformed"""
    status_code = 422
    code = "invalid_rule"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid recurrence rule: {reason}")


class TaskNotFound(StarEngineError):
    """Raised when a task is missing or archived"""
    status_code = 404
    code = "task_not_found"

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task with ID {task_id} not found")


class CompletionNotFound(StarEngineError):
    """Raised when a task completion is not found"""
    status_code = 404
    code = "completion_not_found"

    def __init__(self, completion_id: int):
        self.completion_id = completion_id
        super().__init__(f"Completion with ID {completion_id} not found")


class ChildNotFound(StarEngineError):
    """Raised when a child is not found"""
    status_code = 404
    code = "child_not_found"

    def __init__(self, child_id: int):
        self.child_id = child_id
        super().__init__(f"Child with ID {child_id} not found")


class RewardNotFound(StarEngineError):
    """Raised when a reward is missing or inactive"""
    status_code = 404
    code = "reward_not_found"

    def __init__(self, reward_id: int):
        self.reward_id = reward_id
        super().__init__(f"Reward with ID {reward_id} not found")


class RequestNotFound(StarEngineError):
    """Raised when a reward request is not found"""
    status_code = 404
    code = "request_not_found"

    def __init__(self, request_id: int):
        self.request_id = request_id
        super().__init__(f"Reward request with ID {request_id} not found")


class TaskNotAssigned(StarEngineError):
    """Raised when a child completes a task not assigned to them"""
    status_code = 403
    code = "task_not_assigned"

    def __init__(self, task_id: int, child_id: int):
        self.task_id = task_id
        self.child_id = child_id
        super().__init__(f"Task {task_id} is not assigned to child {child_id}")


class TaskNotDue(StarEngineError):
    """Raised when a task is not due on the requested occurrence"""
    status_code = 409
    code = "task_not_due"

    def __init__(self, task_id: int, reason: str):
        self.task_id = task_id
        self.reason = reason
        super().__init__(f"Task {task_id} is not due: {reason}")


class AlreadyCompleted(StarEngineError):
    """Raised when an occurrence has already been claimed"""
    status_code = 409
    code = "already_completed"

    def __init__(self, task_id: int, child_id: int, occurrence: str):
        self.task_id = task_id
        self.child_id = child_id
        self.occurrence = occurrence
        super().__init__(
            f"Task {task_id} already completed by child {child_id} for {occurrence}"
        )


class NotPending(StarEngineError):
    """Raised when a transition is requested from a state that forbids it"""
    status_code = 409
    code = "not_pending"

    def __init__(self, kind: str, record_id: int, status: str, action: str | None = None):
        self.kind = kind
        self.record_id = record_id
        self.status = status
        self.action = action
        if action is None:
            message = f"{kind} {record_id} is {status}, not pending"
        else:
            message = f"{kind} {record_id} is {status}; cannot {action}"
        super().__init__(message)


class InvalidStarAmount(StarEngineError):
    """Raised when a cost or price is not a positive number of stars"""
    status_code = 422
    code = "invalid_star_amount"

    def __init__(self, amount: int):
        self.amount = amount
        super().__init__(f"Star amount must be positive, got {amount}")


class StarsNotSet(StarEngineError):
    """Raised when a custom reward is approved before a parent priced it"""
    status_code = 409
    code = "stars_not_set"

    def __init__(self, request_id: int):
        self.request_id = request_id
        super().__init__(f"Custom reward request {request_id} has no star price yet")


class InsufficientStars(StarEngineError):
    """Raised when a debit would make a balance negative.

    Attributes:
        child_id: The child whose balance was checked
        star_type: Balance partition that was checked
        current_balance: Balance at the time of the check
        requested_amount: Stars the debit asked for
        request_id: Reward request recorded as rejected, when there is one
    """
    status_code = 409
    code = "insufficient_stars"

    def __init__(
        self,
        child_id: int,
        star_type: str,
        current_balance: int,
        requested_amount: int,
        request_id: int | None = None,
    ):
        self.child_id = child_id
        self.star_type = star_type
        self.current_balance = current_balance
        self.requested_amount = requested_amount
        self.shortfall = requested_amount - current_balance
        self.request_id = request_id
        super().__init__(
            f"Insufficient {star_type} stars for child {child_id}: "
            f"balance {current_balance}, requested {requested_amount}"
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            balance=self.current_balance,
            requested=self.requested_amount,
            shortfall=self.shortfall,
            request_id=self.request_id,
        )
        return data
