"""Split test error taxonomy.

Every error carries a reason code so callers never see a generic failure.
State errors mean the operation no longer applies and must not be retried
blindly; ConcurrencyExhausted and DeploymentFailed are transient.
"""


class SplitTestError(Exception):
    """Base class for all split test errors."""

    code = "SPLIT_TEST_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SplitTestError):
    """Input rejected before any state change."""

    code = "VALIDATION_ERROR"
    status_code = 422


class ExperimentNotFound(SplitTestError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, split_test_id):
        super().__init__(f"Split test {split_test_id} not found")
        self.split_test_id = split_test_id


class ParticipantNotFound(SplitTestError):
    code = "PARTICIPANT_NOT_FOUND"
    status_code = 404

    def __init__(self, split_test_id, enrolment_id: str):
        super().__init__(
            f"Enrolment {enrolment_id} was never allocated in split test {split_test_id}"
        )
        self.split_test_id = split_test_id
        self.enrolment_id = enrolment_id


class InvalidTransition(SplitTestError):
    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, current, target):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(f"Cannot move split test from {current_value} to {target_value}")
        self.current = current
        self.target = target


class ExperimentNotActive(SplitTestError):
    code = "EXPERIMENT_NOT_ACTIVE"
    status_code = 409

    def __init__(self, split_test_id, status):
        status_value = getattr(status, "value", status)
        super().__init__(f"Split test {split_test_id} is not active (status: {status_value})")
        self.split_test_id = split_test_id
        self.status = status


class SampleExhausted(SplitTestError):
    code = "SAMPLE_EXHAUSTED"
    status_code = 409

    def __init__(self, split_test_id, target_sample_size: int):
        super().__init__(
            f"Split test {split_test_id} has reached its target sample of {target_sample_size}"
        )
        self.split_test_id = split_test_id
        self.target_sample_size = target_sample_size


class NotDeployable(SplitTestError):
    code = "NOT_DEPLOYABLE"
    status_code = 409


class ConcurrencyExhausted(SplitTestError):
    """Optimistic update kept conflicting after the bounded number of retries."""

    code = "CONCURRENCY_EXHAUSTED"
    status_code = 503

    def __init__(self, attempts: int):
        super().__init__(f"Gave up after {attempts} conflicting update attempts")
        self.attempts = attempts


class DeploymentFailed(SplitTestError):
    """The content system did not acknowledge a deployment request."""

    code = "DEPLOYMENT_FAILED"
    status_code = 502
