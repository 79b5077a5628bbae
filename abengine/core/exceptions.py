"""abengine exceptions."""


class ABEngineError(Exception):
    """Base exception for all abengine errors."""


class ConfigurationError(ABEngineError):
    """Experiment definition violates a structural invariant."""

    def __init__(self, reason: str, field: str | None = None):
        self.reason = reason
        self.field = field

        if field:
            full_message = f"{reason} (field: {field})"
        else:
            full_message = reason

        super().__init__(full_message)


class NotFoundError(ABEngineError):
    """Experiment does not exist."""

    def __init__(self, experiment_id: str):
        self.experiment_id = experiment_id
        super().__init__(f"Experiment {experiment_id} not found")


class StateTransitionError(ABEngineError):
    """Lifecycle action is not allowed from the current status."""

    def __init__(
        self,
        message: str,
        experiment_id: str | None = None,
        current_status: str | None = None,
        action: str | None = None,
    ):
        self.message = message
        self.experiment_id = experiment_id
        self.current_status = current_status
        self.action = action
        super().__init__(message)


class InvalidOperationError(ABEngineError):
    """Operation is not permitted for the experiment in its current state."""


class StoreError(ABEngineError):
    """Key-value store call failed or timed out."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        key: str | None = None,
    ):
        self.message = message
        self.operation = operation
        self.key = key

        location_parts = []
        if operation:
            location_parts.append(f"Operation: {operation}")
        if key:
            location_parts.append(f"Key: {key}")

        if location_parts:
            full_message = f"{', '.join(location_parts)}: {message}"
        else:
            full_message = message

        super().__init__(full_message)
