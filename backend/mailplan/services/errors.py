"""
Exception types raised at pipeline stage boundaries.

Step-level failures are captured into ExecutionOutput records rather than
raised; these types cover the cases that end a stage or an agent pipeline.
"""


class ConfigurationError(RuntimeError):
    """A required setting (reply URL/token, tool-server secret, model key) is missing."""


class ChainingError(ValueError):
    """A placeholder argument could not be resolved against earlier step outputs."""

    def __init__(self, step_index: int, message: str) -> None:
        self.step_index = step_index
        super().__init__(message)


class DispatchError(RuntimeError):
    """The reply service rejected the bundle or the final state could not be saved."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
