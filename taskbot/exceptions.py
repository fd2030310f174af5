"""taskbot exceptions."""


class TaskbotError(Exception):
    """Base exception for taskbot."""

    pass


class ConfigError(TaskbotError):
    """Raised when a config file exists but cannot be used."""

    pass


class TriggerParseError(TaskbotError):
    """Raised when a trigger spec can never fire (rejected at job creation)."""

    def __init__(self, trigger_type: str, spec: str, reason: str) -> None:
        self.trigger_type = trigger_type
        self.spec = spec
        self.reason = reason
        super().__init__(f"Invalid {trigger_type} trigger '{spec}': {reason}")


class JobNotFoundError(TaskbotError):
    """Raised when a job id does not resolve to a stored job."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class RunTimeoutError(TaskbotError):
    """Raised when an agent run exceeds its wall-clock limit."""

    def __init__(self, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        super().__init__(f"Run timed out after {timeout_s:g}s")


class AgentAbortedError(TaskbotError):
    """Raised when a tool call is attempted on an aborted execution context."""

    pass


class AgentError(TaskbotError):
    """Raised when the agent cannot produce a result (LLM failure, empty answer)."""

    pass


class ExecutorReplayError(TaskbotError):
    """Raised when a compiled executor fails during replay."""

    def __init__(self, step_index: int, reason: str, detail: str = "") -> None:
        self.step_index = step_index
        self.reason = reason
        self.detail = detail
        msg = f"Executor step {step_index} failed ({reason})"
        super().__init__(f"{msg}: {detail}" if detail else msg)
