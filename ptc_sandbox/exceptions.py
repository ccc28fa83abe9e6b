"""Exception hierarchy for the orchestration sandbox"""


class SandboxError(Exception):
    """Base class for sandbox related errors"""
    pass


class SandboxBusyError(SandboxError):
    """An evaluator was asked to run a script while another run is active"""
    pass


class CapabilityInitializationError(SandboxError):
    """A bridged capability source could not be initialized"""
    def __init__(self, source_name: str, message: str, original_error: Exception | None = None):
        self.source_name = source_name
        self.original_error = original_error
        super().__init__(f"Capability source '{source_name}' failed to initialize: {message}")


class CapabilityExecutionError(SandboxError):
    """A single capability call failed"""
    def __init__(self, capability_name: str, message: str, original_error: Exception | None = None):
        self.capability_name = capability_name
        self.original_error = original_error
        super().__init__(f"Capability '{capability_name}' execution failed: {message}")


class SerializationError(SandboxError):
    """A script output could not be represented as JSON"""
    def __init__(self, value_type: str, message: str):
        self.value_type = value_type
        super().__init__(f"Cannot serialize value of type {value_type}: {message}")


class TimeoutError(SandboxError):
    """Execution exceeded its wall-clock budget"""
    def __init__(self, timeout_seconds: float, operation: str = "Script execution", run=None):
        self.timeout_seconds = timeout_seconds
        self.operation = operation
        self.run = run
        super().__init__(f"{operation} timed out after {timeout_seconds} seconds")


class ScriptError(SandboxError):
    """An orchestration script failed to compile, was rejected, or raised"""
    def __init__(self, message: str, run=None, original_error: BaseException | None = None):
        self.run = run
        self.original_error = original_error
        super().__init__(message)

    @property
    def trace(self) -> list:
        """Records completed before the failure, kept for diagnostics"""
        return list(self.run.trace) if self.run is not None else []
