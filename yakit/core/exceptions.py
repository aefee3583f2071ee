"""Engine lifecycle exceptions.

Every error names the operation that failed so the presentation layer can
render a message without knowing where it came from.
"""

UNKNOWN_REASON = "[unknown reason]"


class EngineError(Exception):
    """Base exception for engine lifecycle operations."""

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail or UNKNOWN_REASON
        super().__init__(f"{operation}: {self.detail}")


class TransportError(EngineError):
    """Raised when a network request or download fails."""

    pass


class SubprocessError(EngineError):
    """Raised when a command exits non-zero or prints unusable output."""

    def __init__(
        self,
        operation: str,
        detail: str = "",
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(operation, detail or stderr.strip() or stdout.strip())


class PreconditionError(EngineError):
    """Raised before an operation when its prerequisites are not met."""

    pass


class EngineNotInstalledError(PreconditionError):
    """Raised when the engine binary is missing from the install path."""

    pass


class PrivilegeError(EngineError):
    """Raised when elevation is declined or the elevated command fails."""

    pass


class PortInUseError(EngineError):
    """Raised when a launched engine cannot bind its randomly chosen port."""

    def __init__(self, port: int, detail: str = ""):
        self.port = port
        super().__init__("start engine", detail or f"port {port} is already in use")


class InvalidProfileError(EngineError):
    """Raised when a remote auth profile lacks a host or a port."""

    pass
