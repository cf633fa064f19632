"""Error taxonomy for test execution and debugging."""


class TestExplorerError(Exception):
    """Base exception for all runtime core errors."""

    __test__ = False


class ProcessLaunchError(TestExplorerError):
    """Raised when the operating system cannot start a process."""

    def __init__(self, command: str, cause: OSError) -> None:
        self.command = command
        self.cause = cause
        super().__init__(f"Failed to start '{command}': {cause}")


class BuildFailedError(TestExplorerError):
    """Raised when a build exits non-zero and produced nothing usable."""

    def __init__(self, project: str, exit_code: int) -> None:
        self.project = project
        self.exit_code = exit_code
        super().__init__(f"Build of {project} failed with exit code {exit_code}")


class ResultLogNotFoundError(TestExplorerError):
    """Raised when no result log matches the expected prefix."""


class ResultLogParseError(TestExplorerError):
    """Raised when a result log cannot be read or is malformed."""


class ReadinessTimeoutError(TestExplorerError):
    """Raised when a launched process never signals it is ready for attach."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            f"Test process did not start within {timeout:g} seconds "
            "(no debugger readiness signal)"
        )


class ProcessExitedError(TestExplorerError):
    """Raised when a process exits before signalling readiness."""

    def __init__(self, exit_code: int | None) -> None:
        self.exit_code = exit_code
        super().__init__(
            f"Test process did not start: exited with code {exit_code} "
            "before a debugger could attach"
        )


class DebugAttachError(TestExplorerError):
    """Raised when the external debugger fails to attach."""


class ProtocolFramingError(TestExplorerError):
    """Raised when a debug adapter message has malformed framing."""
