"""Configuration for test execution and debugging."""

from pydantic import BaseModel, Field


class ExplorerConfig(BaseModel):
    """Configuration shared by the run and debug orchestrators."""

    dotnet_path: str = "dotnet"
    configuration: str = "Debug"
    readiness_timeout: float = Field(default=30.0, gt=0)
    result_wait_timeout: float = Field(default=10.0, ge=0)
    debugger_type: str = "coreclr"
    session_name_prefix: str = "Test Explorer"
    # Fires inside the test framework's own init code on every attach
    suppressed_exception_type: str = "System.IO.FileNotFoundException"
    wait_for_debugger_flag: str = "-waitForDebugger"
    direct_ready_phrase: str = "Waiting for debugger to attach"
    results_dir_prefix: str = "test-results-"
