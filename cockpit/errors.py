"""Exception types shared by the CLI side of cockpit."""

from __future__ import annotations


class CockpitError(RuntimeError):
    """Base class; the CLI prints the message and exits with status 1."""


class CommandError(CockpitError):
    def __init__(self, command: str, code: int, output: str = ""):
        self.command = command
        self.code = code
        self.output = output
        suffix = f"\n\n{output}" if output else ""
        super().__init__(f"Command failed ({code}): {command}{suffix}")


class ProvisionError(CockpitError):
    pass


class SshKeyError(ProvisionError):
    pass


class BindingError(CockpitError):
    pass


class StaleBindingError(BindingError):
    pass


class PipelineInterrupted(CockpitError):
    """Raised when a signal cancels a pipeline run."""

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Interrupted by signal {signum}")

    @property
    def exit_code(self) -> int:
        return 128 + self.signum


class ScriptValueError(ValueError):
    pass
