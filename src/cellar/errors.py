"""Failure kinds raised by the process engine and the operation layer."""


class BrewError(Exception):
    """Base for every brew invocation failure. Callers match on the subclass."""

    @property
    def message(self) -> str:
        return str(self)


class NotFound(BrewError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Homebrew not found at {path}. Please install Homebrew first.")


class NonZeroExit(BrewError):
    def __init__(self, code: int, stderr: str):
        self.code = code
        self.stderr = stderr
        super().__init__(f"brew exited with status {code}: {stderr.strip()}")


class DecodeFailure(BrewError):
    def __init__(self, context: str):
        self.context = context
        super().__init__(f"Failed to parse brew output: {context}")


class Timeout(BrewError):
    def __init__(self, seconds: float):
        self.seconds = seconds
        super().__init__(f"brew command timed out after {seconds:g}s")


class Cancelled(BrewError):
    def __init__(self):
        super().__init__("Operation was cancelled.")
