"""Exception types raised by contextkeeper."""


class ContextKeeperError(Exception):
    """Base class for contextkeeper failures."""


class TransportError(ContextKeeperError):
    """Raised when conversation history cannot be retrieved."""


class StoreError(ContextKeeperError):
    """Raised when the object store rejects a read or write."""


class AnalysisError(ContextKeeperError):
    """Raised when conversation analysis fails on every candidate model."""

    def __init__(self, message: str, attempted: list[str] | None = None):
        self.attempted = list(attempted or [])
        super().__init__(message)


class ModelIncompatibleError(ContextKeeperError):
    """A model cannot honor a request (e.g. structured JSON output)."""

    def __init__(self, model: str, detail: str = ""):
        self.model = model
        self.detail = detail
        super().__init__(f"{model}: {detail}" if detail else model)


class WiringError(ContextKeeperError):
    """Raised when a component is used before the wiring phase completed."""
