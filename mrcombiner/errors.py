"""Error taxonomy for the combiner.

Every error raised inside one combination run derives from
``CombinerError`` so the orchestrator can catch it at its boundary and
turn it into a failure comment.  ``ConfigurationError`` is the exception:
it is raised before the service starts and ends the process.
"""


class CombinerError(Exception):
    """Base class for all combiner errors."""


class ConfigurationError(CombinerError):
    """Required configuration is missing or invalid (fatal at startup)."""


class AuthorizationError(CombinerError):
    """Inbound webhook failed the shared-secret check."""


class WorkspaceSyncError(CombinerError):
    """An existing workspace could not be fetched/reset to upstream."""


class GitCommandError(CombinerError):
    """A git command exited non-zero."""

    def __init__(self, args: list[str], returncode: int, output: str):
        self.git_args = args
        self.returncode = returncode
        self.output = output.strip()
        super().__init__(
            f"git {' '.join(args)} failed (exit {returncode}): {self.output[:500]}"
        )


class MergeConflictError(CombinerError):
    """Merging a candidate left unmerged paths in the index."""

    def __init__(self, ref: str, paths: list[str]):
        self.ref = ref
        self.paths = paths
        super().__init__(f"merge of {ref} conflicts in: {', '.join(paths)}")


class RemoteCommunicationError(CombinerError):
    """The hosting service could not be reached or answered non-2xx."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class OperationTimeoutError(CombinerError):
    """A git command or API call exceeded its time bound."""
