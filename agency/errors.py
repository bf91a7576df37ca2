"""Exception hierarchy for agency commands."""


class AgencyError(RuntimeError):
    """Base class for every failure reported at the command boundary."""


class ConfigError(AgencyError):
    pass


class NotInRepositoryError(AgencyError):
    def __init__(self, path=None):
        super().__init__("Not in a git repository. Please run this command inside a git repo.")
        self.path = path


class ToolNotInstalledError(AgencyError):
    pass


class GitCommandError(AgencyError):
    """A git subprocess exited non-zero where success was required."""

    def __init__(self, message, result=None):
        detail = (result.stderr or result.stdout) if result is not None else ""
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.result = result


class ResolutionError(AgencyError):
    pass


class NoBaseBranchError(ResolutionError):
    pass


class NoCommonAncestorError(ResolutionError):
    pass


class AmbiguousPatternError(ResolutionError):
    pass


class BranchNotFoundError(AgencyError):
    pass


class SafetyCheckError(AgencyError):
    pass


class RemoteError(AgencyError):
    pass


class RewriteError(AgencyError):
    pass


class MetadataError(AgencyError):
    pass
