"""
Custom exceptions for plugin-testkit with helpful error messages.
"""

from rich.markup import escape


class PluginTestkitError(Exception):
    """Base exception for plugin-testkit errors."""

    def __init__(self, message: str, suggestion: str = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.message)

    def __str__(self):
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class WorkspaceError(PluginTestkitError):
    """Errors related to workspace management."""

    pass


class WorkspaceNotFoundError(WorkspaceError):
    """Workspace not found or not initialized."""

    def __init__(self, path: str = None):
        message = "Not in a plugin-testkit workspace."
        if path:
            message = f"No plugin-testkit workspace found at: {path}"

        suggestion = (
            "Initialize a new workspace with:\n"
            "  plugin-testkit init <workspace-dir>\n\n"
            "Or navigate to an existing workspace directory."
        )
        super().__init__(message, suggestion)


class ConfigurationError(PluginTestkitError):
    """Configuration file errors."""

    pass


class InvalidConfigError(ConfigurationError):
    """Configuration file is invalid."""

    def __init__(self, error_details: str):
        message = f"Invalid configuration file: {error_details}"

        suggestion = (
            "Fix the plugin-testkit.yaml file.\n"
            "You can regenerate the default configuration:\n"
            "  mv plugin-testkit.yaml plugin-testkit.yaml.backup\n"
            "  plugin-testkit init .\n\n"
            "Then merge your settings back from the backup."
        )
        super().__init__(message, suggestion)


class ExternalToolError(PluginTestkitError):
    """An external binary (scaffolder, make, kubectl, kind) exited non-zero."""

    def __init__(self, command: list[str], returncode: int, output: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.output = output

        message = f"Command failed with exit code {returncode}: {' '.join(self.command)}"
        if output.strip():
            message += f"\n\nOutput:\n{output.rstrip()}"

        suggestion = None
        if returncode == 127:
            suggestion = (
                f"The binary '{self.command[0]}' was not found.\n"
                "Check that it is installed and on your PATH."
            )
        elif returncode == 126:
            suggestion = (
                f"The binary '{self.command[0]}' could not be executed.\n"
                "Check its file permissions."
            )
        super().__init__(message, suggestion)


class MutationError(PluginTestkitError):
    """Errors raised while mutating generated sources."""

    pass


class MutationAnchorNotFoundError(MutationError):
    """Anchor text was absent from, or ambiguous in, the target file."""

    def __init__(self, path: str, anchor: str, count: int = 0):
        self.path = path
        self.anchor = anchor
        self.count = count

        if count == 0:
            message = f"Content not found in {path}: {anchor!r}"
        else:
            message = f"Anchor matched {count} times in {path} (expected exactly one): {anchor!r}"

        suggestion = (
            "The scaffolded file does not look like the template the mutation was\n"
            "written against. Check the scaffolding tool version and plugin selection,\n"
            "or regenerate the sample from scratch."
        )
        super().__init__(message, suggestion)


class MutationStepError(MutationError):
    """A named sample mutation stage failed."""

    def __init__(self, sample: str, step: str, cause: Exception):
        self.sample = sample
        self.step = step
        self.cause = cause
        message = (
            f"Mutation step '{step}' failed for sample {sample}: "
            f"{getattr(cause, 'message', cause)}"
        )
        super().__init__(message, getattr(cause, "suggestion", None))


class SampleError(PluginTestkitError):
    """Errors related to sample descriptors and scaffolding."""

    pass


class InvalidSampleError(SampleError):
    """Sample descriptor is invalid."""

    def __init__(self, name: str, reason: str):
        message = f"Invalid sample '{name}': {reason}"
        suggestion = (
            "Sample names are used as directory names and Kubernetes name prefixes.\n"
            "Use lowercase letters, digits and '-', starting and ending with an\n"
            "alphanumeric character (e.g. memcached-operator)."
        )
        super().__init__(message, suggestion)


class SampleNotFoundError(SampleError):
    """Sample name not found in configuration or built-in catalog."""

    def __init__(self, name: str, available: list[str] = None):
        message = f"Sample '{name}' not found."
        suggestion = None
        if available:
            sample_list = "\n  - ".join(available)
            suggestion = f"Available samples:\n  - {sample_list}"
        super().__init__(message, suggestion)


class SampleGenerationError(SampleError):
    """A scaffolding phase failed for a sample."""

    def __init__(self, sample: str, phase: str, cause: Exception):
        self.sample = sample
        self.phase = phase
        self.cause = cause
        message = (
            f"Error in {phase} generation for sample {sample}: "
            f"{getattr(cause, 'message', cause)}"
        )
        super().__init__(message, getattr(cause, "suggestion", None))


class ClusterError(PluginTestkitError):
    """Errors related to cluster interaction."""

    pass


class VersionParseError(ClusterError):
    """Structured version output could not be parsed."""

    def __init__(self, error_details: str):
        message = f"Failed to parse cluster version: {error_details}"
        suggestion = (
            "Check that kubectl can reach the cluster:\n"
            "  kubectl version -o json"
        )
        super().__init__(message, suggestion)


class ClusterConditionTimeoutError(ClusterError):
    """A polled cluster condition was not met within its timeout."""

    def __init__(self, description: str, timeout: float, last_error: Exception = None):
        self.description = description
        self.timeout = timeout
        self.last_error = last_error

        message = f"Timed out after {timeout:g}s waiting for {description}"
        if last_error is not None:
            message += f": {getattr(last_error, 'message', last_error)}"
        super().__init__(message)


class LifecycleError(PluginTestkitError):
    """Errors raised by the cluster lifecycle orchestrator."""

    pass


class LifecycleTransitionError(LifecycleError):
    """An illegal lifecycle state transition was requested."""

    def __init__(self, current: str, requested: str):
        message = f"Illegal lifecycle transition: {current} -> {requested}"
        super().__init__(message)


class LifecycleStageError(LifecycleError):
    """A lifecycle stage failed for a sample."""

    def __init__(self, sample: str, stage: str, cause: Exception):
        self.sample = sample
        self.stage = stage
        self.cause = cause
        message = f"Stage '{stage}' failed for sample {sample}: {getattr(cause, 'message', cause)}"
        super().__init__(message, getattr(cause, "suggestion", None))


def format_error_for_cli(error: Exception) -> str:
    """
    Format an exception for CLI display with helpful information.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    if isinstance(error, PluginTestkitError):
        output = f"[red]Error:[/red] {escape(error.message)}"
        if error.suggestion:
            output += f"\n\n[yellow]{escape(error.suggestion)}[/yellow]"
        return output
    else:
        return f"[red]Error:[/red] {escape(str(error))}"
