"""
Exceptions raised outside the pure conversion core.

The validator, converter and generators report expected defects as
diagnostics on their result objects; these exceptions cover parsing,
the Nomad HTTP API and deployment.
"""
from typing import Optional


class C2NError(Exception):
    """Base class for all c2n errors."""


class ComposeParseError(C2NError):
    """The input is not a well-formed Compose document."""


class InterpolationError(C2NError):
    """A required variable (``${VAR:?message}``) is unset."""

    def __init__(self, variable: str, message: Optional[str] = None):
        self.variable = variable
        text = f"required variable {variable} is missing a value"
        super().__init__(f"{text}: {message}" if message else text)


class NomadAPIError(C2NError):
    """The Nomad HTTP API answered with an error status."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Nomad API error {status_code}: {message}")


class NomadConnectionError(C2NError):
    """The Nomad HTTP API could not be reached."""


class DeploymentError(C2NError):
    """A submitted job failed or did not become healthy in time."""
