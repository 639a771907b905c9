"""
Error taxonomy for the analysis pipeline.

Every error raised by game_mentor derives from MentorError so callers can
catch the whole family at the invocation boundary. None of these carry retry
semantics; callers decide whether to re-run the pipeline.
"""

from typing import Optional


class MentorError(Exception):
    """Base class for all game_mentor errors."""


class ValidationError(MentorError):
    """Malformed request or argument. Raised before any I/O."""


class ConfigurationError(MentorError):
    """Unknown provider kind, missing API key or unreadable configuration."""


class ProviderError(MentorError):
    """Upstream LLM, search or fetch failure."""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage

    def with_stage(self, stage: str) -> "ProviderError":
        """Return a copy of this error attributed to a pipeline stage."""
        message = self.args[0] if self.args else ""
        error = ProviderError(message, stage=stage)
        error.__cause__ = self.__cause__ or self
        return error

    def __str__(self) -> str:
        message = super().__str__()
        if self.stage:
            return f"[{self.stage}] {message}"
        return message


class ParseError(MentorError):
    """Structured model output did not match the expected shape."""


class MissingRuleFileError(MentorError):
    """A named rule file was requested but could not be located."""

    def __init__(self, rule_file: str, search_root: str):
        super().__init__(f"Rule file '{rule_file}.json' not found under {search_root}")
        self.rule_file = rule_file
        self.search_root = search_root


class AnalysisCancelledError(MentorError):
    """Cooperative cancellation was observed. Distinct from a failure."""


class UnknownJobError(MentorError, KeyError):
    """A progress job tag does not exist in the progress set."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class DuplicateJobError(MentorError):
    """A progress job tag is already present in the progress set."""


class InvalidTransitionError(MentorError):
    """A job was moved out of a terminal state."""
