"""Exception hierarchy for the profile diagnostic engine.

Structural failures (missing section, malformed topology, broken tree)
abort the analysis. Value-level failures are raised by the value parser
but caught by the specialized parsers, which leave the field absent.
"""

from __future__ import annotations

from typing import Optional


class ProfileError(Exception):
    """Base class for all profile engine errors."""


class ProfileParseError(ProfileError):
    """The profile document could not be turned into an operator tree."""


class SectionNotFound(ProfileParseError):
    """A required section is absent from the profile document."""

    def __init__(self, section: str):
        self.section = section
        super().__init__(f"Section not found: {section}")


class TopologyError(ProfileParseError):
    """The embedded topology JSON is malformed or inconsistent."""


class TreeError(ProfileParseError):
    """The operator tree could not be assembled from the operator blocks."""

    def __init__(self, message: str, node_id: Optional[int] = None):
        self.node_id = node_id
        super().__init__(message)


class ValueParseError(ProfileParseError):
    """A scalar token (number, duration, byte size) is malformed."""

    kind = "value"

    def __init__(self, text: str):
        self.text = text
        super().__init__(f"Cannot parse {self.kind}: {text!r}")


class NumberParseError(ValueParseError):
    kind = "number"


class DurationParseError(ValueParseError):
    kind = "duration"


class BytesParseError(ValueParseError):
    kind = "byte size"


class AuditLogUnavailable(ProfileError):
    """The audit log for a cluster could not be read."""

    def __init__(self, cluster_id: str, reason: str = ""):
        self.cluster_id = cluster_id
        message = f"Audit log unavailable for cluster {cluster_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
