"""
Error taxonomy for the geo graph engine.

  SchemaError       malformed or structurally invalid document
  ReferentialError  a slug is referenced but never defined, or defined twice
  GeoInputError     a required input file is absent or unparseable
  TopologyWarning   informational graph finding (never raised)

Validation passes collect every violation before raising, so one error
carries the complete problem set for that pass.
"""


class GeoError(Exception):
    """Base class for engine errors."""


class _ViolationError(GeoError):
    label = "violation"

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        count = len(self.violations)
        head = "; ".join(self.violations[:5])
        more = f" (+{count - 5} more)" if count > 5 else ""
        super().__init__(f"{count} {self.label}(s): {head}{more}")


class SchemaError(_ViolationError):
    label = "schema violation"


class ReferentialError(_ViolationError):
    label = "referential violation"


class GeoInputError(GeoError, OSError):
    """A required input file is missing or could not be parsed."""

    def __init__(self, path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")


class TopologyWarning(UserWarning):
    """Category tag for cross-cluster, reciprocity and cluster-size findings."""
