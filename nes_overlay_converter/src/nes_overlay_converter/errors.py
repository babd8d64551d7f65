"""Exception types shared by the converter modules."""


class ConversionError(Exception):
    """Custom exception for conversion errors."""


class SolverConfigurationError(ConversionError):
    """Raised when the solver executable, its templates or the work path are unusable."""


class SolutionParseError(ConversionError):
    """Raised when a solver solution line does not match the expected schema."""


class InconsistentLayersError(ConversionError):
    """Raised when a parsed palette assignment does not cover the pixels of its layer."""
