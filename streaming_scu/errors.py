"""
Exceptions raised at the boundary of the softmax compute unit model.

The datapath itself never raises: numeric error (quantization, rounding,
table approximation, truncation) is measured, not handled. Only malformed
configuration or invocation is rejected.
"""


class SCUError(Exception):
    """Base class for every error raised by streaming_scu."""


class ConfigError(SCUError, ValueError):
    """Compile-time parameters that the datapath cannot be built with."""


class InvalidInvocationError(SCUError, ValueError):
    """A run was requested with inputs the core does not accept (e.g. zero keys)."""


class ZeroSumError(SCUError, ValueError):
    """The sum of exponentials reached the normalizer as zero."""


class ControllerError(SCUError, RuntimeError):
    """The pipeline controller was asked for a transition its state does not allow."""
