"""Exceptions raised by layerwise.

They subclass the built-in exception a caller would otherwise expect, so
``except ValueError`` keeps working.
"""


class ShapeMismatchError(ValueError):
    """Incompatible tensor or weight shapes."""


class NotCompiledError(RuntimeError):
    """Training or evaluation was requested before ``compile``."""


class UnsupportedLayerError(ValueError):
    """A serialized layer class has no counterpart in layerwise."""


class ModelClosedError(RuntimeError):
    """The model's engine resources were already released."""
