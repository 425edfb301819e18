"""
errors.py — Error taxonomy for the verdict engine.

  InputError          — malformed caller input (recoverable, caller's fault)
  InvalidPathError    — a category path with no usable segments
  InfrastructureError — a store could not be reached or read; MUST propagate,
                        an empty catalog is not the same thing as "no match"

A save veto is not an exception: it is ConflictResult.can_save == False.
"""


class VerdictEngineError(Exception):
    """Base class for all engine errors."""


class InputError(VerdictEngineError, ValueError):
    pass


class InvalidPathError(InputError):
    def __init__(self, path):
        self.path = path
        super().__init__(f"Invalid category path: {path!r}")


class InfrastructureError(VerdictEngineError):
    def __init__(self, message: str, store: str | None = None):
        self.store = store
        super().__init__(message)
