"""
tokstat error taxonomy.

Every error is raised at the stage that detects it and aborts the whole run.
There is no per-document skip-and-continue mode.
"""

from typing import Optional


class TokstatError(Exception):
    """Base class for all tokstat failures."""


class InputError(TokstatError):
    """
    The corpus cannot be analyzed: empty batch, a top-level value that is not
    a JSON object, or a document that fails to parse.
    """

    def __init__(self, message: str, document: Optional[str] = None):
        self.document = document
        if document is not None:
            message = f"{message} ({document})"
        super().__init__(message)


class ConfigError(TokstatError):
    """Unknown model id or an invalid custom price."""


class InternalConsistencyError(TokstatError):
    """
    A document disagrees with the schema inferred from it. This is a bug in
    the merge/traversal symmetry, never a property of the input.
    """
