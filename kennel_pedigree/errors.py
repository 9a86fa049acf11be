from __future__ import annotations


class PedigreeError(RuntimeError):
    """
    Base class for errors raised by the pedigree core.
    """


class ValidationError(PedigreeError, ValueError):
    """
    A requested change (or COI request) is inconsistent with the pedigree:
    sex / parent type mismatch, self-reference, descendant-as-ancestor,
    sire == dam. Raised before anything is modified.
    """


class DogNotFound(PedigreeError, LookupError):
    def __init__(self, dog_id: str) -> None:
        super().__init__(f"Dog not found: {dog_id!r}")
        self.dog_id = dog_id


class RegistryError(PedigreeError):
    """
    The registry API (or a local registry file) failed to answer.
    """


class PersistenceError(PedigreeError):
    """
    A mutation's backing write failed. The in-memory change has been rolled
    back; the caller may retry the same operation.
    """

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class StaleSessionError(PedigreeError):
    """
    Fetch results arrived for a chart session that has been closed or
    superseded; they were discarded.
    """
