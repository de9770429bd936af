"""
Document generation collaborator.

Rendering certificates is outside the kernel.  ``QualityCoverService``
calls ``generate_certificate`` exactly once when a cover reaches
``validated``; whatever it raises is stored on the cover and returned to
the caller, and the validation stands.
"""

from typing import Protocol, runtime_checkable
from uuid import UUID


@runtime_checkable
class DocumentGenerator(Protocol):
    def generate_certificate(self, sample_id: UUID) -> str:
        """Render the certificate for ``sample_id`` and return its document id."""
        ...
