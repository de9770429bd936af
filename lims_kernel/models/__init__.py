"""SQLAlchemy ORM models for the LIMS kernel."""

from lims_kernel.models.audit_record import AuditRecord
from lims_kernel.models.letter_of_order import (
    LetterOfOrder,
    LetterOfOrderSample,
    LetterOfOrderSignature,
    PreApproval,
)
from lims_kernel.models.quality_cover import QualityCover
from lims_kernel.models.sample import Sample, SampleTest
from lims_kernel.models.sample_id import (
    ChangeRequestStatus,
    SampleIdChangeRequest,
    SampleIdCounter,
)

__all__ = [
    "AuditRecord",
    "ChangeRequestStatus",
    "LetterOfOrder",
    "LetterOfOrderSample",
    "LetterOfOrderSignature",
    "PreApproval",
    "QualityCover",
    "Sample",
    "SampleIdChangeRequest",
    "SampleIdCounter",
    "SampleTest",
]
