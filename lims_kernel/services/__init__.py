"""
Mutating services for the LIMS kernel.

Every service takes the caller's Session, flushes but never commits, and
returns a ``MutationResult`` carrying the new state and the id of the audit
record written for the change.
"""

from lims_kernel.services.audit_trail import AuditSettings, AuditTrace, AuditTrail
from lims_kernel.services.base import BaseService
from lims_kernel.services.custody_service import CustodyService
from lims_kernel.services.document_generation import DocumentGenerator
from lims_kernel.services.intake_service import IntakeService
from lims_kernel.services.letter_of_order_service import LetterOfOrderService
from lims_kernel.services.quality_cover_service import QualityCoverService
from lims_kernel.services.sample_id_service import SampleIdService
from lims_kernel.services.sample_service import SampleService
from lims_kernel.services.sample_test_service import SampleTestService
from lims_kernel.services.sequence_allocator import AllocatorSettings, SampleIdAllocator

__all__ = [
    "AllocatorSettings",
    "AuditSettings",
    "AuditTrace",
    "AuditTrail",
    "BaseService",
    "CustodyService",
    "DocumentGenerator",
    "IntakeService",
    "LetterOfOrderService",
    "QualityCoverService",
    "SampleIdAllocator",
    "SampleIdService",
    "SampleService",
    "SampleTestService",
]
