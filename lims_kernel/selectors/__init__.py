"""
Read-only query services (selectors) for the LIMS kernel.
"""

from lims_kernel.selectors.base import BaseSelector
from lims_kernel.selectors.document_selector import (
    LetterOfOrderSelector,
    PreApprovalSelector,
    QualityCoverSelector,
)
from lims_kernel.selectors.sample_selector import SampleSelector

__all__ = [
    "BaseSelector",
    "LetterOfOrderSelector",
    "PreApprovalSelector",
    "QualityCoverSelector",
    "SampleSelector",
]
