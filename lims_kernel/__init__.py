"""
LIMS Kernel - sample workflow and approval core

A rules engine for a testing laboratory with:
- Role-gated status machines for samples, intake requests and sample tests
- Ordered, write-once custody checkpoints
- Atomic human-readable sample code allocation
- Quality-cover review and Letter of Order release pipelines
- Full auditability via an append-only, hash-chained audit trail
"""

__version__ = "0.1.0"
