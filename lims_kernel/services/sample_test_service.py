"""
SampleTestService -- lifecycle of the per-parameter tests on a sample.

Tests are created for parameters the sample actually requested and then
move along TEST_STATUS_GUARD.  An assigned test may only be worked by its
assignee.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from lims_kernel.domain.dtos import MutationResult, SampleTestState
from lims_kernel.domain.roles import Actor, Role
from lims_kernel.domain.transitions import TEST_STATUS_GUARD, TestStatus
from lims_kernel.exceptions import PolicyDeniedError, PreconditionFailedError
from lims_kernel.logging_config import get_logger
from lims_kernel.models.sample import Sample, SampleTest
from lims_kernel.services.base import BaseService

logger = get_logger("services.sample_test")

TEST_PLANNING_ROLES: frozenset[Role] = frozenset({
    Role.ADMINISTRATOR,
    Role.OPERATIONAL_MANAGER,
    Role.LABORATORY_HEAD,
})


class SampleTestService(BaseService[SampleTest]):

    def create_test(
        self,
        sample_id: UUID,
        actor: Actor,
        parameter_id: int,
        assignee_id: UUID | None = None,
    ) -> MutationResult[SampleTestState]:
        """Create a draft test for one of the sample's requested parameters."""
        if actor.role not in TEST_PLANNING_ROLES:
            raise PolicyDeniedError(actor.role.value, "create a sample test")

        sample = self._load_for_update(Sample, sample_id)
        if parameter_id not in (sample.parameter_ids or []):
            raise PreconditionFailedError(
                str(sample_id), f"parameter {parameter_id} was not requested for this sample",
            )
        existing = self.session.execute(
            select(SampleTest.id).where(
                SampleTest.sample_id == sample.id,
                SampleTest.parameter_id == parameter_id,
                SampleTest.status != TestStatus.CANCELLED.value,
            )
        ).first()
        if existing is not None:
            raise PreconditionFailedError(
                str(sample_id), f"a test for parameter {parameter_id} already exists",
            )

        test = SampleTest(
            sample_id=sample.id,
            parameter_id=parameter_id,
            assignee_id=assignee_id,
            status=TestStatus.DRAFT.value,
            created_by_id=actor.actor_id,
        )
        self.session.add(test)
        self.session.flush()

        audit_id = self._audit(
            actor, "SampleTest", test.id, "SAMPLE_TEST_CREATED", {}, test.audit_snapshot(),
        )
        logger.info(
            "sample_test_created",
            extra={"sample_id": str(sample_id), "parameter_id": parameter_id},
        )
        return MutationResult(test.to_dto(), audit_id)

    def transition_test(
        self,
        test_id: UUID,
        actor: Actor,
        target: TestStatus | str,
    ) -> MutationResult[SampleTestState]:
        """
        Move a test along TEST_STATUS_GUARD.

        ``started_at`` is stamped on entering in_progress; ``completed_at``
        on entering measured or failed.
        """
        target = TestStatus(target)
        test = self._load_for_update(SampleTest, test_id)
        current = TestStatus(test.status)

        TEST_STATUS_GUARD.require(actor.role, current, target)
        if (
            actor.role is Role.ANALYST
            and test.assignee_id is not None
            and actor.actor_id != test.assignee_id
        ):
            raise PolicyDeniedError(
                actor.role.value, f"work on test {test_id} assigned to another analyst",
            )

        before = test.audit_snapshot()
        now = self.clock.now()
        test.status = target.value
        if target is TestStatus.IN_PROGRESS and test.started_at is None:
            test.started_at = now
        if target in (TestStatus.MEASURED, TestStatus.FAILED):
            test.completed_at = now
        test.updated_by_id = actor.actor_id
        self.session.flush()

        audit_id = self._audit(
            actor, "SampleTest", test.id, "SAMPLE_TEST_STATUS_CHANGED",
            before, test.audit_snapshot(),
        )
        logger.info(
            "sample_test_status_changed",
            extra={
                "test_id": str(test_id),
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        return MutationResult(test.to_dto(), audit_id)
