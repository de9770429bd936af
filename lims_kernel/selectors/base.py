"""
Module: lims_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.  Selectors
    form the "Q" side of the kernel, answering state and "what may this role
    do next" questions without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    the pure domain layer.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: Selectors accept a Session from the caller but MUST NOT
      call session.add(), session.delete(), session.commit(), or session.flush().
    - DTO return convention: Selectors return frozen dataclasses, never raw ORM
      instances.
    - Session ownership: the caller owns the session and its transaction scope.

Failure modes:
    - NotFoundError when a ``get_state`` lookup names an unknown entity.
"""

from abc import ABC
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from lims_kernel.db.base import Base
from lims_kernel.exceptions import NotFoundError

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session

    def _get_or_raise(self, model: type[ModelType], entity_id: UUID) -> ModelType:
        row = self.session.get(model, entity_id)
        if row is None:
            raise NotFoundError(model.__name__, str(entity_id))
        return row
