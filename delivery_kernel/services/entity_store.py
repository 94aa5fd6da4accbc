"""
EntityStore -- identifier-keyed persistence with conditional writes.

Responsibility:
    The persistence interface every lifecycle service uses: ``get``,
    ``create``, ``conditional_update`` and ``delete``, plus the lookups
    that stand in for object pointers between milestones, deliverables,
    certificates and variations (``deliverables_for``,
    ``certificate_for``, ``variations_impacting``).

Architecture position:
    Kernel > Services -- imperative shell.  Flushes, never commits.

Invariants enforced:
    - ``conditional_update`` re-reads the row from the database
      (``populate_existing``) immediately before handing it to the
      mutation, so guards run against the persisted state, not a cached
      one.
    - An ``expected`` mismatch raises ConflictError before any write.
    - A concurrent writer that bumped ``row_version`` between the re-read
      and the flush makes the UPDATE miss; SQLAlchemy raises
      StaleDataError, reported as ConflictError.

Failure modes:
    - NotFoundError when the id does not exist.
    - ConflictError on expected-field mismatch, stale row version, or a
      lost unique-key race on INSERT (IntegrityError).
"""

from typing import Any, Callable, Mapping, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from delivery_kernel.db.base import Base
from delivery_kernel.exceptions import ConflictError, NotFoundError
from delivery_kernel.logging_config import get_logger
from delivery_kernel.models.certificate import CertificateModel
from delivery_kernel.models.deliverable import DeliverableModel
from delivery_kernel.models.milestone import MilestoneModel
from delivery_kernel.models.variation import VariationImpactModel, VariationModel

logger = get_logger("services.entity_store")

ModelType = TypeVar("ModelType", bound=Base)


def entity_name(model: type) -> str:
    """Display name of a model class ("MilestoneModel" -> "Milestone")."""
    name = model.__name__
    return name[: -len("Model")] if name.endswith("Model") else name


def _describe(row: Base | None) -> tuple[str, Any]:
    if row is None:
        return "Entity", None
    return entity_name(type(row)), getattr(row, "id", None)


class EntityStore:
    def __init__(self, session: Session):
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    def get(self, model: type[ModelType], entity_id: UUID) -> ModelType:
        """Load by id.

        Raises:
            NotFoundError: no row with this id.
        """
        row = self._session.get(model, entity_id)
        if row is None:
            raise NotFoundError(entity_name(model), entity_id)
        return row

    def reload(self, model: type[ModelType], entity_id: UUID) -> ModelType:
        """Load by id, overwriting any cached state with the database row."""
        row = self._session.execute(
            select(model)
            .where(model.id == entity_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise NotFoundError(entity_name(model), entity_id)
        return row

    def create(self, model: type[ModelType], **fields: Any) -> ModelType:
        row = model(**fields)
        self._session.add(row)
        self.flush(row)
        return row

    def conditional_update(
        self,
        model: type[ModelType],
        entity_id: UUID,
        mutation: Callable[[ModelType], None],
        expected: Mapping[str, Any] | None = None,
    ) -> ModelType:
        """
        Re-read, check ``expected``, apply ``mutation``, flush.

        ``mutation`` receives the freshly read row.  It may raise a domain
        error to refuse the write; nothing has been changed at that point.

        Raises:
            NotFoundError: no row with this id.
            ConflictError: an expected field differs, or the row changed
                between re-read and flush.
        """
        row = self.reload(model, entity_id)
        for key, value in (expected or {}).items():
            actual = getattr(row, key)
            if actual != value:
                logger.info(
                    "conditional_update_conflict",
                    extra={
                        "entity_type": entity_name(model),
                        "entity_id": str(entity_id),
                        "field": key,
                    },
                )
                raise ConflictError(
                    entity_type=entity_name(model),
                    entity_id=entity_id,
                    field=key,
                    expected=value,
                    actual=actual,
                )
        mutation(row)
        self.flush(row)
        return row

    def delete(self, row: Base) -> None:
        self._session.delete(row)
        self.flush(row)

    def flush(self, row: Base | None = None) -> None:
        """Flush pending writes, reporting a lost race as ConflictError.

        Two races end up here: a stale ``row_version`` on UPDATE, and an
        INSERT that lost a check-then-insert race on a unique key (one
        certificate per milestone, unique references).
        """
        try:
            self._session.flush()
        except StaleDataError as exc:
            entity_type, entity_id = _describe(row)
            logger.warning(
                "stale_row_version",
                extra={"entity_type": entity_type, "entity_id": str(entity_id)},
            )
            raise ConflictError(entity_type=entity_type, entity_id=entity_id) from exc
        except IntegrityError as exc:
            entity_type, entity_id = _describe(row)
            logger.warning(
                "unique_key_race_lost",
                extra={
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                    "error": str(exc.orig),
                },
            )
            raise ConflictError(entity_type=entity_type, entity_id=entity_id) from exc

    # Lookups standing in for cross-entity pointers

    def deliverables_for(self, milestone_id: UUID) -> list[DeliverableModel]:
        return list(
            self._session.execute(
                select(DeliverableModel)
                .where(DeliverableModel.milestone_id == milestone_id)
                .order_by(DeliverableModel.reference)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def certificate_for(self, milestone_id: UUID) -> CertificateModel | None:
        return self._session.execute(
            select(CertificateModel)
            .where(CertificateModel.milestone_id == milestone_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def milestones_for(self, project_id: UUID) -> list[MilestoneModel]:
        return list(
            self._session.execute(
                select(MilestoneModel)
                .where(MilestoneModel.project_id == project_id)
                .order_by(MilestoneModel.reference)
            ).scalars()
        )

    def variations_for(self, project_id: UUID) -> list[VariationModel]:
        return list(
            self._session.execute(
                select(VariationModel)
                .where(VariationModel.project_id == project_id)
                .order_by(VariationModel.reference)
            ).scalars()
        )

    def variations_impacting(self, milestone_id: UUID) -> list[VariationModel]:
        return list(
            self._session.execute(
                select(VariationModel)
                .join(VariationImpactModel, VariationImpactModel.variation_id == VariationModel.id)
                .where(VariationImpactModel.milestone_id == milestone_id)
                .order_by(VariationModel.reference)
            ).scalars()
        )
