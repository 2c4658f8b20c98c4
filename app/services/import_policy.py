"""Per-module import policies and the registry the pipeline looks them up in."""
import heapq
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence, Type

from sqlalchemy.orm import Session

from app.models.import_history import ImportHistory
from app.schemas.imports import (
    ImportOptions,
    ImportServiceMetadata,
    TemplateColumn,
    ValidationIssue,
)
from app.services.import_errors import (
    ImportServiceError,
    NotFoundError,
    RollbackUnsupportedError,
)

logger = logging.getLogger(__name__)


class ImportPolicy(ABC):
    """
    Everything the generic import pipeline needs to know about one module.

    Implementations declare ``metadata`` and the template columns, validate
    single rows, persist batches inside the job's transaction and, when
    ``metadata.supports_rollback`` is set, undo a completed job.
    """

    metadata: ImportServiceMetadata

    @abstractmethod
    def get_template_columns(self) -> List[TemplateColumn]:
        """Ordered column definitions; file columns are mapped by position."""

    @abstractmethod
    def validate_row(
        self, db: Session, row: Dict[str, Any], row_number: int
    ) -> List[ValidationIssue]:
        """Business validation of one parsed row. An empty list means valid."""

    def validate_dataset(self, rows: Sequence[Dict[str, Any]]) -> List[ValidationIssue]:
        """
        Checks spanning the whole file, such as keys repeated between rows.

        ``rows[i]`` is data row ``i + 1``. Runs after every row was validated.
        """
        return []

    @abstractmethod
    def insert_batch(
        self,
        db: Session,
        rows: Sequence[Dict[str, Any]],
        options: ImportOptions,
        batch_id: str,
    ) -> int:
        """
        Persist one batch using the job's session and return the row count written.

        Must not commit. Raising fails the batch; the pipeline then applies
        ``options.on_conflict``.
        """

    def perform_rollback(self, db: Session, job: ImportHistory) -> int:
        """Undo the rows written by ``job``; returns the number of rows removed."""
        raise RollbackUnsupportedError(
            f"Rollback is not supported for module '{self.metadata.module}'"
        )


class ImportPolicyRegistry:
    """Registry of import policies keyed by module name."""

    def __init__(self):
        self._policies: Dict[str, Type[ImportPolicy]] = {}

    def register(self, policy_cls: Type[ImportPolicy]) -> Type[ImportPolicy]:
        module = policy_cls.metadata.module
        existing = self._policies.get(module)
        if existing is not None and existing is not policy_cls:
            raise ImportServiceError(f"Import module '{module}' is already registered")
        self._policies[module] = policy_cls
        logger.debug(f"Registered import policy: {module} ({policy_cls.__name__})")
        return policy_cls

    def get(self, module: str) -> ImportPolicy:
        policy_cls = self._policies.get(module)
        if policy_cls is None:
            raise NotFoundError(f"Import module '{module}' not found")
        return policy_cls()

    def modules(self) -> List[ImportServiceMetadata]:
        return [cls.metadata for cls in self._policies.values()]

    def import_order(self) -> List[ImportServiceMetadata]:
        """
        Modules sorted so that every module comes after its dependencies.

        Independent modules are ordered by priority (lower first), then name.

        Raises:
            ImportServiceError: On unknown dependencies or dependency cycles
        """
        metadata = {cls.metadata.module: cls.metadata for cls in self._policies.values()}

        pending: Dict[str, int] = {}
        dependents: Dict[str, List[str]] = {name: [] for name in metadata}
        for name, meta in metadata.items():
            unknown = [dep for dep in meta.dependencies if dep not in metadata]
            if unknown:
                raise ImportServiceError(
                    f"Module '{name}' depends on unregistered modules: {', '.join(unknown)}"
                )
            pending[name] = len(set(meta.dependencies))
            for dep in set(meta.dependencies):
                dependents[dep].append(name)

        ready = [(meta.priority, name) for name, meta in metadata.items() if pending[name] == 0]
        heapq.heapify(ready)

        ordered: List[ImportServiceMetadata] = []
        while ready:
            _, name = heapq.heappop(ready)
            ordered.append(metadata[name])
            for dependent in dependents[name]:
                pending[dependent] -= 1
                if pending[dependent] == 0:
                    heapq.heappush(ready, (metadata[dependent].priority, dependent))

        if len(ordered) != len(metadata):
            cyclic = sorted(name for name, count in pending.items() if count > 0)
            raise ImportServiceError(
                f"Circular dependency between import modules: {', '.join(cyclic)}"
            )
        return ordered


registry = ImportPolicyRegistry()


def register_import_policy(policy_cls: Type[ImportPolicy]) -> Type[ImportPolicy]:
    """Class decorator adding a policy to the default registry."""
    return registry.register(policy_cls)
