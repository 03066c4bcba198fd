"""Script batch catalog administration.

Batches are created per tenant and receive immutable, content-addressed
versions. A version moves draft -> active -> superseded; activating one
supersedes the previously active version and points the batch's
active_version at the new one. Only batches with an active version are
resolvable by the router.
"""

import hashlib
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.db.models import ScriptBatch, ScriptBatchVersion, VersionStatus
from src.errors import ConflictError, InvalidVersionTransition, NotFoundError, ValidationError
from src.services.audit_service import AuditService
from src.services.preflight import describe_threshold_errors, parse_thresholds

logger = logging.getLogger(__name__)


VALID_TRANSITIONS: dict[VersionStatus, list[VersionStatus]] = {
    VersionStatus.draft: [VersionStatus.active],
    VersionStatus.active: [VersionStatus.superseded],
    VersionStatus.superseded: [],  # terminal
}


class BatchService:
    """Creates batches and manages their version lifecycle.

    Attributes:
        db: SQLAlchemy session for database operations.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self.audit = AuditService(db)

    def create_batch(
        self,
        tenant_id: str,
        name: str,
        os_targets: list[str],
        inputs_schema: dict[str, Any] | None = None,
        inputs_defaults: dict[str, Any] | None = None,
        preflight: dict[str, Any] | None = None,
        description: str | None = None,
        risk: str = "low",
        max_timeout_sec: int = 300,
        per_agent_concurrency: int = 1,
        per_tenant_concurrency: int = 10,
    ) -> ScriptBatch:
        """Create a batch without any version.

        Returns:
            The new batch (not resolvable until a version is activated).

        Raises:
            ValidationError: If a preflight threshold is unknown or non-numeric.
        """
        try:
            parse_thresholds(preflight)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid preflight thresholds: " + "; ".join(describe_threshold_errors(e))
            ) from e

        batch = ScriptBatch(
            customer_id=tenant_id,
            name=name,
            description=description,
            risk=risk,
            max_timeout_sec=max_timeout_sec,
            per_agent_concurrency=per_agent_concurrency,
            per_tenant_concurrency=per_tenant_concurrency,
        )
        batch.os_targets = os_targets
        batch.inputs_schema = inputs_schema
        batch.inputs_defaults = inputs_defaults
        batch.preflight = preflight
        self.db.add(batch)
        self.db.commit()
        self.db.refresh(batch)
        logger.info("Created batch %s (%s) for tenant %s", batch.id, name, tenant_id)
        return batch

    def get_batch(self, batch_id: str) -> ScriptBatch:
        batch = self.db.get(ScriptBatch, batch_id)
        if batch is None:
            raise NotFoundError("Batch", batch_id)
        return batch

    def get_version(self, batch_id: str, version: int) -> ScriptBatchVersion:
        row = self.db.scalars(
            select(ScriptBatchVersion).where(
                ScriptBatchVersion.batch_id == batch_id,
                ScriptBatchVersion.version == version,
            )
        ).first()
        if row is None:
            raise NotFoundError("Batch version", f"{batch_id}@{version}")
        return row

    def add_version(
        self,
        batch_id: str,
        source: str,
        notes: str | None = None,
        created_by: str | None = None,
    ) -> ScriptBatchVersion:
        """Append a draft version holding the script source.

        Raises:
            NotFoundError: If the batch does not exist.
            ConflictError: If identical source was already uploaded.
        """
        batch = self.get_batch(batch_id)
        encoded = source.encode("utf-8")
        digest = hashlib.sha256(encoded).hexdigest()

        duplicate = self.db.scalars(
            select(ScriptBatchVersion).where(
                ScriptBatchVersion.batch_id == batch.id,
                ScriptBatchVersion.sha256 == digest,
            )
        ).first()
        if duplicate is not None:
            raise ConflictError(
                f"Source already uploaded as version {duplicate.version} of {batch.name}"
            )

        latest = self.db.scalar(
            select(func.max(ScriptBatchVersion.version)).where(
                ScriptBatchVersion.batch_id == batch.id
            )
        )
        version = ScriptBatchVersion(
            batch_id=batch.id,
            version=(latest or 0) + 1,
            sha256=digest,
            size_bytes=len(encoded),
            source=source,
            notes=notes,
            created_by=created_by,
            status=VersionStatus.draft.value,
        )
        self.db.add(version)
        self.db.commit()
        self.db.refresh(version)
        return version

    def can_transition(self, current: VersionStatus, target: VersionStatus) -> bool:
        return target in VALID_TRANSITIONS.get(current, [])

    def activate_version(
        self, batch_id: str, version: int, actor: str = "system"
    ) -> ScriptBatch:
        """Make a draft version the batch's executable version.

        Raises:
            NotFoundError: If the batch or version does not exist.
            InvalidVersionTransition: If the version is not a draft.
        """
        batch = self.get_batch(batch_id)
        target = self.get_version(batch_id, version)

        current = VersionStatus(target.status)
        if not self.can_transition(current, VersionStatus.active):
            raise InvalidVersionTransition(version, current.value, VersionStatus.active.value)

        previous = batch.active_version
        for row in batch.versions:
            if row.status == VersionStatus.active.value and row.id != target.id:
                row.status = VersionStatus.superseded.value

        target.status = VersionStatus.active.value
        batch.active_version = target.version
        self.audit.log(
            batch.customer_id,
            actor=actor,
            action="batch.version_activated",
            target=batch.id,
            meta={"version": target.version, "previous": previous, "sha256": target.sha256},
            commit=False,
        )
        self.db.commit()
        self.db.refresh(batch)
        logger.info("Batch %s now at version %d", batch.id, target.version)
        return batch
