"""Database repositories for dropwatch.

Repositories translate between the SQLAlchemy records and the domain
dataclasses. They flush but do not commit; the surrounding
``Database.session()`` block is the unit of work.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import desc, func, insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dropwatch.database.models import (
    ConfigurationRecord,
    DiscoveredFileRecord,
    ExecutionRecord,
)
from dropwatch.domain import (
    Configuration,
    DiscoveredFile,
    Execution,
    ExecutionOutcome,
    ExecutionStatus,
    NotificationStatus,
    Protocol,
    settings_from_dict,
)
from dropwatch.errors import ErrorCategory, InvalidTransitionError


def insert_ignore(
    session: Session,
    model: Any,
    values: Dict[str, Any],
    conflict_columns: List[str],
) -> bool:
    """
    Insert a row unless it collides with a unique constraint.

    Uses ``ON CONFLICT DO NOTHING`` on SQLite and PostgreSQL and a
    savepoint elsewhere.

    Returns:
        True if the row was inserted, False if it already existed
    """
    dialect = session.get_bind().dialect.name

    if dialect in ("sqlite", "postgresql"):
        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            from sqlalchemy.dialects.postgresql import insert as dialect_insert

        stmt = dialect_insert(model).values(**values).on_conflict_do_nothing(
            index_elements=conflict_columns
        )
        result = session.execute(stmt)
        return result.rowcount == 1

    try:
        with session.begin_nested():
            session.execute(insert(model).values(**values))
        return True
    except IntegrityError:
        return False


def _configuration_from_record(record: ConfigurationRecord) -> Configuration:
    protocol = Protocol(record.protocol)
    return Configuration(
        id=record.id,
        tenant_id=record.tenant_id,
        name=record.name,
        description=record.description,
        protocol=protocol,
        settings=settings_from_dict(protocol, dict(record.settings or {})),
        path_pattern=record.path_pattern,
        name_pattern=record.name_pattern,
        file_extension=record.file_extension,
        schedule_expression=record.schedule_expression,
        timezone=record.timezone,
        is_active=record.is_active,
        last_evaluated_at=record.last_evaluated_at,
        next_due_at=record.next_due_at,
        created_at=record.created_at,
    )


def _execution_from_record(record: ExecutionRecord) -> Execution:
    return Execution(
        id=record.id,
        configuration_id=record.configuration_id,
        tenant_id=record.tenant_id,
        status=ExecutionStatus(record.status),
        scheduled_for=record.scheduled_for,
        started_at=record.started_at,
        completed_at=record.completed_at,
        files_found=record.files_found,
        error_category=ErrorCategory(record.error_category) if record.error_category else None,
        error_detail=record.error_detail,
        resolved_path=record.resolved_path,
        resolved_name=record.resolved_name,
        duration_ms=record.duration_ms,
        retry_count=record.retry_count,
        created_at=record.created_at,
    )


def _discovery_from_record(record: DiscoveredFileRecord) -> DiscoveredFile:
    return DiscoveredFile(
        id=record.id,
        tenant_id=record.tenant_id,
        configuration_id=record.configuration_id,
        url=record.url,
        discovery_date=record.discovery_date,
        size=record.size,
        last_modified_remote=record.last_modified_remote,
        discovered_at=record.discovered_at,
        execution_id=record.execution_id,
        notification_status=NotificationStatus(record.notification_status),
    )


class ConfigurationRepository:
    """
    Repository for check configurations.

    The scheduler reads active configurations and persists schedule
    progression through ``save``.
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def list_active(self) -> List[Configuration]:
        """
        Get every active configuration across all tenants.

        Returns:
            Active configurations
        """
        records = self.session.query(ConfigurationRecord).filter(
            ConfigurationRecord.is_active.is_(True)
        ).all()
        return [_configuration_from_record(r) for r in records]

    def list_all(self, tenant_id: Optional[str] = None) -> List[Configuration]:
        query = self.session.query(ConfigurationRecord).order_by(ConfigurationRecord.created_at)
        if tenant_id:
            query = query.filter(ConfigurationRecord.tenant_id == tenant_id)
        return [_configuration_from_record(r) for r in query.all()]

    def get_by_id(self, configuration_id: str) -> Optional[Configuration]:
        record = self.session.get(ConfigurationRecord, configuration_id)
        return _configuration_from_record(record) if record else None

    def save(self, configuration: Configuration) -> Configuration:
        """
        Insert or update a configuration.

        Args:
            configuration: Configuration to persist

        Returns:
            The persisted configuration
        """
        record = self.session.get(ConfigurationRecord, configuration.id)
        if record is None:
            record = ConfigurationRecord(id=configuration.id, created_at=configuration.created_at)
            self.session.add(record)

        record.tenant_id = configuration.tenant_id
        record.name = configuration.name
        record.description = configuration.description
        record.protocol = configuration.protocol.value
        record.settings = configuration.settings.to_dict()
        record.path_pattern = configuration.path_pattern
        record.name_pattern = configuration.name_pattern
        record.file_extension = configuration.file_extension
        record.schedule_expression = configuration.schedule_expression
        record.timezone = configuration.timezone
        record.is_active = configuration.is_active
        record.last_evaluated_at = configuration.last_evaluated_at
        record.next_due_at = configuration.next_due_at

        self.session.flush()
        return configuration

    def update_schedule(
        self,
        configuration_id: str,
        last_evaluated_at: Optional[datetime],
        next_due_at: Optional[datetime],
    ) -> bool:
        """
        Store the evaluation timestamps of an active configuration.

        Only the two schedule columns are written, so edits made elsewhere
        since the configuration was read are kept.

        Returns:
            True if updated, False if the configuration is gone or inactive
        """
        result = self.session.execute(
            update(ConfigurationRecord)
            .where(
                ConfigurationRecord.id == configuration_id,
                ConfigurationRecord.is_active.is_(True),
            )
            .values(last_evaluated_at=last_evaluated_at, next_due_at=next_due_at)
        )
        return result.rowcount > 0

    def set_active(self, configuration_id: str, active: bool) -> bool:
        """
        Enable or disable a configuration.

        Returns:
            True if updated, False if not found
        """
        record = self.session.get(ConfigurationRecord, configuration_id)
        if record is None:
            return False
        record.is_active = active
        if not active:
            record.next_due_at = None
        self.session.flush()
        return True

    def delete(self, configuration_id: str) -> bool:
        record = self.session.get(ConfigurationRecord, configuration_id)
        if record is None:
            return False
        self.session.delete(record)
        self.session.flush()
        return True


class ExecutionRepository:
    """
    Repository for execution history.

    Transitions are one-directional; completed and failed executions are
    never modified again.
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def create(self, execution: Execution) -> Execution:
        """
        Record a new execution.

        Args:
            execution: Execution to insert

        Returns:
            The inserted execution
        """
        record = ExecutionRecord(
            id=execution.id,
            configuration_id=execution.configuration_id,
            tenant_id=execution.tenant_id,
            status=execution.status.value,
            scheduled_for=execution.scheduled_for,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            files_found=execution.files_found,
            error_category=execution.error_category.value if execution.error_category else None,
            error_detail=execution.error_detail,
            resolved_path=execution.resolved_path,
            resolved_name=execution.resolved_name,
            duration_ms=execution.duration_ms,
            retry_count=execution.retry_count,
        )
        if execution.created_at is not None:
            record.created_at = execution.created_at
        self.session.add(record)
        self.session.flush()
        execution.created_at = record.created_at
        return execution

    def get_by_id(self, execution_id: str) -> Optional[Execution]:
        record = self.session.get(ExecutionRecord, execution_id)
        return _execution_from_record(record) if record else None

    def transition(
        self,
        execution_id: str,
        status: ExecutionStatus,
        outcome: Optional[ExecutionOutcome] = None,
    ) -> Execution:
        """
        Move an execution to a new status and record its outcome fields.

        Args:
            execution_id: Execution to update
            status: Target status
            outcome: Fields to write alongside the transition

        Returns:
            The updated execution

        Raises:
            KeyError: If the execution does not exist
            InvalidTransitionError: If the transition would move backwards
        """
        record = self.session.get(ExecutionRecord, execution_id)
        if record is None:
            raise KeyError(execution_id)

        current = ExecutionStatus(record.status)
        if not current.can_transition_to(status):
            raise InvalidTransitionError(execution_id, current.value, status.value)

        record.status = status.value
        if outcome is not None:
            if outcome.started_at is not None:
                record.started_at = outcome.started_at
            if outcome.completed_at is not None:
                record.completed_at = outcome.completed_at
            if outcome.resolved_path is not None:
                record.resolved_path = outcome.resolved_path
            if outcome.resolved_name is not None:
                record.resolved_name = outcome.resolved_name
            if outcome.duration_ms is not None:
                record.duration_ms = outcome.duration_ms
            record.files_found = outcome.files_found
            record.retry_count = outcome.retry_count
            record.error_category = outcome.error_category.value if outcome.error_category else None
            record.error_detail = outcome.error_detail

        self.session.flush()
        return _execution_from_record(record)

    def get_history(
        self,
        configuration_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Execution]:
        """
        Get execution history, newest first.

        Args:
            configuration_id: Filter by configuration (optional)
            tenant_id: Filter by tenant (optional)
            status: Filter by status (optional)
            limit: Maximum number of results
            offset: Number of results to skip

        Returns:
            Executions ordered by scheduled_for descending
        """
        query = self.session.query(ExecutionRecord).order_by(
            desc(ExecutionRecord.scheduled_for), desc(ExecutionRecord.created_at)
        )
        if configuration_id:
            query = query.filter(ExecutionRecord.configuration_id == configuration_id)
        if tenant_id:
            query = query.filter(ExecutionRecord.tenant_id == tenant_id)
        if status:
            query = query.filter(ExecutionRecord.status == status.value)
        return [_execution_from_record(r) for r in query.offset(offset).limit(limit).all()]

    def list_unfinished(self) -> List[Execution]:
        records = self.session.query(ExecutionRecord).filter(
            ExecutionRecord.status.in_([ExecutionStatus.PENDING.value, ExecutionStatus.RUNNING.value])
        ).all()
        return [_execution_from_record(r) for r in records]

    def fail_stale(
        self,
        before: datetime,
        detail: str,
        completed_at: datetime,
        exclude_ids: Iterable[str] = (),
    ) -> int:
        """
        Fail unfinished executions that have not progressed since ``before``.

        An execution counts from when it started running, or from its
        creation while still Pending; ``scheduled_for`` plays no part. These
        are executions abandoned when a scheduler stopped before they
        reached a terminal state.

        Args:
            before: Executions started (or created) before this time are stale
            detail: Error detail recorded on the failed executions
            completed_at: Completion time recorded on the failed executions
            exclude_ids: Executions known to be still in progress

        Returns:
            Number of executions failed
        """
        conditions = [
            ExecutionRecord.status.in_(
                [ExecutionStatus.PENDING.value, ExecutionStatus.RUNNING.value]
            ),
            func.coalesce(ExecutionRecord.started_at, ExecutionRecord.created_at) < before,
        ]
        excluded = list(exclude_ids)
        if excluded:
            conditions.append(ExecutionRecord.id.not_in(excluded))

        result = self.session.execute(
            update(ExecutionRecord)
            .where(*conditions)
            .values(
                status=ExecutionStatus.FAILED.value,
                error_detail=detail,
                completed_at=completed_at,
            )
        )
        return result.rowcount

    def delete_old_executions(self, before: datetime) -> int:
        """
        Delete terminal executions scheduled before a given time.

        Args:
            before: Delete executions scheduled before this time

        Returns:
            Number of executions deleted
        """
        return self.session.query(ExecutionRecord).filter(
            ExecutionRecord.scheduled_for < before,
            ExecutionRecord.status.in_(
                [ExecutionStatus.COMPLETED.value, ExecutionStatus.FAILED.value]
            ),
        ).delete(synchronize_session=False)


class DiscoveryRepository:
    """Repository for discovered files."""

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def try_create(self, discovery: DiscoveredFile) -> bool:
        """
        Insert a discovery unless its composite identity already exists.

        Args:
            discovery: Discovery to insert

        Returns:
            True if a new record was created, False if it already existed
        """
        return insert_ignore(
            self.session,
            DiscoveredFileRecord,
            {
                "id": discovery.id,
                "tenant_id": discovery.tenant_id,
                "configuration_id": discovery.configuration_id,
                "url": discovery.url,
                "discovery_date": discovery.discovery_date,
                "size": discovery.size,
                "last_modified_remote": discovery.last_modified_remote,
                "discovered_at": discovery.discovered_at,
                "execution_id": discovery.execution_id,
                "notification_status": discovery.notification_status.value,
            },
            ["tenant_id", "configuration_id", "url", "discovery_date"],
        )

    def set_notification_status(self, discovery_id: str, status: NotificationStatus) -> bool:
        result = self.session.execute(
            update(DiscoveredFileRecord)
            .where(DiscoveredFileRecord.id == discovery_id)
            .values(notification_status=status.value)
        )
        return result.rowcount == 1

    def list_for_configuration(
        self,
        configuration_id: str,
        limit: int = 50,
    ) -> List[DiscoveredFile]:
        records = self.session.query(DiscoveredFileRecord).filter(
            DiscoveredFileRecord.configuration_id == configuration_id
        ).order_by(desc(DiscoveredFileRecord.discovered_at)).limit(limit).all()
        return [_discovery_from_record(r) for r in records]

    def count(self, configuration_id: Optional[str] = None) -> int:
        query = self.session.query(DiscoveredFileRecord)
        if configuration_id:
            query = query.filter(DiscoveredFileRecord.configuration_id == configuration_id)
        return query.count()


class RepositoryFactory:
    """
    Factory for creating repository instances.

    Usage:
        with db.session() as session:
            repos = RepositoryFactory(session)
            active = repos.configurations.list_active()
    """

    def __init__(self, session: Session):
        """
        Initialize factory with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session
        self._configurations: Optional[ConfigurationRepository] = None
        self._executions: Optional[ExecutionRepository] = None
        self._discoveries: Optional[DiscoveryRepository] = None

    @property
    def configurations(self) -> ConfigurationRepository:
        if self._configurations is None:
            self._configurations = ConfigurationRepository(self.session)
        return self._configurations

    @property
    def executions(self) -> ExecutionRepository:
        if self._executions is None:
            self._executions = ExecutionRepository(self.session)
        return self._executions

    @property
    def discoveries(self) -> DiscoveryRepository:
        if self._discoveries is None:
            self._discoveries = DiscoveryRepository(self.session)
        return self._discoveries
