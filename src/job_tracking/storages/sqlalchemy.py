import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import Column, String, DateTime, Boolean, Integer, Text, ForeignKey, create_engine, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from job_tracking.domain.registry import JobKind, JobMetadata, RegistryEntry
from job_tracking.domain.execution import ExecutionContext, ExecutionLog, ExecutionResult, ExecutionStatus
from job_tracking.errors import DuplicateRegistryEntryError
from job_tracking.storages.protocol import ExecutionLogStore, RegistryStore

Base = declarative_base()


class JobRegistryModel(Base):
    __tablename__ = 'job_registry'

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    owner_class = Column(String, nullable=False)
    owner_method = Column(String, nullable=False)
    schedule_expression = Column(String)
    lock_name = Column(String)
    kind = Column(String, nullable=False)
    display_name = Column(String)
    enabled = Column(Boolean, default=True)
    last_execution_at = Column(DateTime(timezone=True))
    last_duration_ms = Column(Integer)


class ExecutionLogModel(Base):
    __tablename__ = 'job_execution_logs'

    id = Column(String, primary_key=True)
    registry_id = Column(String, ForeignKey('job_registry.id'), nullable=False)
    name = Column(String, nullable=False, index=True)
    lock_name = Column(String)
    service_name = Column(String)
    host_name = Column(String)
    status = Column(String, nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    ended_at = Column(DateTime(timezone=True))
    duration_ms = Column(Integer)
    error_message = Column(Text)
    items_processed = Column(Integer)


class JobLockModel(Base):
    __tablename__ = 'job_tracking_locks'

    name = Column(String, primary_key=True)
    lock_until = Column(DateTime(timezone=True), nullable=False)
    locked_at = Column(DateTime(timezone=True), nullable=False)
    locked_by = Column(String, nullable=False)


class SqlAlchemyDatabase:
    def __init__(self, db_url: str, **engine_kwargs):
        self.engine = create_engine(db_url, **engine_kwargs)
        self.session = sessionmaker(self.engine, expire_on_commit=False)

    def create_tables(self):
        Base.metadata.create_all(self.engine)

    def dispose(self):
        self.engine.dispose()


class InMemoryDatabase(SqlAlchemyDatabase):
    """
    SQLite database living in process memory, shared by every session through a single connection.
    """

    def __init__(self):
        super().__init__(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )


class SqlAlchemyRegistryStore(RegistryStore):
    def __init__(self, database: SqlAlchemyDatabase):
        self.database = database

    def find_by_name(self, name: str) -> Optional[RegistryEntry]:
        with self.database.session() as session:
            result = session.execute(select(JobRegistryModel).filter_by(name=name))
            db_entry = result.scalar_one_or_none()
            if db_entry:
                return self._db_to_entry(db_entry)
            return None

    def save(self, entry: RegistryEntry) -> RegistryEntry:
        saved = entry.model_copy(update={"id": entry.id or uuid.uuid4().hex})
        with self.database.session() as session:
            session.add(JobRegistryModel(
                id=saved.id,
                name=saved.name,
                owner_class=saved.owner_class,
                owner_method=saved.owner_method,
                schedule_expression=saved.schedule_expression,
                lock_name=saved.lock_name,
                kind=saved.kind.value,
                display_name=saved.display_name,
                enabled=saved.enabled,
                last_execution_at=saved.last_execution_at,
                last_duration_ms=saved.last_duration_ms,
            ))
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise DuplicateRegistryEntryError(saved.name) from e
        return saved

    def update_last_execution(self, registry_id: str, executed_at: datetime, duration_ms: Optional[int]) -> int:
        with self.database.session() as session:
            result = session.execute(
                update(JobRegistryModel)
                .where(JobRegistryModel.id == registry_id)
                .values(last_execution_at=executed_at, last_duration_ms=duration_ms)
            )
            session.commit()
            return result.rowcount

    def update_metadata(self, registry_id: str, metadata: JobMetadata) -> int:
        with self.database.session() as session:
            result = session.execute(
                update(JobRegistryModel)
                .where(JobRegistryModel.id == registry_id)
                .values(
                    owner_class=metadata.owner_class,
                    owner_method=metadata.owner_method,
                    schedule_expression=metadata.schedule_expression,
                    lock_name=metadata.lock_name,
                    kind=metadata.kind.value,
                )
            )
            session.commit()
            return result.rowcount

    def _db_to_entry(self, db_entry: JobRegistryModel) -> RegistryEntry:
        return RegistryEntry(
            id=db_entry.id,
            name=db_entry.name,
            owner_class=db_entry.owner_class,
            owner_method=db_entry.owner_method,
            schedule_expression=db_entry.schedule_expression,
            lock_name=db_entry.lock_name,
            kind=JobKind(db_entry.kind),
            display_name=db_entry.display_name,
            enabled=db_entry.enabled,
            last_execution_at=db_entry.last_execution_at,
            last_duration_ms=db_entry.last_duration_ms,
        )


class SqlAlchemyExecutionLogStore(ExecutionLogStore):
    def __init__(self, database: SqlAlchemyDatabase):
        self.database = database

    def create_from_context(self, context: ExecutionContext) -> ExecutionLog:
        return ExecutionLog.from_context(context)

    def apply_result(self, record: ExecutionLog, result: ExecutionResult) -> None:
        record.apply_result(result)

    def save(self, record: ExecutionLog) -> ExecutionLog:
        with self.database.session() as session:
            session.merge(ExecutionLogModel(
                id=record.id,
                registry_id=record.registry_id,
                name=record.name,
                lock_name=record.lock_name,
                service_name=record.service_name,
                host_name=record.host_name,
                status=record.status.value,
                started_at=record.started_at,
                ended_at=record.ended_at,
                duration_ms=record.duration_ms,
                error_message=record.error_message,
                items_processed=record.items_processed,
            ))
            session.commit()
        return record

    def find_by_id(self, log_id: str) -> Optional[ExecutionLog]:
        with self.database.session() as session:
            db_log = session.get(ExecutionLogModel, log_id)
            if db_log:
                return self._db_to_log(db_log)
            return None

    def find_running_started_before(self, cutoff: datetime) -> List[ExecutionLog]:
        with self.database.session() as session:
            result = session.execute(
                select(ExecutionLogModel)
                .filter_by(status=ExecutionStatus.RUNNING.value)
                .where(ExecutionLogModel.started_at < cutoff)
                .order_by(ExecutionLogModel.started_at)
            )
            return [self._db_to_log(db_log) for db_log in result.scalars()]

    def delete_finished_before(self, cutoff: datetime) -> int:
        with self.database.session() as session:
            result = session.execute(
                delete(ExecutionLogModel)
                .where(ExecutionLogModel.status != ExecutionStatus.RUNNING.value)
                .where(ExecutionLogModel.ended_at < cutoff)
            )
            session.commit()
            return result.rowcount

    def list_recent(self, name: str, limit: int = 10) -> List[ExecutionLog]:
        with self.database.session() as session:
            result = session.execute(
                select(ExecutionLogModel)
                .filter_by(name=name)
                .order_by(ExecutionLogModel.started_at.desc())
                .limit(limit)
            )
            return [self._db_to_log(db_log) for db_log in result.scalars()]

    def _db_to_log(self, db_log: ExecutionLogModel) -> ExecutionLog:
        return ExecutionLog(
            id=db_log.id,
            registry_id=db_log.registry_id,
            name=db_log.name,
            lock_name=db_log.lock_name,
            service_name=db_log.service_name,
            host_name=db_log.host_name,
            status=ExecutionStatus(db_log.status),
            started_at=db_log.started_at,
            ended_at=db_log.ended_at,
            duration_ms=db_log.duration_ms,
            error_message=db_log.error_message,
            items_processed=db_log.items_processed,
        )
