"""SQLite ledger of accepted provisioning plans."""

from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    sessionmaker,
)

from api.models import EntityKind, EntityRef, Provenance, ProvisioningPlan, RoleScope
from api.settings import get_settings


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class PlanRecord(Base):
    """Latest accepted plan per cluster."""

    __tablename__ = "identity_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cluster_name: Mapped[str] = mapped_column(String(54), nullable=False, unique=True, index=True)
    account_id: Mapped[str] = mapped_column(String(12), nullable=False)
    region: Mapped[str] = mapped_column(String(20), nullable=False)
    partition: Mapped[str] = mapped_column(String(20), nullable=False)
    cluster_variant: Mapped[str] = mapped_column(String(20), nullable=False)
    plan: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class EntityRecord(Base):
    """One entity of a plan, in creation order."""

    __tablename__ = "identity_entities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cluster_name: Mapped[str] = mapped_column(String(54), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[EntityKind] = mapped_column(Enum(EntityKind), nullable=False)
    logical_name: Mapped[str] = mapped_column(String(100), nullable=False)
    identifier: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    provenance: Mapped[Provenance] = mapped_column(Enum(Provenance), nullable=False)
    scope: Mapped[Optional[RoleScope]] = mapped_column(Enum(RoleScope), nullable=True)

    def to_ref(self) -> EntityRef:
        return EntityRef(
            kind=self.kind,
            logical_name=self.logical_name,
            identifier=self.identifier,
            provenance=self.provenance,
            scope=self.scope,
        )


class Database:
    """Database connection and operations."""

    def __init__(self, database_url: str = "sqlite:///./identity_plans.db"):
        """Initialize database connection."""
        self.engine = create_engine(database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    def save_plan(self, plan: ProvisioningPlan) -> PlanRecord:
        """Store a plan, replacing any earlier plan for the same cluster."""
        with self.get_session() as session:
            record = session.query(PlanRecord).filter_by(cluster_name=plan.cluster_name).first()
            if record is None:
                record = PlanRecord(cluster_name=plan.cluster_name)
                session.add(record)

            record.account_id = plan.topology.account_id
            record.region = plan.topology.region
            record.partition = plan.topology.partition.value
            record.cluster_variant = plan.topology.cluster_variant.value
            record.plan = plan.model_dump_json()
            record.summary = plan.summary().model_dump_json()
            record.updated_at = datetime.now(timezone.utc)

            session.query(EntityRecord).filter_by(cluster_name=plan.cluster_name).delete()
            for position, entity in enumerate(plan.entities()):
                session.add(
                    EntityRecord(
                        cluster_name=plan.cluster_name,
                        position=position,
                        kind=entity.kind,
                        logical_name=entity.logical_name,
                        identifier=entity.identifier,
                        provenance=entity.provenance,
                        scope=entity.scope,
                    )
                )

            session.commit()
            session.refresh(record)
            return record

    def get_plan_record(self, cluster_name: str) -> Optional[PlanRecord]:
        with self.get_session() as session:
            return session.query(PlanRecord).filter_by(cluster_name=cluster_name).first()

    def get_plan(self, cluster_name: str) -> Optional[ProvisioningPlan]:
        """Stored plan for a cluster, if any."""
        record = self.get_plan_record(cluster_name)
        if record is None:
            return None
        return ProvisioningPlan.model_validate_json(record.plan)

    def get_entities(self, cluster_name: str) -> list[EntityRecord]:
        with self.get_session() as session:
            return list(
                session.query(EntityRecord)
                .filter_by(cluster_name=cluster_name)
                .order_by(EntityRecord.position)
                .all()
            )

    def destroy_set(self, cluster_name: str, include_shared: bool = False) -> list[EntityRef]:
        """Owned entities in reverse creation order.

        Discovered and explicit entities never appear; created shared roles
        only with include_shared.
        """
        with self.get_session() as session:
            query = session.query(EntityRecord).filter(
                EntityRecord.cluster_name == cluster_name,
                EntityRecord.provenance == Provenance.CREATED,
            )
            if not include_shared:
                query = query.filter(
                    (EntityRecord.scope.is_(None)) | (EntityRecord.scope != RoleScope.SHARED)
                )
            records = query.order_by(EntityRecord.position.desc()).all()
            return [r.to_ref() for r in records]

    def delete_plan(self, cluster_name: str) -> bool:
        with self.get_session() as session:
            deleted = session.query(PlanRecord).filter_by(cluster_name=cluster_name).delete()
            session.query(EntityRecord).filter_by(cluster_name=cluster_name).delete()
            session.commit()
            return deleted > 0


@lru_cache
def get_db() -> Database:
    return Database(get_settings().database_url)
