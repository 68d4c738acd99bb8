"""SQLite database for tracking cluster create/destroy operations."""

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

from api.models import ClusterStatus
from api.settings import get_settings

# Statuses during which no other create or destroy may start
BUSY_STATUSES = {ClusterStatus.PENDING, ClusterStatus.CREATING, ClusterStatus.DESTROYING}


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class ClusterRecord(Base):
    """Database model for clusters managed by the service."""

    __tablename__ = "clusters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(40), nullable=False, unique=True, index=True)
    region: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[ClusterStatus] = mapped_column(
        Enum(ClusterStatus), nullable=False, default=ClusterStatus.PENDING
    )
    inventory: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class Database:
    """Database connection and operations."""

    def __init__(self, database_url: str = "sqlite:///./bootctl.db"):
        self.engine = create_engine(database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    def start_operation(self, name: str, region: str, status: ClusterStatus) -> ClusterRecord:
        """Claim a cluster for a create or destroy; raise ValueError if one is running."""
        with self.get_session() as session:
            record = session.query(ClusterRecord).filter_by(name=name).first()
            if record is None:
                record = ClusterRecord(name=name, region=region, status=status)
                session.add(record)
            elif record.status in BUSY_STATUSES:
                raise ValueError(f"Cluster {name} is already {record.status.value}")
            else:
                record.status = status
                record.region = region
                record.error_message = None
                record.updated_at = datetime.now(timezone.utc)

            session.commit()
            session.refresh(record)
            return record

    def get_cluster(self, name: str) -> Optional[ClusterRecord]:
        with self.get_session() as session:
            return session.query(ClusterRecord).filter_by(name=name).first()

    def update_cluster_status(
        self,
        name: str,
        status: ClusterStatus,
        inventory: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Optional[ClusterRecord]:
        """Update cluster status."""
        with self.get_session() as session:
            record = session.query(ClusterRecord).filter_by(name=name).first()
            if not record:
                return None

            record.status = status
            record.updated_at = datetime.now(timezone.utc)

            if inventory is not None:
                record.inventory = inventory
            if error_message is not None:
                record.error_message = error_message

            session.commit()
            session.refresh(record)
            return record

    def list_clusters(self) -> list[ClusterRecord]:
        with self.get_session() as session:
            return list(session.query(ClusterRecord).order_by(ClusterRecord.name).all())


@lru_cache
def get_database() -> Database:
    return Database(get_settings().database_url)
