"""
Database Manager for Fingerprint Attendance
===========================================
Handles database connection, initialization, and session management.

Features:
- SQLite database in WAL mode for concurrent terminals
- Automatic table creation
- Default configuration seeding
- Template storage and roster snapshots
"""

import logging
from pathlib import Path
from datetime import datetime
from typing import Optional, Generator, List
from contextlib import contextmanager

from sqlalchemy import create_engine, event, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session

from .. import config
from ..errors import InvalidImage, StorageUnavailable
from ..matching.imaging import decode_image, encode_png
from ..matching.matcher import BiometricTemplate
from .models import Base, SystemConfig, Person, BiometricTemplateRecord, DEFAULT_CONFIG

# Configure logging
logger = logging.getLogger(__name__)

# Seconds a writer waits for a competing terminal's transaction to finish
BUSY_TIMEOUT_SECONDS = 30


class DatabaseManager:
    """
    Manages database connections and provides session context.

    Usage:
        db = DatabaseManager()
        with db.get_session() as session:
            person = session.query(Person).filter_by(person_id="emp001").first()
    """

    def __init__(self, db_path: Optional[Path] = None, echo: bool = False):
        """
        Initialize database manager.

        Args:
            db_path: Path to SQLite database file. Defaults to config.DATABASE_PATH
            echo: If True, log all SQL statements (useful for debugging)
        """
        self.db_path = Path(db_path) if db_path else config.DATABASE_PATH
        self.echo = echo
        self.engine = None
        self.SessionLocal = None
        self._initialized = False

    def initialize(self) -> bool:
        """
        Initialize database connection and create tables.

        Returns:
            True if initialization successful, False otherwise
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            # One pooled connection per thread; several terminals may write at once
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=self.echo,
                connect_args={"check_same_thread": False, "timeout": BUSY_TIMEOUT_SECONDS},
            )

            @event.listens_for(self.engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.close()

            # Rows are converted to plain values after commit, keep them loaded
            self.SessionLocal = sessionmaker(
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
                bind=self.engine
            )

            Base.metadata.create_all(bind=self.engine)
            logger.info(f"Database initialized at: {self.db_path}")

            self._initialized = True
            self._seed_default_config()
            return True

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            self._initialized = False
            return False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _seed_default_config(self):
        """Insert default configuration values if not present."""
        with self.get_session() as session:
            for key, (value, description) in DEFAULT_CONFIG.items():
                existing = session.query(SystemConfig).filter_by(key=key).first()
                if not existing:
                    session.add(SystemConfig(key=key, value=value, description=description))
                    logger.debug(f"Added default config: {key}={value}")
            session.commit()
            logger.info("Default configuration seeded")

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Get a database session with automatic cleanup.

        Usage:
            with db.get_session() as session:
                # do database operations
                session.commit()

        Yields:
            SQLAlchemy Session object
        """
        if not self._initialized and not self.initialize():
            raise StorageUnavailable(f"Database at {self.db_path} is not available")

        session = self.SessionLocal()
        try:
            yield session
        except Exception as e:
            session.rollback()
            logger.debug(f"Database session rolled back: {type(e).__name__}: {e}")
            raise
        finally:
            session.close()

    def get_config(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """
        Get a configuration value by key.

        Args:
            key: Configuration key name
            default: Default value if key not found

        Returns:
            Configuration value as string
        """
        try:
            with self.get_session() as session:
                entry = session.query(SystemConfig).filter_by(key=key).first()
                return entry.value if entry else default
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Reading config {key} failed: {e}") from e

    def get_config_int(self, key: str, default: int = 0) -> int:
        """Get config value as integer."""
        value = self.get_config(key)
        try:
            return int(value) if value else default
        except ValueError:
            return default

    def get_config_float(self, key: str, default: float = 0.0) -> float:
        """Get config value as float."""
        value = self.get_config(key)
        try:
            return float(value) if value else default
        except ValueError:
            return default

    def set_config(self, key: str, value: str, description: Optional[str] = None):
        """
        Set a configuration value.

        Args:
            key: Configuration key name
            value: Configuration value
            description: Optional description
        """
        with self.get_session() as session:
            entry = session.query(SystemConfig).filter_by(key=key).first()
            if entry:
                entry.value = value
                entry.updated_at = datetime.utcnow()
                if description:
                    entry.description = description
            else:
                session.add(SystemConfig(key=key, value=value, description=description))
            session.commit()
            logger.info(f"Config updated: {key}={value}")

    def add_template(self, person_id: str, image, person_name: Optional[str] = None) -> int:
        """
        Store an enrolled fingerprint for a person, creating the person if needed.

        Args:
            person_id: Unique identifier of the person
            image: Encoded image bytes, base64/data URL text or a raster
            person_name: Optional display name

        Returns:
            Id of the stored template
        """
        pixels = decode_image(image)
        png = encode_png(pixels)

        try:
            with self.get_session() as session:
                person = session.query(Person).filter_by(person_id=person_id).first()
                if not person:
                    session.add(Person(person_id=person_id, person_name=person_name, is_active=True))
                    # The template row references persons; write the person first
                    session.flush()
                    logger.info(f"Created person record: {person_name or person_id}")
                elif person_name and not person.person_name:
                    person.person_name = person_name

                record = BiometricTemplateRecord(
                    person_id=person_id,
                    image_png=png,
                    width=int(pixels.shape[1]),
                    height=int(pixels.shape[0]),
                )
                session.add(record)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Storing template for {person_id} failed: {e}") from e

        logger.info(f"Stored template {record.id} for {person_id} ({record.width}x{record.height})")
        return record.id

    def load_roster(self) -> List[BiometricTemplate]:
        """
        Snapshot all templates of active persons, in enrollment order.
        Templates that cannot be decoded are logged and left out.
        """
        try:
            with self.get_session() as session:
                rows = (
                    session.query(BiometricTemplateRecord, Person.person_name)
                    .join(Person, Person.person_id == BiometricTemplateRecord.person_id)
                    .filter(Person.is_active.is_(True))
                    .order_by(BiometricTemplateRecord.id)
                    .all()
                )
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Loading roster failed: {e}") from e

        roster = []
        for record, person_name in rows:
            try:
                image = decode_image(record.image_png)
            except InvalidImage as e:
                logger.error(f"Unreadable template {record.id} for {record.person_id}: {e}")
                continue
            roster.append(BiometricTemplate(person_id=record.person_id, image=image, person_name=person_name))

        logger.debug(f"Roster snapshot: {len(roster)} templates")
        return roster

    def list_enrolled(self) -> List[dict]:
        """Enrolled active persons with their template counts (no images)."""
        try:
            with self.get_session() as session:
                rows = (
                    session.query(Person.person_id, Person.person_name, func.count(BiometricTemplateRecord.id))
                    .join(BiometricTemplateRecord, BiometricTemplateRecord.person_id == Person.person_id)
                    .filter(Person.is_active.is_(True))
                    .group_by(Person.person_id, Person.person_name)
                    .order_by(Person.person_id)
                    .all()
                )
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Listing enrolled persons failed: {e}") from e

        return [
            {"person_id": person_id, "person_name": person_name, "templates": count}
            for person_id, person_name, count in rows
        ]

    def get_stats(self) -> dict:
        """
        Get database statistics.

        Returns:
            Dictionary with counts and status info
        """
        from .models import AttendanceSession, ScanLog, SessionStatus

        try:
            with self.get_session() as session:
                return {
                    "database_path": str(self.db_path),
                    "total_persons": session.query(Person).count(),
                    "active_persons": session.query(Person).filter_by(is_active=True).count(),
                    "total_templates": session.query(BiometricTemplateRecord).count(),
                    "total_sessions": session.query(AttendanceSession).count(),
                    "open_sessions": session.query(AttendanceSession).filter_by(status=SessionStatus.OPEN.value).count(),
                    "total_scans": session.query(ScanLog).count(),
                    "initialized": self._initialized
                }
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Reading database statistics failed: {e}") from e

    def close(self):
        """Close database connection."""
        if self.engine:
            self.engine.dispose()
            logger.info("Database connection closed")


# Global singleton instance
_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """
    Get the global database manager instance.
    Creates and initializes if not already done.

    Returns:
        DatabaseManager singleton instance
    """
    global _db_manager

    if _db_manager is None:
        _db_manager = DatabaseManager()
        _db_manager.initialize()

    return _db_manager


def reset_db_manager():
    """Reset the global database manager (for testing)."""
    global _db_manager
    if _db_manager:
        _db_manager.close()
    _db_manager = None
