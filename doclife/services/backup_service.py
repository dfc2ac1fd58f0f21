"""
Database backup service.

Snapshots a file-based SQLite database into ``BACKUP_DIR`` and records each
attempt as a BackupRecord. Other engines (and in-memory SQLite) are not
copied; the attempt is recorded as failed so the backup task reports it.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
from datetime import datetime

from flask import current_app
from sqlalchemy import func, select

from doclife.models import db
from doclife.models.auth import User
from doclife.models.document import Document
from doclife.models.scheduling import BackupRecord
from doclife.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

_CHUNK = 1024 * 1024


def _sha256(path: str) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


class BackupUnsupportedError(RuntimeError):
    """The configured database cannot be snapshotted by file copy."""


class BackupService:

    @staticmethod
    def _database_file() -> str:
        url = db.engine.url
        if url.get_backend_name() != "sqlite" or url.database in (None, "", ":memory:"):
            raise BackupUnsupportedError(
                f"Backups need a file-based SQLite database, not {url.get_backend_name()}"
                + (" (in-memory)" if url.get_backend_name() == "sqlite" else "")
            )
        return url.database

    @classmethod
    def create_backup(
        cls,
        backup_type: str = "full",
        created_by: int | None = None,
        is_automatic: bool = True,
        now: datetime | None = None,
    ) -> BackupRecord:
        """Copy the database file and record the outcome. Never raises for copy errors."""
        now = as_utc(now) if now else utcnow()
        record = BackupRecord(
            type=backup_type,
            status="in_progress",
            created_by=created_by,
            is_automatic=is_automatic,
            started_at=now,
            documents_count=db.session.execute(select(func.count(Document.id))).scalar_one(),
            users_count=db.session.execute(select(func.count(User.id))).scalar_one(),
        )
        db.session.add(record)
        db.session.flush()

        try:
            source = cls._database_file()
            backup_dir = current_app.config["BACKUP_DIR"]
            os.makedirs(backup_dir, exist_ok=True)
            filename = f"backup-{backup_type}-{now.strftime('%Y%m%d-%H%M%S')}-{record.id}.db"
            target = os.path.join(backup_dir, filename)
            shutil.copy2(source, target)
        except (BackupUnsupportedError, OSError) as exc:
            record.status = "failed"
            record.error = str(exc)
            record.completed_at = utcnow()
            db.session.commit()
            logger.error("Backup %s failed: %s", record.id, exc)
            return record

        record.filename = filename
        record.filepath = target
        record.file_size = os.path.getsize(target)
        record.file_hash = _sha256(target)
        record.status = "completed"
        record.completed_at = utcnow()
        db.session.commit()
        logger.info("Backup %s written: %s (%d bytes)", record.id, filename, record.file_size)
        return record

    @staticmethod
    def cleanup_old_backups(keep: int | None = None) -> int:
        """Keep the newest *keep* completed backups; delete older files and records."""
        keep = keep if keep is not None else current_app.config.get("BACKUP_KEEP", 10)
        old = db.session.execute(
            select(BackupRecord)
            .where(BackupRecord.status == "completed")
            .order_by(BackupRecord.started_at.desc(), BackupRecord.id.desc())
            .offset(keep)
        ).scalars().all()

        for record in old:
            if record.filepath:
                try:
                    os.remove(record.filepath)
                except FileNotFoundError:
                    logger.warning("Backup file already gone: %s", record.filepath)
            db.session.delete(record)
        db.session.commit()
        if old:
            logger.info("Removed %d old backups", len(old))
        return len(old)
