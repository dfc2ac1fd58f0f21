"""
Document Lock Service.

Exclusive, time-boxed edit leases. A lock row whose ``expires_at`` has
passed is treated as absent: ``acquire`` and ``info`` delete it on sight,
and the ``cleanup_locks`` task sweeps the rest.

Acquisition never reads-then-writes: the unique constraint on
``document_locks.document_id`` arbitrates between concurrent callers, and
the loser gets ``LockConflictError``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from doclife.core.exceptions import ForbiddenError, LockConflictError, NotFoundError
from doclife.models import db
from doclife.models.audit import write_audit
from doclife.models.document import Document
from doclife.models.lock import DocumentInteraction, DocumentLock
from doclife.services.permission import Principal
from doclife.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


class DocumentLockService:
    """Stateless service class for document edit locks."""

    @staticmethod
    def lease_duration() -> timedelta:
        return timedelta(minutes=current_app.config.get("LOCK_DURATION_MINUTES", 30))

    @staticmethod
    def _current_lock(document_id: int) -> DocumentLock | None:
        return db.session.execute(
            select(DocumentLock).where(DocumentLock.document_id == document_id)
        ).scalar_one_or_none()

    @staticmethod
    def _record(document_id, user_id, action, session_id=None) -> None:
        db.session.add(DocumentInteraction(
            document_id=document_id, user_id=user_id, action=action, session_id=session_id,
        ))

    @staticmethod
    def _delete_expired(document_id: int, now: datetime) -> int:
        return db.session.execute(
            delete(DocumentLock)
            .where(DocumentLock.document_id == document_id, DocumentLock.expires_at < now)
            .execution_options(synchronize_session="fetch")
        ).rowcount

    # ── Acquire / renew ──────────────────────────────────────────────────

    @classmethod
    def acquire(
        cls,
        document_id: int,
        user_id: int,
        now: datetime | None = None,
        session_id: str | None = None,
    ) -> dict:
        """
        Take or renew the edit lock on a document.

        Returns:
            ``{"lock": ..., "renewed": bool}``.

        Raises:
            NotFoundError: no such document.
            LockConflictError: another user holds an unexpired lock.
        """
        now = as_utc(now) if now else utcnow()
        if db.session.get(Document, document_id) is None:
            raise NotFoundError("Document", document_id)
        expires_at = now + cls.lease_duration()

        if cls._delete_expired(document_id, now):
            cls._record(document_id, None, "expire")
            logger.debug("Reclaimed expired lock on document %s", document_id,
                         extra={"document_id": document_id})

        values = {"expires_at": expires_at}
        if session_id:
            values["session_id"] = session_id
        renewed = db.session.execute(
            update(DocumentLock)
            .where(
                DocumentLock.document_id == document_id,
                DocumentLock.user_id == user_id,
                DocumentLock.expires_at >= now,
            )
            .values(**values)
            .execution_options(synchronize_session="fetch")
        ).rowcount
        if renewed:
            cls._record(document_id, user_id, "renew", session_id)
            db.session.commit()
            lock = cls._current_lock(document_id)
            return {"lock": lock.to_dict(now=now), "renewed": True}

        lock = DocumentLock(
            document_id=document_id,
            user_id=user_id,
            session_id=session_id,
            locked_at=now,
            expires_at=expires_at,
        )
        db.session.add(lock)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise cls._conflict(document_id, now)

        cls._record(document_id, user_id, "lock", session_id)
        write_audit(
            entity_type="document_lock",
            entity_id=lock.id,
            action="lock.acquire",
            actor_user_id=user_id,
            document_id=document_id,
            diff={"expires_at": expires_at.isoformat()},
        )
        db.session.commit()
        logger.info("Document %s locked by user %s", document_id, user_id,
                    extra={"document_id": document_id, "user_id": user_id})
        return {"lock": lock.to_dict(now=now), "renewed": False}

    @classmethod
    def _conflict(cls, document_id: int, now: datetime) -> LockConflictError:
        holder_lock = cls._current_lock(document_id)
        if holder_lock is None:
            # Released between our insert and this read
            return LockConflictError(document_id, None, None, 0)
        return LockConflictError(
            document_id,
            holder_lock.holder.to_summary() if holder_lock.holder else {"id": holder_lock.user_id},
            as_utc(holder_lock.expires_at),
            holder_lock.remaining_seconds(now),
        )

    # ── Release ──────────────────────────────────────────────────────────

    @classmethod
    def release(cls, document_id: int, principal: Principal, now: datetime | None = None) -> dict:
        """
        Release the caller's lock. An ADMIN may release anyone's lock.

        Releasing a document that is not locked (or whose lock has expired)
        succeeds with ``released: False``.
        """
        now = as_utc(now) if now else utcnow()
        lock = cls._current_lock(document_id)
        if lock is None:
            return {"released": False, "forced": False}
        if lock.is_expired(now):
            db.session.delete(lock)
            cls._record(document_id, None, "expire")
            db.session.commit()
            return {"released": False, "forced": False}

        forced = lock.user_id != principal.id
        if forced and not principal.is_admin:
            raise ForbiddenError("Document is locked by another user")

        holder_id = lock.user_id
        db.session.delete(lock)
        cls._record(document_id, principal.id, "force_unlock" if forced else "unlock")
        write_audit(
            entity_type="document_lock",
            entity_id=document_id,
            action="lock.force_release" if forced else "lock.release",
            actor_user_id=principal.id,
            document_id=document_id,
            diff={"holder_id": holder_id},
        )
        db.session.commit()
        logger.info("Document %s unlocked by user %s%s", document_id, principal.id,
                    " (forced)" if forced else "",
                    extra={"document_id": document_id, "user_id": principal.id})
        return {"released": True, "forced": forced}

    @classmethod
    def force_release(cls, document_id: int, actor_id: int | None = None) -> bool:
        """Unconditionally drop a document's lock. True if one was removed."""
        lock = cls._current_lock(document_id)
        if lock is None:
            return False
        holder_id = lock.user_id
        db.session.delete(lock)
        cls._record(document_id, actor_id, "force_unlock")
        write_audit(
            entity_type="document_lock",
            entity_id=document_id,
            action="lock.force_release",
            actor_user_id=actor_id,
            document_id=document_id,
            diff={"holder_id": holder_id},
        )
        db.session.commit()
        return True

    # ── Queries & housekeeping ───────────────────────────────────────────

    @classmethod
    def info(cls, document_id: int, caller_id: int | None = None, now: datetime | None = None) -> dict:
        """Lock status as seen by *caller_id*. An expired lock is deleted and reported free."""
        now = as_utc(now) if now else utcnow()
        lock = cls._current_lock(document_id)
        if lock is not None and lock.is_expired(now):
            db.session.delete(lock)
            cls._record(document_id, None, "expire")
            db.session.commit()
            lock = None

        if lock is None:
            return {
                "is_locked": False,
                "locked_by": None,
                "locked_at": None,
                "expires_at": None,
                "is_own_lock": False,
                "remaining_seconds": 0,
            }
        d = lock.to_dict(now=now)
        return {
            "is_locked": True,
            "locked_by": d["locked_by"],
            "locked_at": d["locked_at"],
            "expires_at": d["expires_at"],
            "is_own_lock": caller_id is not None and lock.user_id == caller_id,
            "remaining_seconds": d["remaining_seconds"],
        }

    @staticmethod
    def cleanup_expired(now: datetime | None = None) -> int:
        """Delete every lock whose lease has run out. Returns the count removed."""
        now = as_utc(now) if now else utcnow()
        removed = db.session.execute(
            delete(DocumentLock)
            .where(DocumentLock.expires_at < now)
            .execution_options(synchronize_session="fetch")
        ).rowcount
        db.session.commit()
        if removed:
            logger.info("Removed %d expired document locks", removed)
        return removed

    @staticmethod
    def interactions(document_id: int, limit: int = 50) -> list[dict]:
        rows = db.session.execute(
            select(DocumentInteraction)
            .where(DocumentInteraction.document_id == document_id)
            .order_by(DocumentInteraction.created_at.desc(), DocumentInteraction.id.desc())
            .limit(limit)
        ).scalars()
        return [r.to_dict() for r in rows]
