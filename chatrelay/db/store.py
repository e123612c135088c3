import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from chatrelay.db.dbmodels import Transcript
from chatrelay.utils.models import Source

logger = logging.getLogger(__name__)


class TranscriptStore:
    """Durable record of every completed exchange.

    Writes are best effort: a failed insert is logged and reported as
    ``False`` so the reply that was already produced still reaches the user.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def create_transcript(self, prompt: str, reply: str, source: Source, session_id: Optional[str] = None) -> bool:
        db = self.session_factory()
        try:
            db.add(Transcript(
                prompt=prompt,
                reply=reply,
                source=Source(source).value,
                session_id=session_id,
                created_at=datetime.now(timezone.utc).replace(tzinfo=None),
            ))
            db.commit()
            logger.debug("💾 Saved %s transcript for session %s", Source(source).value, session_id or "anonymous")
            return True
        except Exception:
            db.rollback()
            logger.exception("❌ Error saving transcript for session %s", session_id or "anonymous")
            return False
        finally:
            db.close()

    def query_transcripts(self, session_id: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """Newest first, optionally restricted to one session."""
        db = self.session_factory()
        try:
            query = db.query(Transcript)
            if session_id:
                query = query.filter(Transcript.session_id == session_id)

            rows = query.order_by(Transcript.created_at.desc(), Transcript.id.desc()) \
                .offset(offset).limit(limit).all()

            return [
                {
                    "id": row.id,
                    "prompt": row.prompt,
                    "reply": row.reply,
                    "source": row.source,
                    "session_id": row.session_id,
                    "created_at": row.created_at,
                }
                for row in rows
            ]
        finally:
            db.close()

    def recent_exchanges(self, session_id: Optional[str], limit: int) -> List[Tuple[str, str]]:
        """Last ``limit`` (prompt, reply) pairs of a session, oldest first."""
        if not session_id or limit <= 0:
            return []

        db = self.session_factory()
        try:
            rows = db.query(Transcript) \
                .filter(Transcript.session_id == session_id) \
                .filter(Transcript.source != Source.ERROR.value) \
                .order_by(Transcript.created_at.desc(), Transcript.id.desc()) \
                .limit(limit).all()
            return [(row.prompt, row.reply) for row in reversed(rows)]
        except Exception:
            logger.exception("❌ Error loading history for session %s", session_id)
            return []
        finally:
            db.close()
