"""
Spaced-repetition review for Marginalia notes.

A note is due when it has never been scheduled or its next review time has
passed. Each time a note is remembered its review count goes up by one and
the next review is pushed out by 2**count days, capped at 30. Forgotten notes
are not written back, so they stay due.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from user_data import Note, NotesStore, ReviewSession

MAX_INTERVAL_DAYS = 30
DEFAULT_REVIEW_LIMIT = 10
DEFAULT_SESSION_SIZE = 5


def next_interval_days(review_count: int) -> int:
    """Days until the next review after reaching review_count."""
    return min(2 ** review_count, MAX_INTERVAL_DAYS)


def is_due(note: Note, now: datetime) -> bool:
    return note.next_review_at is None or note.next_review_at <= now


class ReviewScheduler:
    """Selects notes for review and advances their schedule."""

    def __init__(self, store: NotesStore):
        self.store = store

    def due_notes(self, now: Optional[datetime] = None) -> List[Note]:
        """Due notes, in stored order."""
        now = now or self.store.now()
        return [n for n in self.store.notes.list() if is_due(n, now)]

    def get_notes_for_review(self, limit: int = DEFAULT_REVIEW_LIMIT) -> List[Note]:
        """Due notes, never-reviewed first, then the longest since last review."""
        due = self.due_notes()
        due.sort(key=lambda n: (n.last_reviewed_at is not None,
                                n.last_reviewed_at or datetime.min))
        return due[:limit]

    def create_review_session(self, note_count: int = DEFAULT_SESSION_SIZE,
                              note_ids: Optional[List[str]] = None) -> ReviewSession:
        """
        Start a review session.

        With no note_ids, picks up to note_count due notes, least-reviewed
        first (ties keep stored order). Explicit note_ids are used in the
        given order, minus any that match no note.
        """
        if note_ids:
            known = {n.id for n in self.store.notes.list()}
            selected = [nid for nid in note_ids if nid in known]
        else:
            due = self.due_notes()
            due.sort(key=lambda n: n.review_count)
            selected = [n.id for n in due[:note_count]]
        return self.store.review_sessions.add(selected)

    def mark_note_reviewed(self, note_id: str) -> Optional[Note]:
        """
        Record that the note was remembered.

        Only call this for a remembered note; nothing is stored for a
        forgotten one. Returns None if the note does not exist.
        """
        note = self.store.notes.get(note_id)
        if note is None:
            return None
        now = self.store.now()
        review_count = note.review_count + 1
        return self.store.notes.update(
            note_id,
            review_count=review_count,
            last_reviewed_at=now,
            next_review_at=now + timedelta(days=next_interval_days(review_count)),
        )

    def mark_note_reviewed_in_session(self, session_id: str, note_id: str) -> Optional[ReviewSession]:
        """
        Mark a session note as remembered and completed.
        Returns None if the session is unknown or the note is not in it.
        """
        session = self.store.review_sessions.get(session_id)
        if session is None or note_id not in session.note_ids:
            return None
        if self.mark_note_reviewed(note_id) is None:
            return None
        return self.store.review_sessions.mark_completed(session_id, note_id)

    def complete_review_session(self, session_id: str) -> Optional[ReviewSession]:
        return self.store.review_sessions.complete(session_id)
