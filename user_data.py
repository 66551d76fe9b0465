"""
User data management for Marginalia.
Handles books, notes, folders, collections, saved filters and review sessions.
Every mutation loads the affected collection, changes it and writes it back,
so cross-entity rules (note counters, cascades) run as one logical step.
"""

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

from activity import ActivityTracker
from backing_store import (
    BOOKS_KEY,
    COLLECTIONS_KEY,
    FOLDERS_KEY,
    NOTES_KEY,
    REVIEW_SESSIONS_KEY,
    SAVED_FILTERS_KEY,
    BackingStore,
)
from note_types import BOOK_FORMATS, MEDIA_TYPES, NOTE_TYPES, BookFormat, MediaType, NoteType, is_valid_note_type


@dataclass
class Book:
    """A book on the shelf. notes_count is maintained by the store."""
    id: str
    title: str
    author: str
    cover_url: Optional[str] = None
    isbn: Optional[str] = None
    format: BookFormat = "physical"
    tags: Optional[List[str]] = None
    notes_count: int = 0
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class Flashcard:
    """Question/answer pair generated from a note."""
    question: str
    answer: str


@dataclass
class Note:
    """A quote, idea, question or action attached to a book."""
    id: str
    book_id: str
    type: NoteType
    content: str
    media_type: MediaType = "text"
    image_url: Optional[str] = None
    extracted_text: Optional[str] = None
    audio_url: Optional[str] = None
    audio_duration: Optional[int] = None
    transcript: Optional[str] = None
    location: Optional[str] = None  # page, chapter or timestamp label
    timestamp: Optional[str] = None  # audiobooks: "1:23:45"
    chapter: Optional[str] = None
    context: Optional[str] = None  # why it matters
    tags: Optional[List[str]] = None
    folder_id: Optional[str] = None
    ai_summary: Optional[str] = None
    ai_expanded: Optional[str] = None
    ai_flashcard: Optional[Flashcard] = None
    is_private: bool = True
    review_count: int = 0
    last_reviewed_at: Optional[datetime] = None
    next_review_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass
class Folder:
    """A folder notes can be filed into."""
    id: str
    name: str
    color: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class Collection:
    """A hand-picked, ordered list of notes."""
    id: str
    name: str
    description: Optional[str] = None
    note_ids: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class DateRange:
    start: datetime
    end: datetime


@dataclass
class FilterSpec:
    """Note filter criteria. Empty criteria match every note."""
    book_ids: Optional[List[str]] = None
    types: Optional[List[str]] = None
    folder_ids: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    date_range: Optional[DateRange] = None

    def matches(self, note: Note) -> bool:
        if self.book_ids and note.book_id not in self.book_ids:
            return False
        if self.types and note.type not in self.types:
            return False
        if self.folder_ids and note.folder_id not in self.folder_ids:
            return False
        if self.tags:
            note_tags = note.tags or []
            if not all(tag in note_tags for tag in self.tags):
                return False
        if self.date_range is not None:
            if not (self.date_range.start <= note.created_at <= self.date_range.end):
                return False
        return True


@dataclass
class SavedFilter:
    """A named FilterSpec."""
    id: str
    name: str
    filters: FilterSpec = field(default_factory=FilterSpec)
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class ReviewSession:
    """One review pass over a fixed set of notes."""
    id: str
    note_ids: List[str] = field(default_factory=list)
    completed_note_ids: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None


def generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def _find_index(items: list, entity_id: str) -> Optional[int]:
    for idx, item in enumerate(items):
        if item.id == entity_id:
            return idx
    return None


class _Repository:
    """CRUD over one entity collection."""

    key = ""
    entity_cls: type = object
    protected_fields = ("id", "created_at")

    def __init__(self, store: "NotesStore"):
        self.store = store

    def list(self) -> list:
        """All entities, in stored order."""
        return self.store.backing.load_collection(self.key, self.entity_cls)

    def _save(self, items: List) -> None:
        self.store.backing.save_collection(self.key, items)

    def get(self, entity_id: str):
        for item in self.list():
            if item.id == entity_id:
                return item
        return None

    def _check_changes(self, changes: Dict[str, object]) -> None:
        known = {f.name for f in fields(self.entity_cls)}
        for name in changes:
            if name not in known:
                raise ValueError(f"Unknown {self.entity_cls.__name__} field: {name}")
            if name in self.protected_fields:
                raise ValueError(f"{self.entity_cls.__name__}.{name} cannot be updated")

    def _merge(self, entity, changes: Dict[str, object]):
        return replace(entity, **changes)

    def update(self, entity_id: str, **changes):
        """Merge changes into an entity. Returns None if the id is unknown."""
        self._check_changes(changes)
        items = self.list()
        idx = _find_index(items, entity_id)
        if idx is None:
            return None
        items[idx] = self._merge(items[idx], changes)
        self._save(items)
        return items[idx]

    def remove(self, entity_id: str) -> None:
        """Delete an entity. Unknown ids are ignored."""
        items = self.list()
        remaining = [item for item in items if item.id != entity_id]
        if len(remaining) < len(items):
            self._save(remaining)
            self._after_remove(entity_id)

    def _after_remove(self, entity_id: str) -> None:
        pass


class BookRepository(_Repository):
    key = BOOKS_KEY
    entity_cls = Book
    protected_fields = ("id", "created_at", "notes_count")

    def add(self, title: str, author: str, cover_url: Optional[str] = None,
            isbn: Optional[str] = None, format: BookFormat = "physical",
            tags: Optional[List[str]] = None) -> Book:
        """Add a book and record today's activity."""
        _check_format(format)
        book = Book(
            id=self.store.new_id(),
            title=title,
            author=author,
            cover_url=cover_url,
            isbn=isbn,
            format=format,
            tags=tags,
            notes_count=0,
            created_at=self.store.now(),
        )
        books = self.list()
        books.append(book)
        self._save(books)
        self.store.activity.record_activity()
        return book

    def update(self, entity_id: str, **changes) -> Optional[Book]:
        if "format" in changes:
            _check_format(changes["format"])
        return super().update(entity_id, **changes)

    def _after_remove(self, entity_id: str) -> None:
        # Notes belong to exactly one book and go with it
        notes = self.store.notes.list()
        remaining = [n for n in notes if n.book_id != entity_id]
        if len(remaining) < len(notes):
            self.store.notes._save(remaining)

    def reorder(self, book_ids: List[str]) -> List[Book]:
        """
        Put books in the given order.

        Books not named in book_ids keep their relative order after the
        named ones; ids that match no book are dropped.
        """
        books = self.list()
        by_id = {b.id: b for b in books}
        ordered: List[Book] = []
        placed = set()
        for book_id in book_ids:
            if book_id in by_id and book_id not in placed:
                ordered.append(by_id[book_id])
                placed.add(book_id)
        ordered.extend(b for b in books if b.id not in placed)
        self._save(ordered)
        return ordered

    def _adjust_notes_count(self, book_id: str, delta: int) -> None:
        """Shift a book's counter; a missing book is skipped."""
        books = self.list()
        idx = _find_index(books, book_id)
        if idx is None:
            return
        book = books[idx]
        new_count = max(0, book.notes_count + delta)
        if new_count == book.notes_count:
            return
        books[idx] = replace(book, notes_count=new_count)
        self._save(books)


class NoteRepository(_Repository):
    key = NOTES_KEY
    entity_cls = Note
    protected_fields = ("id", "created_at", "updated_at")

    def add(self, book_id: str, type: NoteType, content: str, **extra) -> Note:
        """
        Add a note to a book.

        Bumps the book's notes_count (skipped if the book does not exist)
        and records today's activity. Optional Note fields (location,
        context, tags, folder_id, ...) may be passed as keyword arguments.
        """
        self._check_changes(extra)
        _check_note_type(type)
        if "media_type" in extra:
            _check_media_type(extra["media_type"])
        now = self.store.now()
        note = Note(
            id=self.store.new_id(),
            book_id=book_id,
            type=type,
            content=content,
            created_at=now,
            updated_at=now,
            **extra,
        )
        notes = self.list()
        notes.append(note)
        self._save(notes)
        self.store.books._adjust_notes_count(book_id, 1)
        self.store.activity.record_activity()
        return note

    def _merge(self, entity: Note, changes: Dict[str, object]) -> Note:
        return replace(entity, updated_at=self.store.now(), **changes)

    def update(self, entity_id: str, **changes) -> Optional[Note]:
        """Merge changes and refresh updated_at. Moving a note moves its count."""
        if "type" in changes:
            _check_note_type(changes["type"])
        if "media_type" in changes:
            _check_media_type(changes["media_type"])
        previous = self.get(entity_id)
        updated = super().update(entity_id, **changes)
        if updated is not None and updated.book_id != previous.book_id:
            self.store.books._adjust_notes_count(previous.book_id, -1)
            self.store.books._adjust_notes_count(updated.book_id, 1)
        return updated

    def remove(self, entity_id: str) -> None:
        """Delete a note and decrement its book's counter."""
        notes = self.list()
        note = next((n for n in notes if n.id == entity_id), None)
        if note is None:
            return
        self._save([n for n in notes if n.id != entity_id])
        self.store.books._adjust_notes_count(note.book_id, -1)

    def list_for_book(self, book_id: str) -> List[Note]:
        return [n for n in self.list() if n.book_id == book_id]

    def search(self, query: str) -> List[Note]:
        """Case-insensitive match on content, context, extracted text and tags."""
        query_lower = query.lower()
        return [
            n for n in self.list()
            if query_lower in n.content.lower()
            or (n.context and query_lower in n.context.lower())
            or (n.extracted_text and query_lower in n.extracted_text.lower())
            or any(query_lower in tag.lower() for tag in n.tags or [])
        ]

    def all_tags(self) -> List[str]:
        tags = set()
        for n in self.list():
            tags.update(n.tags or [])
        return sorted(tags)

    def apply_filter(self, spec: FilterSpec) -> List[Note]:
        return [n for n in self.list() if spec.matches(n)]


class FolderRepository(_Repository):
    key = FOLDERS_KEY
    entity_cls = Folder

    def add(self, name: str, color: Optional[str] = None) -> Folder:
        folder = Folder(id=self.store.new_id(), name=name, color=color,
                        created_at=self.store.now())
        folders = self.list()
        folders.append(folder)
        self._save(folders)
        return folder

    def _after_remove(self, entity_id: str) -> None:
        # Notes stay; they just leave the folder
        notes = self.store.notes.list()
        changed = False
        for idx, note in enumerate(notes):
            if note.folder_id == entity_id:
                notes[idx] = replace(note, folder_id=None)
                changed = True
        if changed:
            self.store.notes._save(notes)


class CollectionRepository(_Repository):
    key = COLLECTIONS_KEY
    entity_cls = Collection

    def add(self, name: str, description: Optional[str] = None,
            note_ids: Optional[List[str]] = None) -> Collection:
        collection = Collection(
            id=self.store.new_id(),
            name=name,
            description=description,
            note_ids=list(note_ids or []),
            created_at=self.store.now(),
        )
        collections = self.list()
        collections.append(collection)
        self._save(collections)
        return collection

    def add_note(self, collection_id: str, note_id: str) -> Optional[Collection]:
        """Append a note id (no duplicates). Returns None if the collection is unknown."""
        collection = self.get(collection_id)
        if collection is None:
            return None
        if note_id in collection.note_ids:
            return collection
        return self.update(collection_id, note_ids=collection.note_ids + [note_id])

    def remove_note(self, collection_id: str, note_id: str) -> Optional[Collection]:
        collection = self.get(collection_id)
        if collection is None:
            return None
        if note_id not in collection.note_ids:
            return collection
        return self.update(
            collection_id,
            note_ids=[nid for nid in collection.note_ids if nid != note_id],
        )

    def notes_in(self, collection_id: str) -> List[Note]:
        """Notes of a collection in collection order; ids of deleted notes are skipped."""
        collection = self.get(collection_id)
        if collection is None:
            return []
        by_id = {n.id: n for n in self.store.notes.list()}
        return [by_id[nid] for nid in collection.note_ids if nid in by_id]


class SavedFilterRepository(_Repository):
    key = SAVED_FILTERS_KEY
    entity_cls = SavedFilter

    def add(self, name: str, filters: Optional[FilterSpec] = None) -> SavedFilter:
        saved = SavedFilter(
            id=self.store.new_id(),
            name=name,
            filters=filters or FilterSpec(),
            created_at=self.store.now(),
        )
        saved_filters = self.list()
        saved_filters.append(saved)
        self._save(saved_filters)
        return saved

    def apply(self, filter_id: str) -> Optional[List[Note]]:
        """Notes matching a saved filter, or None if the filter is unknown."""
        saved = self.get(filter_id)
        if saved is None:
            return None
        return self.store.notes.apply_filter(saved.filters)


class ReviewSessionRepository(_Repository):
    key = REVIEW_SESSIONS_KEY
    entity_cls = ReviewSession

    def add(self, note_ids: List[str]) -> ReviewSession:
        session = ReviewSession(
            id=self.store.new_id(),
            note_ids=list(note_ids),
            completed_note_ids=[],
            created_at=self.store.now(),
        )
        sessions = self.list()
        sessions.append(session)
        self._save(sessions)
        return session

    def mark_completed(self, session_id: str, note_id: str) -> Optional[ReviewSession]:
        """
        Add a note to the session's completed list (once).
        Returns None if the session is unknown or the note is not part of it.
        """
        session = self.get(session_id)
        if session is None or note_id not in session.note_ids:
            return None
        if note_id in session.completed_note_ids:
            return session
        return self.update(
            session_id,
            completed_note_ids=session.completed_note_ids + [note_id],
        )

    def complete(self, session_id: str) -> Optional[ReviewSession]:
        return self.update(session_id, completed_at=self.store.now())


def _check_note_type(value: str) -> None:
    if not is_valid_note_type(value):
        raise ValueError(f"Invalid note type: {value!r} (expected one of {', '.join(NOTE_TYPES)})")


def _check_media_type(value: str) -> None:
    if value not in MEDIA_TYPES:
        raise ValueError(f"Invalid media type: {value!r}")


def _check_format(value: str) -> None:
    if value not in BOOK_FORMATS:
        raise ValueError(f"Invalid book format: {value!r}")


class NotesStore:
    """
    Handle to all Marginalia data in one directory.

    Build one at startup and pass it to whatever needs it. id_factory
    and clock can be swapped for deterministic values in tests.

    Usage:
        store = NotesStore("/path/to/data")
        book = store.books.add("Dune", "Frank Herbert")
        store.notes.add(book.id, "quote", "Fear is the mind-killer.")
    """

    def __init__(self, data_dir: str,
                 id_factory: Callable[[], str] = generate_id,
                 clock: Callable[[], datetime] = datetime.now):
        self.data_dir = data_dir
        self.backing = BackingStore(data_dir)
        self.new_id = id_factory
        self.now = clock
        self.books = BookRepository(self)
        self.notes = NoteRepository(self)
        self.folders = FolderRepository(self)
        self.collections = CollectionRepository(self)
        self.saved_filters = SavedFilterRepository(self)
        self.review_sessions = ReviewSessionRepository(self)
        self.activity = ActivityTracker(self)

    def import_bundle(self, books: List[Book], notes: List[Note]) -> None:
        """Append imported records as-is: no deduplication, no id remapping."""
        if books:
            self.books._save(self.books.list() + list(books))
        if notes:
            self.notes._save(self.notes.list() + list(notes))
