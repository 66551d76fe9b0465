"""
Export notes to Markdown, CSV and JSON, and re-import JSON backups.
"""

import csv
import io
import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from backing_store import dumps, rehydrate, serialize
from note_types import TYPE_GLYPHS, type_label
from user_data import Book, Note, NotesStore

CSV_HEADERS = ["Book", "Author", "Type", "Content", "Location", "Context", "Tags", "Created"]


@dataclass
class ImportBundle:
    """Books and notes read back from a JSON export."""
    books: List[Book] = field(default_factory=list)
    notes: List[Note] = field(default_factory=list)


def export_markdown(notes: List[Note], books: List[Book]) -> str:
    """Convert notes to Markdown, grouped by book."""
    book_map = {b.id: b for b in books}
    notes_by_book: Dict[str, List[Note]] = {}
    for note in notes:
        notes_by_book.setdefault(note.book_id, []).append(note)

    lines = ["# My Reading Notes", ""]
    for book_id, book_notes in notes_by_book.items():
        book = book_map.get(book_id)
        if book:
            lines.append(f"## {book.title}")
            lines.append(f"*by {book.author}*")
            lines.append("")

        for note in book_notes:
            glyph = TYPE_GLYPHS.get(note.type, "📝")
            lines.append(f"### {glyph} {type_label(note.type)}")
            if note.location:
                lines.append(f"*{note.location}*")
                lines.append("")
            lines.append(note.content)
            lines.append("")
            if note.context:
                lines.append(f"> {note.context}")
                lines.append("")
            if note.tags:
                lines.append("Tags: " + " ".join(f"#{t}" for t in note.tags))
                lines.append("")
            lines.append("---")
            lines.append("")

    return "\n".join(lines) + "\n"


def export_csv(notes: List[Note], books: List[Book]) -> str:
    """One row per note; fields with commas, quotes or newlines are quoted."""
    book_map = {b.id: b for b in books}
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for note in notes:
        book = book_map.get(note.book_id)
        writer.writerow([
            book.title if book else "",
            book.author if book else "",
            note.type,
            note.content,
            note.location or "",
            note.context or "",
            ", ".join(note.tags or []),
            note.created_at.isoformat(),
        ])
    return buffer.getvalue()


def export_json(notes: List[Note], books: List[Book]) -> str:
    """Full-fidelity backup with top-level "books" and "notes" arrays."""
    return dumps({
        "books": [serialize(b) for b in books],
        "notes": [serialize(n) for n in notes],
    })


def _fill_updated_at(raw):
    if isinstance(raw, dict) and not raw.get("updated_at") and raw.get("created_at"):
        return {**raw, "updated_at": raw["created_at"]}
    return raw


def import_json(text: str) -> Optional[ImportBundle]:
    """
    Parse a JSON export. Returns None for anything that is not a valid
    export; never raises.
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    raw_books = data.get("books")
    raw_notes = data.get("notes")
    if not isinstance(raw_books, list) or not isinstance(raw_notes, list):
        return None

    try:
        books = [rehydrate(Book, b) for b in raw_books]
        notes = [rehydrate(Note, _fill_updated_at(n)) for n in raw_notes]
    except (TypeError, ValueError) as e:
        print(f"Error importing notes: {e}")
        return None

    return ImportBundle(books=books, notes=notes)


def merge_import(store: NotesStore, bundle: ImportBundle) -> Tuple[int, int]:
    """Append an imported bundle to the store. Returns (books_added, notes_added)."""
    store.import_bundle(bundle.books, bundle.notes)
    return len(bundle.books), len(bundle.notes)
