"""Tests for the user_data module."""

from datetime import datetime

import pytest

from user_data import (
    Book,
    DateRange,
    FilterSpec,
    Note,
    NotesStore,
    generate_id,
)


class TestNotesStore:
    """Tests for NotesStore wiring and persistence."""

    def test_generate_id_unique(self):
        assert generate_id() != generate_id()

    def test_data_survives_new_store(self, store, temp_data_dir):
        book = store.books.add("Dune", "Frank Herbert")
        store.notes.add(book.id, "quote", "Fear is the mind-killer.")

        reopened = NotesStore(temp_data_dir)
        assert [b.title for b in reopened.books.list()] == ["Dune"]
        assert reopened.notes.list()[0].content == "Fear is the mind-killer."

    def test_injected_id_and_clock(self, store, clock):
        book = store.books.add("Dune", "Frank Herbert")
        assert book.id == "id-1"
        assert book.created_at == clock.current


class TestBooks:
    """Tests for book CRUD."""

    def test_add_book_defaults(self, store):
        book = store.books.add("Dune", "Frank Herbert")
        assert book.format == "physical"
        assert book.notes_count == 0
        assert store.books.get(book.id) == book

    def test_add_book_records_activity(self, store):
        store.books.add("Dune", "Frank Herbert")
        assert store.activity.get_activity_dates() == ["2024-03-15"]

    def test_invalid_format_rejected(self, store):
        with pytest.raises(ValueError):
            store.books.add("Dune", "Frank Herbert", format="scroll")
        assert store.books.list() == []

    def test_update_book(self, store, book):
        updated = store.books.update(book.id, title="Dune Messiah", tags=["scifi"])
        assert updated.title == "Dune Messiah"
        assert store.books.get(book.id).tags == ["scifi"]
        assert updated.created_at == book.created_at

    def test_update_unknown_book_returns_none(self, store):
        assert store.books.update("missing", title="x") is None

    def test_update_protected_field_rejected(self, store, book):
        with pytest.raises(ValueError):
            store.books.update(book.id, notes_count=10)
        with pytest.raises(ValueError):
            store.books.update(book.id, id="other")

    def test_update_unknown_field_rejected(self, store, book):
        with pytest.raises(ValueError):
            store.books.update(book.id, rating=5)

    def test_remove_unknown_book_is_noop(self, store, book):
        store.books.remove("missing")
        assert len(store.books.list()) == 1

    def test_reorder_partial(self, store):
        a = store.books.add("A", "x")
        b = store.books.add("B", "x")
        c = store.books.add("C", "x")
        ordered = store.books.reorder([c.id, a.id])
        assert [bk.title for bk in ordered] == ["C", "A", "B"]
        assert [bk.title for bk in store.books.list()] == ["C", "A", "B"]

    def test_reorder_drops_unknown_ids(self, store):
        a = store.books.add("A", "x")
        b = store.books.add("B", "x")
        store.books.reorder(["ghost", b.id, b.id])
        assert [bk.id for bk in store.books.list()] == [b.id, a.id]


class TestNoteCounter:
    """Tests that notes_count always equals the number of the book's notes."""

    def test_add_increments(self, store, book):
        store.notes.add(book.id, "idea", "one")
        store.notes.add(book.id, "idea", "two")
        assert store.books.get(book.id).notes_count == 2

    def test_remove_decrements(self, store, book):
        note = store.notes.add(book.id, "idea", "one")
        store.notes.remove(note.id)
        assert store.books.get(book.id).notes_count == 0
        assert store.notes.list() == []

    def test_remove_unknown_note_is_noop(self, store, book):
        store.notes.add(book.id, "idea", "one")
        store.notes.remove("missing")
        assert store.books.get(book.id).notes_count == 1

    def test_moving_note_moves_count(self, store, book):
        other = store.books.add("Emma", "Jane Austen")
        note = store.notes.add(book.id, "idea", "one")
        store.notes.update(note.id, book_id=other.id)
        assert store.books.get(book.id).notes_count == 0
        assert store.books.get(other.id).notes_count == 1

    def test_dangling_book_id_tolerated(self, store):
        note = store.notes.add("no-such-book", "idea", "orphan")
        assert store.notes.get(note.id) is not None
        store.notes.remove(note.id)
        assert store.notes.list() == []

    def test_count_never_negative(self, store, book):
        store.backing.set("books", [{**store.backing.get("books")[0], "notes_count": 0}])
        store.backing.set("notes", [{
            "id": "n1", "book_id": book.id, "type": "idea", "content": "x",
            "created_at": "2024-03-15T10:00:00", "updated_at": "2024-03-15T10:00:00",
        }])
        store.notes.remove("n1")
        assert store.books.get(book.id).notes_count == 0


class TestNotes:
    """Tests for note CRUD, search and filters."""

    def test_add_note(self, store, book, clock):
        note = store.notes.add(book.id, "quote", "Fear is the mind-killer.",
                               location="p. 8", tags=["fear"])
        assert note.media_type == "text"
        assert note.is_private is True
        assert note.review_count == 0
        assert note.next_review_at is None
        assert note.created_at == note.updated_at == clock.current
        assert note.location == "p. 8"

    def test_add_note_invalid_type(self, store, book):
        with pytest.raises(ValueError):
            store.notes.add(book.id, "rant", "x")
        assert store.books.get(book.id).notes_count == 0

    def test_add_note_invalid_media_type(self, store, book):
        with pytest.raises(ValueError):
            store.notes.add(book.id, "idea", "x", media_type="video")

    def test_add_note_unknown_field(self, store, book):
        with pytest.raises(ValueError):
            store.notes.add(book.id, "idea", "x", mood="happy")

    def test_update_refreshes_updated_at(self, store, book, clock):
        note = store.notes.add(book.id, "idea", "draft")
        clock.advance(hours=1)
        updated = store.notes.update(note.id, content="final")
        assert updated.content == "final"
        assert updated.updated_at == clock.current
        assert updated.created_at == note.created_at

    def test_update_invalid_type(self, store, book):
        note = store.notes.add(book.id, "idea", "x")
        with pytest.raises(ValueError):
            store.notes.update(note.id, type="rant")

    def test_update_updated_at_rejected(self, store, book):
        note = store.notes.add(book.id, "idea", "x")
        with pytest.raises(ValueError):
            store.notes.update(note.id, updated_at=datetime(2000, 1, 1))

    def test_update_unknown_note_returns_none(self, store):
        assert store.notes.update("missing", content="x") is None

    def test_list_for_book(self, store, book):
        other = store.books.add("Emma", "Jane Austen")
        store.notes.add(book.id, "idea", "a")
        store.notes.add(other.id, "idea", "b")
        assert [n.content for n in store.notes.list_for_book(book.id)] == ["a"]

    def test_search(self, store, book):
        store.notes.add(book.id, "idea", "Spice must flow")
        store.notes.add(book.id, "idea", "water", context="The SPICE economy")
        store.notes.add(book.id, "idea", "sand", tags=["spicy"])
        store.notes.add(book.id, "idea", "worms")
        assert [n.content for n in store.notes.search("spice")] == ["Spice must flow", "water"]
        assert len(store.notes.search("spic")) == 3

    def test_all_tags(self, store, book):
        store.notes.add(book.id, "idea", "a", tags=["b", "a"])
        store.notes.add(book.id, "idea", "b", tags=["a", "c"])
        assert store.notes.all_tags() == ["a", "b", "c"]

    def test_filter_requires_all_tags(self, store, book):
        store.notes.add(book.id, "idea", "both", tags=["x", "y"])
        store.notes.add(book.id, "idea", "one", tags=["x"])
        matched = store.notes.apply_filter(FilterSpec(tags=["x", "y"]))
        assert [n.content for n in matched] == ["both"]

    def test_filter_by_type_and_book(self, store, book):
        other = store.books.add("Emma", "Jane Austen")
        store.notes.add(book.id, "quote", "q1")
        store.notes.add(book.id, "idea", "i1")
        store.notes.add(other.id, "quote", "q2")
        matched = store.notes.apply_filter(FilterSpec(book_ids=[book.id], types=["quote"]))
        assert [n.content for n in matched] == ["q1"]

    def test_filter_date_range_inclusive(self, store, book, clock):
        first = store.notes.add(book.id, "idea", "first")
        clock.advance(days=2)
        store.notes.add(book.id, "idea", "later")
        spec = FilterSpec(date_range=DateRange(start=first.created_at, end=first.created_at))
        assert [n.content for n in store.notes.apply_filter(spec)] == ["first"]

    def test_empty_filter_matches_all(self, store, book):
        store.notes.add(book.id, "idea", "a")
        store.notes.add(book.id, "quote", "b")
        assert len(store.notes.apply_filter(FilterSpec())) == 2


class TestCascades:
    """Tests for deletes that touch other collections."""

    def test_remove_book_removes_its_notes(self, store, book):
        other = store.books.add("Emma", "Jane Austen")
        store.notes.add(book.id, "idea", "a")
        store.notes.add(book.id, "idea", "b")
        kept = store.notes.add(other.id, "idea", "c")
        store.books.remove(book.id)
        assert store.books.get(book.id) is None
        assert [n.id for n in store.notes.list()] == [kept.id]

    def test_remove_folder_unfiles_notes(self, store, book):
        folder = store.folders.add("Favorites", color="#ff0")
        note = store.notes.add(book.id, "idea", "a", folder_id=folder.id)
        store.folders.remove(folder.id)
        assert store.folders.list() == []
        remaining = store.notes.get(note.id)
        assert remaining is not None
        assert remaining.folder_id is None


class TestCollections:
    """Tests for collections of notes."""

    def test_add_and_remove_notes(self, store, book):
        a = store.notes.add(book.id, "idea", "a")
        b = store.notes.add(book.id, "idea", "b")
        collection = store.collections.add("Best of", description="favorites")
        store.collections.add_note(collection.id, b.id)
        store.collections.add_note(collection.id, a.id)
        store.collections.add_note(collection.id, a.id)
        assert store.collections.get(collection.id).note_ids == [b.id, a.id]

        store.collections.remove_note(collection.id, b.id)
        assert store.collections.get(collection.id).note_ids == [a.id]

    def test_unknown_collection(self, store):
        assert store.collections.add_note("missing", "n1") is None
        assert store.collections.remove_note("missing", "n1") is None
        assert store.collections.notes_in("missing") == []

    def test_deleted_notes_skipped(self, store, book):
        a = store.notes.add(book.id, "idea", "a")
        b = store.notes.add(book.id, "idea", "b")
        collection = store.collections.add("Best of", note_ids=[a.id, b.id])
        store.notes.remove(a.id)
        assert store.collections.get(collection.id).note_ids == [a.id, b.id]
        assert [n.id for n in store.collections.notes_in(collection.id)] == [b.id]


class TestSavedFilters:
    """Tests for saved filters."""

    def test_apply_saved_filter(self, store, book):
        store.notes.add(book.id, "quote", "q")
        store.notes.add(book.id, "idea", "i")
        saved = store.saved_filters.add("Quotes", FilterSpec(types=["quote"]))
        assert store.saved_filters.get(saved.id).filters.types == ["quote"]
        assert [n.content for n in store.saved_filters.apply(saved.id)] == ["q"]

    def test_apply_unknown_filter(self, store):
        assert store.saved_filters.apply("missing") is None


class TestImportBundle:
    """Tests for appending imported records."""

    def test_appends_without_touching_counters(self, store, book):
        imported_book = Book(id="ext-b", title="Emma", author="Jane Austen", notes_count=3)
        imported_note = Note(id="ext-n", book_id="ext-b", type="idea", content="x")
        store.import_bundle([imported_book], [imported_note])
        assert [b.id for b in store.books.list()] == [book.id, "ext-b"]
        assert store.books.get("ext-b").notes_count == 3
        assert store.notes.get("ext-n") is not None
