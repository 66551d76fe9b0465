"""
Registers an ebook on the shelf from an EPUB file's metadata and cover.
"""

import os
import re
from dataclasses import dataclass, field
from typing import List, Optional

import ebooklib
from ebooklib import epub

from user_data import Book, NotesStore

_ISBN_PATTERN = re.compile(r"\d{13}|\d{9}[\dX]")


@dataclass
class EpubMetadata:
    title: str
    authors: List[str] = field(default_factory=list)
    identifiers: List[str] = field(default_factory=list)
    isbn: Optional[str] = None


def find_isbn(identifiers: List[str]) -> Optional[str]:
    """First identifier that looks like an ISBN-10 or ISBN-13, normalized."""
    for identifier in identifiers:
        value = str(identifier).strip().upper()
        for prefix in ("URN:ISBN:", "ISBN:", "ISBN"):
            if value.startswith(prefix):
                value = value[len(prefix):]
                break
        value = value.replace("-", "").replace(" ", "")
        if _ISBN_PATTERN.fullmatch(value):
            return value
    return None


def metadata_from_book(epub_book) -> EpubMetadata:
    """
    Extracts metadata handling both single and list values.
    """
    def get_list(key):
        data = epub_book.get_metadata('DC', key)
        return [x[0] for x in data] if data else []

    def get_one(key):
        data = epub_book.get_metadata('DC', key)
        return data[0][0] if data else None

    identifiers = get_list('identifier')
    return EpubMetadata(
        title=get_one('title') or "Untitled",
        authors=get_list('creator'),
        identifiers=identifiers,
        isbn=find_isbn(identifiers),
    )


def read_epub_metadata(path: str) -> EpubMetadata:
    return metadata_from_book(epub.read_epub(path))


def _safe_filename(name: str, default: str = "cover.jpg") -> str:
    original_fname = os.path.basename(name)
    safe_fname = "".join(
        [c for c in original_fname if c.isalpha() or c.isdigit() or c in '._-']
    ).strip()
    return safe_fname or default


def _save_image(item, images_dir: str) -> str:
    os.makedirs(images_dir, exist_ok=True)
    local_path = os.path.join(images_dir, _safe_filename(item.get_name()))
    with open(local_path, 'wb') as f:
        f.write(item.get_content())
    return local_path


def extract_cover(epub_book, images_dir: str) -> Optional[str]:
    """
    Save the EPUB's cover image into images_dir.

    Tries ebooklib's declared cover, then an image whose name mentions
    cover/front, then the first image. Returns the saved path or None.
    """
    try:
        cover_item = epub_book.get_cover()
        if cover_item:
            path = _save_image(cover_item, images_dir)
            print(f"Extracted cover image: {path}")
            return path
    except Exception as e:
        print(f"Could not extract cover using get_cover(): {e}")

    images = [item for item in epub_book.get_items()
              if item.get_type() == ebooklib.ITEM_IMAGE]

    for item in images:
        name_lower = item.get_name().lower()
        if any(pattern in name_lower for pattern in ['cover', 'front']):
            path = _save_image(item, images_dir)
            print(f"Found cover by pattern: {path}")
            return path

    if images:
        path = _save_image(images[0], images_dir)
        print(f"Using first image as cover: {path}")
        return path

    print("Warning: No cover image found")
    return None


def add_book_from_epub(store: NotesStore, path: str,
                       images_dir: Optional[str] = None,
                       tags: Optional[List[str]] = None) -> Book:
    """
    Add an ebook to the shelf from an EPUB file.

    Authors are joined with ", " ("Unknown" when none are listed). The
    cover is only extracted when images_dir is given.
    """
    print(f"Loading {path}...")
    epub_book = epub.read_epub(path)
    metadata = metadata_from_book(epub_book)

    cover_url = extract_cover(epub_book, images_dir) if images_dir else None

    return store.books.add(
        title=metadata.title,
        author=", ".join(metadata.authors) or "Unknown",
        cover_url=cover_url,
        isbn=metadata.isbn,
        format="ebook",
        tags=tags,
    )
