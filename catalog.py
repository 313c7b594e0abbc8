"""Book catalog. Title, author and genre match case-insensitively; a write that
collides with another book adds to its quantity instead."""
import base64
import logging
import math

from sqlalchemy import or_

from errors import BookNotFound, PdfNotFound, ValidationError
from models import BOOK_STATUSES, Book, db

logger = logging.getLogger(__name__)

MAX_QUANTITY = 2 ** 31 - 1


def _clean(value):
    return str(value if value is not None else '').strip()


def coerce_quantity(value):
    """Turn form/JSON input into an int; anything non-numeric counts as 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return int(number)


def validate_fields(fields):
    title = _clean(fields.get('title'))
    author = _clean(fields.get('author'))
    genre = _clean(fields.get('genre'))
    if not title or not author or not genre:
        raise ValidationError('Title, author and genre are required')
    quantity = coerce_quantity(fields.get('quantity'))
    if quantity < 0:
        raise ValidationError('Quantity cannot be negative')
    if quantity > MAX_QUANTITY:
        raise ValidationError('Quantity is too large')
    status = _clean(fields.get('status')).lower() or None
    if status and status not in BOOK_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(BOOK_STATUSES)}")
    return title, author, genre, quantity, status


def list_books():
    return Book.query.order_by(Book.title_lower, Book.id).all()


def search_books(term):
    term = _clean(term).lower()
    if not term:
        return list_books()
    return Book.query.filter(or_(
        Book.title_lower.contains(term, autoescape=True),
        Book.author_lower.contains(term, autoescape=True),
        Book.genre_lower.contains(term, autoescape=True),
    )).order_by(Book.title_lower, Book.id).all()


def get_book(book_id):
    book = db.session.get(Book, book_id)
    if book is None:
        logger.debug(f"Book not found: book_id={book_id}")
        raise BookNotFound()
    return book


def find_duplicate(title, author, genre, exclude_id=None):
    query = Book.query.filter_by(
        title_lower=title.lower(),
        author_lower=author.lower(),
        genre_lower=genre.lower(),
    )
    if exclude_id is not None:
        query = query.filter(Book.id != exclude_id)
    return query.order_by(Book.id).first()


def _attach_pdf(book, pdf):
    data, filename = pdf
    book.pdf_data = base64.b64encode(data).decode('ascii')
    book.pdf_name = filename


def _resolve_status(status, pdf, is_update, fallback):
    # a fresh upload on update always publishes the book
    if is_update and pdf:
        return 'online'
    if status:
        return status
    if pdf:
        return 'online'
    return fallback


def save_book(fields, pdf=None, book_id=None):
    """Create (``book_id`` is None) or update a book, merging duplicates.

    ``pdf`` is an optional ``(bytes, filename)`` pair. Returns
    ``(book, merged, created)``.
    """
    title, author, genre, quantity, status = validate_fields(fields)
    is_update = book_id is not None
    book = get_book(book_id) if is_update else None

    duplicate = find_duplicate(title, author, genre, exclude_id=book_id)
    if duplicate is not None:
        if duplicate.quantity + quantity > MAX_QUANTITY:
            raise ValidationError('Quantity is too large')
        duplicate.quantity += quantity
        duplicate.status = _resolve_status(status, pdf, is_update, duplicate.status)
        if pdf:
            _attach_pdf(duplicate, pdf)
        if book is not None:
            db.session.delete(book)
        db.session.commit()
        if is_update:
            logger.debug(f"Books merged: book_id={book_id} into book_id={duplicate.id}")
        else:
            logger.debug(f"Book quantity updated: book_id={duplicate.id}, +{quantity}")
        return duplicate, True, False

    if book is None:
        book = Book(
            title=title,
            author=author,
            genre=genre,
            quantity=quantity,
            status=_resolve_status(status, pdf, False, 'offline'),
        )
        if pdf:
            _attach_pdf(book, pdf)
        db.session.add(book)
        db.session.commit()
        logger.debug(f"Book added: {title} (book_id={book.id})")
        return book, False, True

    book.title = title
    book.author = author
    book.genre = genre
    book.quantity = quantity
    if pdf:
        _attach_pdf(book, pdf)
    book.status = _resolve_status(status, pdf, True, 'online' if book.has_pdf else 'offline')
    db.session.commit()
    logger.debug(f"Book updated: book_id={book.id}")
    return book, False, False


def delete_book(book_id):
    book = get_book(book_id)
    db.session.delete(book)
    db.session.commit()
    logger.debug(f"Book deleted: book_id={book_id}")


def get_pdf(book_id):
    book = db.session.get(Book, book_id)
    if book is None or not book.pdf_data:
        raise PdfNotFound()
    return base64.b64decode(book.pdf_data), book.pdf_name or f'book-{book_id}.pdf'
