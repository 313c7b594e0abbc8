"""Borrow and return, plus the loan-ledger queries."""
import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from catalog import get_book
from errors import AlreadyBorrowed, BookNotAvailable, NoActiveLoan, NotAuthenticated
from models import Book, Loan, db, utcnow

logger = logging.getLogger(__name__)

MAX_QUANTITY = 2 ** 31 - 1


def find_open_loan(user_id, book_id):
    return Loan.query.filter(
        Loan.user_id == user_id,
        Loan.book_id == book_id,
        Loan.return_date.is_(None),
    ).first()


def borrow_book(book_id, user_id):
    book = get_book(book_id)
    if book.quantity <= 0:
        logger.debug(f"Book not available: book_id={book_id}")
        raise BookNotAvailable()
    if user_id is None:
        raise NotAuthenticated()
    if find_open_loan(user_id, book.id) is not None:
        logger.debug(f"Already borrowed: book_id={book_id} user_id={user_id}")
        raise AlreadyBorrowed()

    now = utcnow()
    result = db.session.execute(
        update(Book)
        .where(Book.id == book.id, Book.quantity > 0)
        .values(quantity=Book.quantity - 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise BookNotAvailable()
    db.session.add(Loan(user_id=user_id, book_id=book.id, borrow_date=now))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.debug(f"Concurrent borrow rejected: book_id={book_id} user_id={user_id}")
        raise AlreadyBorrowed()

    db.session.refresh(book)
    logger.debug(f"Book borrowed: book_id={book_id} by user_id={user_id}")
    return book


def return_book(book_id, user_id):
    book = get_book(book_id)
    if user_id is None:
        raise NotAuthenticated()
    loan = find_open_loan(user_id, book.id)
    if loan is None:
        logger.debug(f"No active loan: book_id={book_id} user_id={user_id}")
        raise NoActiveLoan()

    now = utcnow()
    result = db.session.execute(
        update(Loan)
        .where(Loan.id == loan.id, Loan.return_date.is_(None))
        .values(return_date=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise NoActiveLoan()
    db.session.execute(
        update(Book)
        .where(Book.id == book.id)
        .values(quantity=Book.quantity + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()

    db.session.refresh(book)
    logger.debug(f"Book returned: book_id={book_id} by user_id={user_id}")
    return book


def loan_history(user_id):
    if user_id is None:
        return []
    return Loan.query.filter_by(user_id=user_id).order_by(
        Loan.borrow_date.desc(), Loan.id.desc()
    ).all()


def active_loans(book_id):
    book = get_book(book_id)
    return Loan.query.filter(
        Loan.book_id == book.id,
        Loan.return_date.is_(None),
    ).order_by(Loan.borrow_date).all()


def borrowed_count(identity):
    """Open loans across the library for admins, the caller's own otherwise."""
    query = Loan.query.filter(Loan.return_date.is_(None))
    if identity.is_admin:
        return query.count()
    if identity.user_id is None:
        return 0
    return query.filter(Loan.user_id == identity.user_id).count()
