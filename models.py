from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text
from sqlalchemy.orm import validates

db = SQLAlchemy()

BOOK_STATUSES = ('online', 'offline')
ROLES = ('user', 'student', 'admin')


def utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class User(db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='user')
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    @validates('email')
    def _normalize_email(self, _key, value):
        return value.strip().lower()

    def to_dict(self):
        # password hash never leaves the model
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
        }


class Book(db.Model):
    __tablename__ = 'book'
    __table_args__ = (
        db.CheckConstraint('quantity >= 0', name='ck_book_quantity_nonnegative'),
        db.Index('ix_book_identity', 'title_lower', 'author_lower', 'genre_lower'),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    author = db.Column(db.String(100), nullable=False)
    genre = db.Column(db.String(50), nullable=False)
    title_lower = db.Column(db.String(200), nullable=False)
    author_lower = db.Column(db.String(100), nullable=False)
    genre_lower = db.Column(db.String(50), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(10), nullable=False, default='offline')
    pdf_data = db.Column(db.Text)  # base64
    pdf_name = db.Column(db.String(255))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @validates('title', 'author', 'genre')
    def _track_lowercase(self, key, value):
        value = value.strip()
        setattr(self, f'{key}_lower', value.lower())
        return value

    @property
    def available(self):
        return self.quantity > 0

    @property
    def has_pdf(self):
        return bool(self.pdf_data)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'author': self.author,
            'genre': self.genre,
            'quantity': self.quantity,
            'status': self.status,
            'available': self.available,
            'has_pdf': self.has_pdf,
            'pdf_name': self.pdf_name,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Loan(db.Model):
    __tablename__ = 'loan'
    # at most one open loan per (user, book)
    __table_args__ = (
        db.Index(
            'uq_loan_open', 'user_id', 'book_id', unique=True,
            sqlite_where=text('return_date IS NULL'),
            postgresql_where=text('return_date IS NULL'),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    book_id = db.Column(db.Integer, db.ForeignKey('book.id', ondelete='SET NULL'), nullable=True)
    borrow_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    return_date = db.Column(db.DateTime(timezone=True))
    user = db.relationship('User', backref='loans')
    book = db.relationship('Book', backref='loans')

    @property
    def is_open(self):
        return self.return_date is None

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'user_name': self.user.name if self.user else None,
            'user_role': self.user.role if self.user else None,
            'book_id': self.book_id,
            'book_title': self.book.title if self.book else None,
            'borrow_date': _iso(self.borrow_date),
            'return_date': _iso(self.return_date),
            'is_open': self.is_open,
        }
