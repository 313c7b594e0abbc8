import io
import logging
import sys

from flask import (Blueprint, Flask, g, jsonify, redirect, render_template,
                   request, send_file, url_for)
from flask_cors import CORS
from flask_jwt_extended import unset_jwt_cookies
from sqlalchemy.sql import text
from werkzeug.exceptions import HTTPException
from werkzeug.utils import secure_filename

import catalog
import lending
from auth import current_identity, init_auth, login_required
from config import Settings
from errors import BookHiveError, Forbidden, UserNotFound, ValidationError
from models import User, db

logger = logging.getLogger(__name__)

api = Blueprint('books', __name__)
pages = Blueprint('pages', __name__)


def create_app(settings=None):
    settings = settings or Settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.DEBUG),
                        format='%(asctime)s - %(levelname)s - %(message)s')

    app = Flask(__name__)
    app.config['SECRET_KEY'] = settings.secret_key
    app.config['TESTING'] = settings.testing
    app.config['SQLALCHEMY_DATABASE_URI'] = settings.database_url
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['MAX_CONTENT_LENGTH'] = settings.max_upload_size
    CORS(app, supports_credentials=True, origins=settings.cors_origins)

    db.init_app(app)
    init_auth(app, settings)
    app.register_blueprint(api)
    app.register_blueprint(pages)
    register_error_handlers(app)

    @app.before_request
    def log_request():
        logger.debug(f"Incoming request: {request.method} {request.path}")

    with app.app_context():
        db.create_all()
    return app


def register_error_handlers(app):
    @app.errorhandler(BookHiveError)
    def handle_domain_error(error):
        db.session.rollback()
        return jsonify({'message': error.message}), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        if request.path.startswith('/api/') or request.is_json:
            return jsonify({'message': error.description}), error.code
        return error

    @app.errorhandler(Exception)
    def handle_error(error):
        logger.error(f"Unhandled error: {str(error)}", exc_info=error)
        db.session.rollback()
        return jsonify({'message': 'An unexpected error occurred'}), 500


def _book_payload():
    if request.is_json:
        fields = request.get_json(silent=True)
        if not isinstance(fields, dict):
            raise ValidationError('Request body must be a JSON object')
    else:
        fields = request.form.to_dict()
    upload = request.files.get('pdfFile')
    pdf = None
    if upload is not None and upload.filename:
        pdf = (upload.read(), secure_filename(upload.filename) or 'document.pdf')
    return fields, pdf


def _resolve_borrower():
    """Pick whose loan this is: the session's user, or ``borrowerId`` for admins."""
    identity = current_identity()
    payload = request.get_json(silent=True) if request.is_json else None
    borrower_id = payload.get('borrowerId') if isinstance(payload, dict) else None
    if borrower_id in (None, ''):
        return identity.user_id
    try:
        borrower_id = int(borrower_id)
    except (TypeError, ValueError):
        raise ValidationError('borrowerId must be a user id')
    if identity.is_admin:
        if db.session.get(User, borrower_id) is None:
            raise UserNotFound()
        return borrower_id
    if borrower_id != identity.user_id:
        raise Forbidden('You can only borrow or return books for yourself')
    return borrower_id


# Catalog

@api.route('/api/books', methods=['GET'])
def get_books():
    books = catalog.search_books(request.args.get('search', ''))
    logger.debug(f"Fetched {len(books)} books")
    return jsonify([b.to_dict() for b in books]), 200


@api.route('/api/books', methods=['POST'])
@login_required(role='admin')
def add_book():
    fields, pdf = _book_payload()
    book, merged, _ = catalog.save_book(fields, pdf=pdf)
    if merged:
        return jsonify({'message': 'Book quantity updated', 'merged': True, 'book': book.to_dict()}), 200
    return jsonify({'message': 'New book added', 'merged': False, 'book': book.to_dict()}), 201


@api.route('/api/books/<int:book_id>', methods=['PUT'])
@login_required(role='admin')
def edit_book(book_id):
    fields, pdf = _book_payload()
    book, merged, _ = catalog.save_book(fields, pdf=pdf, book_id=book_id)
    message = 'Books merged due to duplicate update' if merged else 'Book updated'
    return jsonify({'message': message, 'merged': merged, 'book': book.to_dict()}), 200


@api.route('/api/books/<int:book_id>', methods=['DELETE'])
@login_required(role='admin')
def delete_book(book_id):
    catalog.delete_book(book_id)
    return jsonify({'message': 'Book deleted'}), 200


@api.route('/api/books/<int:book_id>/pdf', methods=['GET'])
def get_book_pdf(book_id):
    data, filename = catalog.get_pdf(book_id)
    return send_file(io.BytesIO(data), mimetype='application/pdf', download_name=filename)


# Lending

@api.route('/api/books/<int:book_id>/borrow', methods=['PATCH'])
@login_required()
def borrow_book(book_id):
    book = lending.borrow_book(book_id, _resolve_borrower())
    return jsonify({'message': 'Book borrowed successfully', 'book': book.to_dict()}), 200


@api.route('/api/books/<int:book_id>/return', methods=['PATCH'])
@login_required()
def return_book(book_id):
    book = lending.return_book(book_id, _resolve_borrower())
    return jsonify({'message': 'Book returned successfully', 'book': book.to_dict()}), 200


@api.route('/api/books/history', methods=['GET'])
@login_required()
def get_loan_history():
    loans = lending.loan_history(current_identity().user_id)
    logger.debug(f"Fetched {len(loans)} loans for user_id={current_identity().user_id}")
    return jsonify([loan.to_dict() for loan in loans]), 200


@api.route('/api/books/<int:book_id>/activeLoans', methods=['GET'])
@login_required()
def get_active_loans(book_id):
    loans = lending.active_loans(book_id)
    return jsonify([loan.to_dict() for loan in loans]), 200


@api.route('/api/books/stats/borrowed', methods=['GET'])
@login_required()
def get_borrow_stats():
    return jsonify({'borrowed': lending.borrowed_count(current_identity())}), 200


@api.route('/api/test-db', methods=['GET'])
def test_db():
    try:
        db.session.execute(text('SELECT 1'))
        return jsonify({'message': 'Database connection successful'}), 200
    except Exception as e:
        logger.error(f"Database test error: {str(e)}")
        return jsonify({'message': 'Database connection failed'}), 500


# Pages

@pages.route('/')
def home():
    response = redirect(url_for('auth.login_page'))
    unset_jwt_cookies(response)
    return response


@pages.route('/search')
@login_required(redirect_anonymous=True)
def search_page():
    return render_template('search.html', title='Search · BookHive')


@pages.route('/admin')
@login_required(role='admin', redirect_anonymous=True)
def admin_page():
    return render_template('admin.html', title='Admin · BookHive')


@pages.route('/student')
@login_required(redirect_anonymous=True)
def student_page():
    if g.identity.is_admin:
        return redirect(url_for('pages.admin_page'))
    return redirect(url_for('pages.search_page'))


def main():
    settings = Settings()
    try:
        app = create_app(settings)
        with app.app_context():
            db.session.execute(text('SELECT 1'))
    except Exception as e:
        logging.getLogger(__name__).error(f"Failed to initialize database: {str(e)}")
        sys.exit(1)
    logger.debug(f"Database connected: {settings.database_url}")
    app.run(host='0.0.0.0', port=settings.port, debug=not settings.is_production)


if __name__ == '__main__':
    main()
