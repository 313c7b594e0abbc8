import pytest

from app import create_app
from config import AdminConfig, Settings
from models import Book, User, db

ADMIN_EMAIL = "admin@example.com"
ADMIN_SECRET = "supersecret"
USER_EMAIL = "testuser@example.com"
USER_PASSWORD = "password123"


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        secret_key="test-secret",
        jwt_secret_key="test-jwt-secret-that-is-long-enough-for-hs256",
        admin=AdminConfig(emails=frozenset({ADMIN_EMAIL}), password=ADMIN_SECRET),
        cors_origins=["http://localhost:3000"],
        environment="test",
        bcrypt_rounds=4,
        log_level="WARNING",
        testing=True,
    )


@pytest.fixture
def app(settings):
    app = create_app(settings)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """Application context for tests that call the service modules directly."""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


def signup(client, name="Test User", email=USER_EMAIL, password=USER_PASSWORD):
    return client.post("/auth/signup", json={
        "name": name,
        "email": email,
        "password": password,
        "confirmPassword": password,
    })


def login_admin(client, email=ADMIN_EMAIL, secret=ADMIN_SECRET):
    return client.post("/auth/login", json={"email": email, "password": secret, "asAdmin": True})


@pytest.fixture
def user_client(app):
    client = app.test_client()
    response = signup(client)
    assert response.status_code == 201
    return client


@pytest.fixture
def admin_client(app):
    client = app.test_client()
    response = login_admin(client)
    assert response.status_code == 200
    return client


@pytest.fixture
def make_book(app):
    """Insert a book directly, bypassing the merge rule."""
    def _make(title="Borrowable", author="Author", genre="Drama", quantity=1, **extra):
        with app.app_context():
            book = Book(title=title, author=author, genre=genre, quantity=quantity, **extra)
            db.session.add(book)
            db.session.commit()
            return book.id
    return _make


@pytest.fixture
def make_user(app):
    def _make(name="Reader", email="reader@example.com", password="readerpass", role="user"):
        with app.app_context():
            authenticator = app.extensions["authenticator"]
            user = User(name=name, email=email, password=authenticator.hash_password(password), role=role)
            db.session.add(user)
            db.session.commit()
            return user.id
    return _make
