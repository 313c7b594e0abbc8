from app import create_app
from auth import get_authenticator
from catalog import find_duplicate, save_book
from lending import borrow_book
from models import User, db

app = create_app()

with app.app_context():
    # Reset the database
    db.drop_all()
    db.create_all()
    print("🔄 Database reset")

    # Insert Users
    users = [
        {"name": "Student One", "email": "student1@example.com", "password": "student123", "role": "user"},
        {"name": "Student Two", "email": "student2@example.com", "password": "student123", "role": "student"},
    ]

    authenticator = get_authenticator()
    for u in users:
        user = User(name=u["name"], email=u["email"],
                    password=authenticator.hash_password(u["password"]), role=u["role"])
        db.session.add(user)

    db.session.commit()
    print("✅ Users inserted")

    # Insert Books; the last entry collides with "Dune" and is merged into it
    books = [
        {"title": "Dune", "author": "Frank Herbert", "genre": "Sci-Fi", "quantity": 2},
        {"title": "Flask Web Development", "author": "Miguel Grinberg", "genre": "Programming", "quantity": 3},
        {"title": "Clean Code", "author": "Robert C. Martin", "genre": "Software", "quantity": 0},
        {"title": "dune", "author": "FRANK HERBERT", "genre": "sci-fi", "quantity": 3},
    ]

    for b in books:
        book, merged, _ = save_book(b)
        print(f"{'🔁 Merged into' if merged else '✅ Inserted'} '{book.title}' (quantity {book.quantity})")

    # Insert a sample Loan
    student = User.query.filter_by(email="student1@example.com").first()
    book = find_duplicate("Dune", "Frank Herbert", "Sci-Fi")

    if student and book and book.quantity > 0:
        borrow_book(book.id, student.id)
        print(f"✅ Loan inserted: {student.name} borrowed '{book.title}'")
    else:
        print("⚠️ Could not insert loan (missing user/book or no available copies)")
