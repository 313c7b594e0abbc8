"""Accounts, admin elevation and the JWT session cookie."""
import functools
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

import bcrypt
from flask import (Blueprint, current_app, g, jsonify, redirect, render_template,
                   request, url_for)
from flask_jwt_extended import (JWTManager, create_access_token, set_access_cookies, unset_jwt_cookies,
                                verify_jwt_in_request)
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
from sqlalchemy.exc import IntegrityError

from errors import BookHiveError, ConfigError, EmailTaken, ValidationError
from models import User, db

logger = logging.getLogger(__name__)

jwt = JWTManager()
bp = Blueprint('auth', __name__, url_prefix='/auth')

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_BYTES = 72  # bcrypt ignores or rejects anything longer


@dataclass(frozen=True)
class Identity:
    user_id: Optional[int]
    name: str
    email: str
    role: str

    @property
    def is_admin(self):
        return self.role == 'admin'

    @property
    def subject(self):
        return str(self.user_id) if self.user_id is not None else self.email

    def claims(self):
        return {'uid': self.user_id, 'name': self.name, 'email': self.email, 'role': self.role}

    @classmethod
    def from_claims(cls, claims):
        return cls(
            user_id=claims.get('uid'),
            name=claims.get('name') or '',
            email=claims.get('email') or '',
            role=claims.get('role') or 'user',
        )

    @classmethod
    def for_user(cls, user):
        return cls(user_id=user.id, name=user.name, email=user.email, role=user.role)


def _clean(value):
    return str(value if value is not None else '').strip()


def is_truthy(value):
    return value is True or str(value).strip().lower() in ('true', 'on', '1')


class Authenticator:
    """Credential checks. Holds the admin allow-list handed over at startup."""

    def __init__(self, admin_config, bcrypt_rounds=12):
        self.admin = admin_config
        self.bcrypt_rounds = bcrypt_rounds

    def hash_password(self, password):
        salt = bcrypt.gensalt(rounds=self.bcrypt_rounds)
        return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')

    def check_password(self, password, hashed):
        try:
            return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))
        except ValueError:
            return False

    def register(self, name, email, password, confirm_password):
        name = _clean(name)
        email = _clean(email).lower()
        password = password or ''
        if not name or not email or not password:
            raise ValidationError('Please fill all fields.')
        if password != (confirm_password or ''):
            raise ValidationError('Passwords do not match.')
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        if len(password.encode('utf-8')) > MAX_PASSWORD_BYTES:
            raise ValidationError('Password is too long.')
        if User.query.filter_by(email=email).first():
            raise EmailTaken()

        user = User(name=name, email=email, password=self.hash_password(password), role='user')
        db.session.add(user)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise EmailTaken()
        logger.debug(f"User registered: {email}")
        return user

    def authenticate(self, email, password, as_admin=False):
        email = _clean(email).lower()
        password = password or ''
        if not email or not password:
            raise ValidationError('Please enter email and password.')

        if as_admin:
            return self._elevate(email, password)

        if self.admin.is_admin_email(email):
            raise ValidationError("This is an admin email. Tick 'Login as admin'.")
        user = User.query.filter_by(email=email).first()
        if user is None or not self.check_password(password, user.password):
            logger.debug(f"Invalid credentials for: {email}")
            raise ValidationError('Invalid credentials')
        logger.debug(f"Login successful: {email}")
        return Identity.for_user(user)

    def _elevate(self, email, secret):
        if not self.admin.password:
            logger.error("Admin login attempted but ADMIN_PASSWORD is not configured")
            raise ConfigError()
        if not self.admin.is_admin_email(email):
            raise ValidationError('That email is not on the admin list.')
        if not hmac.compare_digest(secret.encode('utf-8'), self.admin.password.encode('utf-8')):
            raise ValidationError('Incorrect admin password.')
        # the role is granted for this session only; a stored account just lends its id
        user = User.query.filter_by(email=email).first()
        logger.debug(f"Admin session granted: {email}")
        return Identity(
            user_id=user.id if user else None,
            name=user.name if user else 'Administrator',
            email=email,
            role='admin',
        )


def get_authenticator():
    return current_app.extensions['authenticator']


def init_auth(app, settings):
    app.config['JWT_SECRET_KEY'] = settings.jwt_secret_key
    app.config['JWT_TOKEN_LOCATION'] = ['cookies']
    app.config['JWT_ACCESS_COOKIE_NAME'] = 'token'
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = settings.token_expiry
    app.config['JWT_COOKIE_SECURE'] = settings.is_production
    app.config['JWT_COOKIE_SAMESITE'] = 'Lax'
    app.config['JWT_COOKIE_CSRF_PROTECT'] = False
    app.config['JWT_SESSION_COOKIE'] = False
    jwt.init_app(app)
    app.extensions['authenticator'] = Authenticator(settings.admin, settings.bcrypt_rounds)
    app.before_request(load_identity)
    app.after_request(drop_invalid_token)
    app.context_processor(lambda: {'user': current_identity()})
    app.register_blueprint(bp)


def load_identity():
    g.identity = None
    g.drop_token = False
    if request.cookies.get(current_app.config['JWT_ACCESS_COOKIE_NAME']) is None:
        return
    try:
        decoded = verify_jwt_in_request(optional=True)
    except (JWTExtendedException, PyJWTError) as e:
        logger.debug(f"Invalid token: {e}")
        g.drop_token = True
        return
    if decoded:
        _header, claims = decoded
        g.identity = Identity.from_claims(claims)


def drop_invalid_token(response):
    if g.get('drop_token'):
        unset_jwt_cookies(response)
    return response


def current_identity():
    return g.get('identity')


def issue_token(response, identity):
    token = create_access_token(identity=identity.subject, additional_claims=identity.claims())
    max_age = int(current_app.config['JWT_ACCESS_TOKEN_EXPIRES'].total_seconds())
    set_access_cookies(response, token, max_age=max_age)
    return response


def login_required(role=None, redirect_anonymous=False):
    def decorator(f):
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            identity = current_identity()
            if identity is None:
                logger.error("Unauthorized access: No user session")
                if redirect_anonymous:
                    return redirect(url_for('auth.login_page'))
                return jsonify({'message': 'Not authenticated'}), 401
            if role and identity.role != role:
                logger.error(f"Access denied: Required role {role}, got {identity.role}")
                return jsonify({'message': 'Forbidden'}), 403
            return f(*args, **kwargs)
        return wrapped
    return decorator


def _payload():
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form


def _landing(identity):
    return '/admin' if identity.is_admin else '/search'


# Pages

@bp.route('/login', methods=['GET'])
def login_page():
    return render_template('auth/login.html', title='Login · BookHive', error=None, form={})


@bp.route('/signup', methods=['GET'])
def signup_page():
    return render_template('auth/signup.html', title='Sign up · BookHive', error=None, form={})


# Actions

@bp.route('/signup', methods=['POST'])
def signup():
    data = _payload()
    try:
        user = get_authenticator().register(
            data.get('name'), data.get('email'), data.get('password'), data.get('confirmPassword'),
        )
    except BookHiveError as e:
        if request.is_json:
            raise
        form = {'name': data.get('name'), 'email': data.get('email')}
        return render_template('auth/signup.html', title='Sign up · BookHive',
                               error=e.message, form=form), e.status_code

    identity = Identity.for_user(user)
    if request.is_json:
        response = jsonify({'message': 'User registered successfully', 'user': user.to_dict()})
        response.status_code = 201
    else:
        response = redirect(_landing(identity))
    return issue_token(response, identity)


@bp.route('/login', methods=['POST'])
def login():
    data = _payload()
    as_admin = is_truthy(data.get('asAdmin'))
    try:
        identity = get_authenticator().authenticate(data.get('email'), data.get('password'), as_admin)
    except BookHiveError as e:
        if request.is_json:
            raise
        form = {'email': _clean(data.get('email')), 'asAdmin': as_admin}
        return render_template('auth/login.html', title='Login · BookHive',
                               error=e.message, form=form), e.status_code

    if request.is_json:
        response = jsonify({
            'message': 'Login successful',
            'role': identity.role,
            'name': identity.name,
            'redirect': _landing(identity),
        })
    else:
        response = redirect(_landing(identity))
    return issue_token(response, identity)


@bp.route('/logout', methods=['POST'])
def logout():
    if request.is_json:
        response = jsonify({'message': 'Logout successful'})
    else:
        response = redirect(url_for('auth.login_page'))
    unset_jwt_cookies(response)
    logger.debug("User logged out")
    return response


@bp.route('/users', methods=['GET'])
@login_required(role='admin')
def list_users():
    users = User.query.order_by(User.name, User.id).all()
    logger.debug(f"Fetched {len(users)} users")
    return jsonify([u.to_dict() for u in users]), 200
