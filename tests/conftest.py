"""Configuration and injectable fixtures for Pytest.

Every test gets a fresh app bound to its own file-backed SQLite database, so
that worker threads can open real, independent connections to it.
"""
import fakeredis
from pytest import fixture
from sqlalchemy import update

from auxillary.utils import hash_password
from storynest import create_app
from storynest.external_extensions import set_redis
from storynest.flask_config import FlaskConfig
from storynest.models import db as _db, User, Post

DEFAULT_PASSWORD = "password123"


@fixture
def config(tmp_path):
    class TestConfig(FlaskConfig):
        TESTING = True
        ENVIRONMENT = "test"
        LOG_LEVEL = "WARNING"
        SECRET_KEY = "storynest-test-secret-0123456789abcdef"
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "storynest.db")
        SQLALCHEMY_ENGINE_OPTIONS = {}
        ACCESS_COOKIE_SECURE = False
        REDIS_CONFIG_FILENAME = None

    return TestConfig


@fixture
def app(config):
    return create_app(config=config)


@fixture
def app_context(app):
    with app.app_context() as ctx:
        yield ctx


@fixture
def db(app, app_context):
    """Return a fresh db for each test."""
    _db.create_all()
    yield _db

    _db.session.remove()
    _db.drop_all()


@fixture
def session(db):
    return db.session


@fixture
def client(app, db):
    return app.test_client()


@fixture
def cache(app):
    """In-process Redis standing in for the post cache."""
    interface = fakeredis.FakeRedis(decode_responses=True)
    set_redis(interface)
    yield interface
    set_redis(None)


#
# Factories
#
@fixture
def make_user(db):
    def _make_user(username="reader", password=DEFAULT_PASSWORD, email=None, **kwargs):
        pw_hash, pw_salt = hash_password(password)
        user = User(username=username,
                    email=email or f"{username}@example.com",
                    pw_hash=pw_hash,
                    pw_salt=pw_salt,
                    **kwargs)
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@fixture
def make_post(db):
    def _make_post(author, title="A quiet evening", content="Nothing happened, and that was fine.",
                   category="general", likes_count=0, **kwargs):
        post = Post(author_id=author.id,
                    title=title,
                    content=content,
                    category=category,
                    post_type=kwargs.pop("post_type", "text"),
                    **kwargs)
        db.session.add(post)
        db.session.commit()
        if likes_count:
            # Seed the counter directly, bypassing the like relation
            db.session.execute(update(Post).where(Post.id == post.id).values(likes_count=likes_count))
            db.session.commit()
        return post

    return _make_post


@fixture
def login(app, db):
    """Return a logged in test client for the given user."""
    def _login(username, password=DEFAULT_PASSWORD):
        client = app.test_client()
        response = client.post("/api/auth/login", json={"username": username, "password": password})
        assert response.status_code == 200, response.get_json()
        return client

    return _login
