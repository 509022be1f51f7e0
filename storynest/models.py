from flask_sqlalchemy import SQLAlchemy

from sqlalchemy import PrimaryKeyConstraint, CheckConstraint, UniqueConstraint, MetaData, Index, event
from sqlalchemy.engine import Engine
from sqlalchemy.sql import text
from sqlalchemy.types import INTEGER, BIGINT, VARCHAR, TEXT, TIMESTAMP, LargeBinary

import orjson, os, sqlite3
from datetime import datetime
from typing import Any

CONFIG: dict = {}
with open(os.path.join(os.path.dirname(__file__), "instance", "config.json"), 'rb') as configFile:
    CONFIG = orjson.loads(configFile.read())
    METADATA = MetaData(naming_convention=CONFIG["database"]["naming_convention"])

db = SQLAlchemy(metadata=METADATA)

# SQLite only assigns rowids to INTEGER PRIMARY KEY columns
ID_TYPE = BIGINT().with_variant(INTEGER(), "sqlite")
DEFAULT_PROFILE_PICTURE: str = CONFIG["users"]["default_profile_picture"]

@event.listens_for(Engine, "connect")
def enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # Cascading deletes of likes/comments depend on this for SQLite
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

def _isoformat(dt: datetime | None) -> str | None:
    return None if not dt else dt.isoformat()

def load_media(raw: str | None) -> list[dict[str, str]]:
    if not raw:
        return []
    try:
        media: Any = orjson.loads(raw)
    except orjson.JSONDecodeError:
        return []
    return media if isinstance(media, list) else []

def dump_media(media: list[dict[str, str]]) -> str:
    return orjson.dumps(media).decode()

### Assosciation Tables ###
class PostLike(db.Model):
    __tablename__ = "post_likes"

    id: int = db.Column(ID_TYPE, nullable = False, autoincrement = True)
    post_id: int = db.Column(ID_TYPE, db.ForeignKey("posts.id", ondelete='CASCADE'), nullable = False)
    user_id: int = db.Column(ID_TYPE, db.ForeignKey("users.id", ondelete='CASCADE'), nullable = False)
    created_at: datetime = db.Column(TIMESTAMP, nullable = False, server_default=text("CURRENT_TIMESTAMP"))

    __table_args__ = (
        PrimaryKeyConstraint("id"),
        UniqueConstraint("post_id", "user_id", name="uq_post_likes_post_user"),
        Index("ix_post_likes_post_id", "post_id"),
    )

    def __repr__(self) -> str:
        return f"<PostLike({self.id}, {self.post_id}, {self.user_id})>"

### Tables ###
class User(db.Model):
    __tablename__ = "users"

    ### Attributes ###
    # Basic identification
    id: int = db.Column(ID_TYPE, nullable = False, autoincrement=True)
    username: str = db.Column(VARCHAR(50), nullable = False, unique=True, index=True)
    email: str = db.Column(VARCHAR(320), nullable = False, unique=True, index=True)

    # Passwords and salts
    pw_hash: bytes = db.Column(LargeBinary(256), nullable = False)
    pw_salt: bytes = db.Column(LargeBinary(64), nullable = False)

    # Profile
    bio: str = db.Column(TEXT, nullable = False, default='', server_default='')
    profile_picture: str = db.Column(VARCHAR(512), nullable = False, default=DEFAULT_PROFILE_PICTURE, server_default=DEFAULT_PROFILE_PICTURE)
    join_date: datetime = db.Column(TIMESTAMP, nullable = False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at: datetime = db.Column(TIMESTAMP, nullable = False, server_default=text("CURRENT_TIMESTAMP"))

    __table_args__ = (
        PrimaryKeyConstraint("id"),
        CheckConstraint("LENGTH(username) >= 3", name="username_length"),
    )

    def __repr__(self) -> str:
        return f"<User({self.id}, {self.username}, {self.email})>"

    def __json_like__(self) -> dict[str, str|int]:
        return {"id": self.id,
                "username": self.username,
                "email": self.email,
                "bio": self.bio,
                "profile_picture": self.profile_picture,
                "join_date": _isoformat(self.join_date)}

class Post(db.Model):
    __tablename__ = "posts"

    ### Attributes ###
    # Basic identification
    id: int = db.Column(ID_TYPE, nullable = False, autoincrement = True)
    author_id: int = db.Column(ID_TYPE, db.ForeignKey("users.id", ondelete='CASCADE'), nullable = False, index=True)

    # Post details
    title: str = db.Column(VARCHAR(200), nullable = False)
    content: str = db.Column(TEXT, nullable = False)
    post_type: str = db.Column(VARCHAR(20), nullable = False, server_default=text("'text'"))
    media_url: str = db.Column(TEXT, nullable = True)
    media_type: str = db.Column(VARCHAR(50), nullable = True)
    all_media: str = db.Column(TEXT, nullable = True)   # JSON array of {url, type, filename}
    category: str = db.Column(VARCHAR(50), nullable = False, index=True)
    created_at: datetime = db.Column(TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP"), index=True)

    # Post statistics. Cached count of post_likes rows, only written through LikeStore
    likes_count: int = db.Column(INTEGER, default = 0, server_default=text('0'), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("id"),
        CheckConstraint("likes_count >= 0", name="likes_count_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Post({self.id}, {self.author_id}, {self.title if len(self.title) < 16 else self.title[:16] + '...'}, {self.category}, {self.likes_count})>"

    def media(self) -> list[dict[str, str]]:
        return load_media(self.all_media)

    def __json_like__(self) -> dict[str, Any]:
        return {"id": self.id,
                "author_id": self.author_id,
                "title": self.title,
                "content": self.content,
                "post_type": self.post_type,
                "media_url": self.media_url,
                "media_type": self.media_type,
                "all_media": self.media(),
                "category": self.category,
                "likes_count": self.likes_count,
                "created_at": _isoformat(self.created_at)}

class Comment(db.Model):
    __tablename__ = "comments"

    ### Attributes ###
    # Basic identification
    id: int = db.Column(ID_TYPE, nullable=False, autoincrement = True)
    post_id: int = db.Column(ID_TYPE, db.ForeignKey("posts.id", ondelete='CASCADE'), nullable=False, index=True)
    user_id: int = db.Column(ID_TYPE, db.ForeignKey("users.id", ondelete='CASCADE'), nullable = False)

    # Comment details
    content: str = db.Column(TEXT, nullable=False)
    image_url: str = db.Column(TEXT, nullable=True)
    created_at: datetime = db.Column(TIMESTAMP, nullable = False, server_default=text("CURRENT_TIMESTAMP"))

    __table_args__ = (
        PrimaryKeyConstraint("id"),
    )

    def __repr__(self) -> str:
        return f"<Comment({self.id}, {self.post_id}, {self.user_id}, {self.content if len(self.content) < 16 else self.content[:16] + '...'})>"

    def __json_like__(self) -> dict[str, Any]:
        return {"id": self.id,
                "post_id": self.post_id,
                "user_id": self.user_id,
                "content": self.content,
                "image_url": self.image_url,
                "created_at": _isoformat(self.created_at)}
