'''Auxillary functions exclusive to the StoryNest server'''
import re
import time
import uuid
import logging
import jwt
from flask import Response, current_app
from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy import select, func, Select
from typing import Any, Optional
from auxillary.utils import consult_cache, hset_with_ttl, rediserialize
from storynest.models import db, Post, User, Comment, load_media, dump_media
from storynest.redis_config import RedisConfig

logger = logging.getLogger(__name__)

EMAIL_REGEX = r"^(?=.{1,320}$)([a-zA-Z0-9!#$%&'*+/=?^_`{|}~.-]{1,64})@([a-zA-Z0-9.-]{1,255}\.[a-zA-Z]{2,16})$"
USERNAME_REGEX = r"^[A-Za-z0-9_]{3,50}$"
ACCESS_COOKIE: str = "access"
TOKEN_ALGORITHM: str = "HS256"

def processUserInfo(**kwargs) -> tuple[bool, dict]:
    '''Validate and process user details\n
    Currently accepts params:
    - username (str)
    - password (str)
    - email (str)

    returns:
    tuple of boolean and dictionary. In case of failure in validation, the bool value is False, and the immediate error message is contained in the dict. Otherwise, boolean is True and the dict contains the processed user data
    '''
    try:
        res: dict[str, str] = {}
        if 'username' in kwargs:
            username: str = str(kwargs['username'] or '').strip()
            if len(username) < 3:
                return False, {"error" : "Username must be at least 3 characters"}
            if not re.match(USERNAME_REGEX, username):
                return False, {"error" : "Username must be at most 50 characters of letters, digits or underscores"}
            res['username'] = username

        if 'email' in kwargs:
            email: str = str(kwargs['email'] or '').strip()
            if not re.match(EMAIL_REGEX, email, re.IGNORECASE):
                return False, {"error" : "Valid email is required"}
            res['email'] = email

        if 'password' in kwargs:
            password: str = kwargs['password']
            if not isinstance(password, str) or not (6 <= len(password) <= 64):
                return False, {"error" : "Password must be between 6 and 64 characters"}
            res['password'] = password

        return True, res
    except (TypeError, AttributeError):
        return False, {"error" : "Malformatted data, please validate data types of each field"}

### Access tokens ###
def issue_access_token(sub: str, sid: int) -> str:
    epoch: float = time.time()
    payload: dict[str, Any] = {"iat" : int(epoch),
                               "exp" : int(epoch + current_app.config['ACCESS_TOKEN_LIFETIME']),
                               "sub" : sub,
                               "sid" : sid,
                               "jti" : uuid.uuid4().hex}
    return jwt.encode(payload=payload, key=current_app.config['SECRET_KEY'], algorithm=TOKEN_ALGORITHM)

def decode_access_token(token: str) -> dict[str, Any]:
    '''Decode and verify an access token. Raises jwt.exceptions.PyJWTError subclasses on failure'''
    return jwt.decode(jwt=token,
                      key=current_app.config['SECRET_KEY'],
                      algorithms=[TOKEN_ALGORITHM],
                      leeway=current_app.config.get('ACCESS_TOKEN_LEEWAY', 0),
                      options={"require" : ["exp", "iat", "sub", "sid"]})

def attach_access_token(response: Response, token: str) -> Response:
    response.set_cookie(ACCESS_COOKIE, token,
                        max_age=current_app.config['ACCESS_TOKEN_LIFETIME'],
                        httponly=True,
                        secure=current_app.config.get('ACCESS_COOKIE_SECURE', False),
                        samesite='Lax')
    return response

### Queries ###
def posts_listing_query() -> Select:
    '''Posts joined with author details and comment count, newest first'''
    comment_count = (select(func.count(Comment.id))
                     .where(Comment.post_id == Post.id)
                     .correlate(Post)
                     .scalar_subquery())
    return (select(Post, User.username, User.profile_picture, comment_count.label('comment_count'))
            .join(User, Post.author_id == User.id)
            .order_by(Post.created_at.desc(), Post.id.desc()))

def serialize_post_row(row) -> dict[str, Any]:
    post, username, profile_picture, comment_count = row
    return post.__json_like__() | {'username' : username,
                                   'profile_picture' : profile_picture,
                                   'comment_count' : comment_count}

def fetch_post_mapping(post_id: int) -> Optional[dict[str, Any]]:
    row = db.session.execute(posts_listing_query().where(Post.id == post_id)).first()
    return None if not row else serialize_post_row(row)

def fetch_post_comments(post_id: int) -> list[dict[str, Any]]:
    '''Comments on a post with their author details, oldest first'''
    rows = db.session.execute(select(Comment, User.username, User.profile_picture)
                              .join(User, Comment.user_id == User.id)
                              .where(Comment.post_id == post_id)
                              .order_by(Comment.created_at.asc(), Comment.id.asc())
                              ).all()
    return [comment.__json_like__() | {'username' : username, 'profile_picture' : profile_picture}
            for comment, username, profile_picture in rows]

### Post cache ###
def post_cache_key(post_id: int) -> str:
    return f'{Post.__tablename__}:{post_id}'

def derediserialize_post(mapping: dict[str, str]) -> dict[str, Any]:
    '''Reverse rediserialize() for a cached post mapping. Redis hands everything back as strings'''
    post: dict[str, Any] = {k : (None if v == '' else v) for k, v in mapping.items()}
    for field in ('id', 'author_id', 'likes_count', 'comment_count'):
        if post.get(field) is not None:
            post[field] = int(post[field])
    post['all_media'] = load_media(post.get('all_media'))
    return post

def cached_post_mapping(interface: Optional[Redis], post_id: int) -> Optional[dict[str, Any]]:
    '''Fetch a post mapping, consulting the cache first when one is configured. Returns None for missing posts'''
    if interface is None:
        return fetch_post_mapping(post_id)

    cache_key: str = post_cache_key(post_id)
    cached: Optional[dict] = consult_cache(interface, cache_key, RedisConfig.TTL_CAP, RedisConfig.TTL_PROMOTION, RedisConfig.TTL_EPHEMERAL,
                                           nf_repr=RedisConfig.NF_SENTINEL_KEY)
    if cached:
        return None if RedisConfig.NF_SENTINEL_KEY in cached else derediserialize_post(cached)

    post_mapping: Optional[dict[str, Any]] = fetch_post_mapping(post_id)
    try:
        if not post_mapping:
            hset_with_ttl(interface, cache_key, {RedisConfig.NF_SENTINEL_KEY : RedisConfig.NF_SENTINEL_VALUE}, RedisConfig.TTL_EPHEMERAL)
        else:
            cacheable: dict[str, Any] = post_mapping | {'all_media' : dump_media(post_mapping['all_media'])}
            hset_with_ttl(interface, cache_key, rediserialize(cacheable), RedisConfig.TTL_STRONG)
    except RedisError as e:
        logger.warning('Failed to cache post %s: %s', post_id, e)
    return post_mapping
