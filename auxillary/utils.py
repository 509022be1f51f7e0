'''Helper functions'''
import datetime
import hashlib
from flask import jsonify
from werkzeug.exceptions import HTTPException
import os
import logging
from typing import Mapping, Callable, Any
from types import NoneType
from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

def generic_error_handler(e : Exception):
    '''Return a JSON formatted error message to the client

    Contents of the error message are determined by the following:
    - e.description: Error message
    - e.kwargs: Additonal information about the error, attached to HTTP body
    - e.header_kwargs: Additional information (e.g. broader context of the error message), attached in HTTP headers

    All of these attributes are **optional**, since in their absence a generic HTTP 500 is returned
    '''
    # Only HTTP exceptions carry a status code, SQLAlchemy errors reuse `code` for a string error identifier
    code: int = (e.code if isinstance(e, HTTPException) else None) or 500
    if not isinstance(e, HTTPException):
        logger.exception("Unhandled exception", exc_info=e)

    response = jsonify({"message" : getattr(e, "description", "An error occured"),
                        **getattr(e, "kwargs", {})})
    if getattr(e, "header_kwargs", None):
        response.headers.update(e.header_kwargs)

    return response, code

def hash_password(password: str, salt: bytes = None) -> tuple[bytes, bytes]:
    '''
    Produce a password salt and hash from a given string

    returns: tuple[password-hash, salt]'''
    if salt is None:
        salt = os.urandom(16)
    passwordHash = hashlib.pbkdf2_hmac('sha256', password.encode(), salt, 100000)
    return passwordHash, salt

def verify_password(password: str, password_hash : bytes, salt: bytes) -> bool:
    '''
    Match a given password and salt with a hashed password
    '''
    return hashlib.pbkdf2_hmac('sha256', password.encode(), salt, 100000) == password_hash

def parse_pagination(args: Mapping[str, str], default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    '''Read limit/offset query args, clamping limit to [1, max_limit] and offset to >= 0. Raises ValueError on non-numeric input'''
    limit: int = int(args.get('limit', default_limit))
    offset: int = int(args.get('offset', 0))
    return max(1, min(limit, max_limit)), max(0, offset)

def rediserialize(mapping: dict,
                  typeMapping: Mapping[type, Callable] = {NoneType : lambda _ : '',
                                                          bool: lambda b : int(b),
                                                          datetime.datetime: lambda dt : dt.isoformat()}) -> dict:
    '''Serialize a Python dictionary to a Redis hashmap'''
    return {k : typeMapping.get(type(v), lambda x : x)(v) for k,v in mapping.items()}

def consult_cache(interface: Redis, cache_key: str,
                  ttl_cap: int, ttl_promotion: int = 15, ttl_ephemeral: int = 15,
                  nf_repr: str = '__NF__', suppress_errors: bool = True) -> dict|None:
    '''
    Consult Redis cache and attempt to fetch the given hashmap.
    Args:
        interface: Redis instance connected to cache server
        cache_key: Name of the key to search for
        ttl_cap: Maximum TTL in seconds for any entry in cache
        ttl_promotion: Seconds to add to an existing entry's TTL on cache hit
        ttl_ephemeral: TTL in seconds for non-existence announcements
        nf_repr: Field name marking a resource known not to exist
        suppress_errors: Flag to allow silent failures. Ideally this should be set to True to allow graceful fallback to database

    Returns
        {"__NF__" : True} if nf_repr found, None on cache miss/suppressed failure, and cached mapping on cache hits
    '''
    try:
        with interface.pipeline(transaction=False) as pipe:
            pipe.hgetall(cache_key)
            pipe.ttl(cache_key)
            cachedResource, cachedTTL = pipe.execute()

        if not cachedResource:  # Cache miss
            return None

        if nf_repr in cachedResource:
            # Resource is known not to exist, reannounce non-existence
            with interface.pipeline() as pipe:
                pipe.hset(cache_key, mapping={nf_repr:-1})
                pipe.expire(cache_key, ttl_ephemeral)
                pipe.execute()
            return {'__NF__':True}

        interface.expire(cache_key, min(ttl_cap, ttl_promotion+max(cachedTTL, 0)))
        return cachedResource

    except RedisError as e:
        if suppress_errors:
            logger.warning("Cache lookup failed for %s: %s", cache_key, e)
            return None
        raise RuntimeError('Unsuppressed cache failure') from e

def hset_with_ttl(interface: Redis, name: str, mapping: dict, ttl: int, transaction: bool = True) -> None:
    with interface.pipeline(transaction) as pp:
        pp.hset(name=name, mapping=mapping)
        pp.expire(name=name, time=ttl)
        pp.execute()

def evict_cache(interface: Redis | None, *cache_keys: str) -> None:
    '''Drop cache entries, ignoring cache failures since the database remains the source of truth'''
    if interface is None or not cache_keys:
        return
    try:
        interface.delete(*cache_keys)
    except RedisError as e:
        logger.warning("Failed to evict cache keys %s: %s", cache_keys, e)

def coerce_int(value: Any) -> int | None:
    '''Cast request values to int, returning None for anything non-numeric'''
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
