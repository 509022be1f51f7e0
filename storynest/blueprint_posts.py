'''Blueprint module for all actions related to resource: posts'''
import logging
from flask import Blueprint, jsonify, g, request
from werkzeug import Response
from werkzeug.exceptions import NotFound, BadRequest, Forbidden, InternalServerError
from sqlalchemy import select, insert, delete
from sqlalchemy.exc import SQLAlchemyError
from typing import Any, Optional
from auxillary.decorators import enforce_json
from auxillary.utils import parse_pagination, evict_cache
from storynest.models import db, Post, CONFIG, dump_media
from storynest.like_store import like_store, PostNotFound, LikeStoreError
from storynest.resource_decorators import pass_user_details, token_required
from storynest.resource_auxillary import posts_listing_query, serialize_post_row, cached_post_mapping, fetch_post_comments, post_cache_key
from storynest.external_extensions import get_redis

logger = logging.getLogger(__name__)

POSTS_BLUEPRINT: Blueprint = Blueprint("post", "post", url_prefix="/api/posts")

POST_TYPES: tuple[str, ...] = tuple(CONFIG["posts"]["types"])
TITLE_MAX_LENGTH: int = CONFIG["posts"]["title_max_length"]

def _required_text(field: str) -> str:
    value = g.REQUEST_JSON.get(field)
    if not isinstance(value, str) or not value.strip():
        raise BadRequest(f"{field.capitalize()} is required")
    return value.strip()

def _media_items(raw: Any) -> list[dict[str, str]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise BadRequest("Media must be a list of objects with url and type")

    media: list[dict[str, str]] = []
    for item in raw:
        if not isinstance(item, dict) or not isinstance(item.get("url"), str) or not item["url"].strip():
            raise BadRequest("Every media item requires a url")
        media.append({"url" : item["url"].strip(), "type" : str(item.get("type") or "")})
    return media

@POSTS_BLUEPRINT.route("/", methods=["POST"])
@enforce_json
@token_required
def create_post() -> tuple[Response, int]:
    title: str = _required_text("title")
    content: str = _required_text("content")
    category: str = _required_text("category")
    if len(title) > TITLE_MAX_LENGTH:
        raise BadRequest(f"Title must be at most {TITLE_MAX_LENGTH} characters")

    media: list[dict[str, str]] = _media_items(g.REQUEST_JSON.get("media"))
    post_type: str = g.REQUEST_JSON.get("post_type") or ("mixed" if media else "text")
    if post_type not in POST_TYPES:
        badReq = BadRequest("Invalid post type")
        badReq.__setattr__("kwargs", {"allowed" : list(POST_TYPES)})
        raise badReq

    try:
        postID: int = db.session.execute(insert(Post).values(author_id=g.DECODED_TOKEN["sid"],
                                                             title=title,
                                                             content=content,
                                                             post_type=post_type,
                                                             category=category,
                                                             media_url=media[0]["url"] if media else None,
                                                             media_type=media[0]["type"] if media else None,
                                                             all_media=dump_media(media) if media else None)
                                         .returning(Post.id)
                                         ).scalar_one()
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to create post for user %s", g.DECODED_TOKEN["sid"])
        raise InternalServerError("Failed to create post")

    # A not-found marker may have been cached for this ID before the post existed
    evict_cache(get_redis(), post_cache_key(postID))
    return jsonify({"message" : "Post created successfully",
                    "postId" : postID,
                    "mediaUrls" : [item["url"] for item in media],
                    "mediaCount" : len(media),
                    "allMedia" : media}), 201

@POSTS_BLUEPRINT.route("/", methods=["GET"])
def get_posts() -> tuple[Response, int]:
    try:
        limit, offset = parse_pagination(request.args, CONFIG["pagination"]["default_limit"], CONFIG["pagination"]["max_limit"])
    except ValueError:
        raise BadRequest("limit and offset must be integers")

    query = posts_listing_query()
    category: Optional[str] = request.args.get("category")
    if category and category != "all":
        query = query.where(Post.category == category)

    try:
        rows = db.session.execute(query.limit(limit).offset(offset)).all()
    except SQLAlchemyError:
        logger.exception("Failed to fetch posts")
        raise InternalServerError("Failed to fetch posts")

    return jsonify([serialize_post_row(row) for row in rows]), 200

@POSTS_BLUEPRINT.route("/<int:post_id>", methods=["GET"])
@pass_user_details
def get_post(post_id: int) -> tuple[Response, int]:
    try:
        post_mapping: Optional[dict[str, Any]] = cached_post_mapping(get_redis(), post_id)
    except SQLAlchemyError:
        logger.exception("Failed to fetch post %s", post_id)
        raise InternalServerError("Failed to fetch post")

    if not post_mapping:
        raise NotFound("Post not found")

    if g.REQUESTING_USER:
        try:
            post_mapping["liked"] = like_store.has_liked(post_id, g.REQUESTING_USER["sid"])
        except LikeStoreError:
            logger.exception("Failed to fetch like state of post %s", post_id)
            raise InternalServerError("Failed to fetch post")

    return jsonify(post_mapping), 200

@POSTS_BLUEPRINT.route("/<int:post_id>/like", methods=["POST"])
@token_required
def toggle_like(post_id: int) -> tuple[Response, int]:
    try:
        result, likes_count = like_store.toggle_and_count(post_id, g.DECODED_TOKEN["sid"])
    except PostNotFound:
        raise NotFound("Post not found")
    except LikeStoreError as e:
        logger.error("Like toggle failed for post %s by user %s: %r", post_id, g.DECODED_TOKEN["sid"], e)
        raise InternalServerError("Failed to toggle like")

    evict_cache(get_redis(), post_cache_key(post_id))
    return jsonify(result | {"likes_count" : likes_count}), 200

@POSTS_BLUEPRINT.route("/<int:post_id>/comments", methods=["GET"])
def get_post_comments(post_id: int) -> tuple[Response, int]:
    try:
        comments: list[dict[str, Any]] = fetch_post_comments(post_id)
    except SQLAlchemyError:
        logger.exception("Failed to fetch comments of post %s", post_id)
        raise InternalServerError("Failed to fetch comments")

    return jsonify(comments), 200

@POSTS_BLUEPRINT.route("/search/<string:query>", methods=["GET"])
def search_posts(query: str) -> tuple[Response, int]:
    query = query.strip()
    if not query:
        raise BadRequest("Search query is required")

    pattern: str = f"%{query}%"
    try:
        rows = db.session.execute(posts_listing_query()
                                  .where(Post.title.ilike(pattern) | Post.content.ilike(pattern))
                                  .limit(CONFIG["pagination"]["search_limit"])
                                  ).all()
    except SQLAlchemyError:
        logger.exception("Search for %r failed", query)
        raise InternalServerError("Search failed")

    return jsonify([serialize_post_row(row) for row in rows]), 200

@POSTS_BLUEPRINT.route("/<int:post_id>", methods=["DELETE"])
@token_required
def delete_post(post_id: int) -> tuple[Response, int]:
    author_id: Optional[int] = db.session.execute(select(Post.author_id).where(Post.id == post_id)).scalar_one_or_none()
    if author_id is None:
        raise NotFound("Post not found")
    if author_id != g.DECODED_TOKEN["sid"]:
        raise Forbidden("You can only delete your own posts")

    try:
        # Likes and comments go with the post through ON DELETE CASCADE
        db.session.execute(delete(Post).where(Post.id == post_id).execution_options(synchronize_session=False))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to delete post %s", post_id)
        raise InternalServerError("Failed to delete post")

    evict_cache(get_redis(), post_cache_key(post_id))
    return jsonify({"message" : "Post deleted successfully"}), 200
