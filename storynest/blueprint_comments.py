'''Blueprint module for all actions related to resource: comments'''
import logging
from flask import Blueprint, jsonify, g
from werkzeug import Response
from werkzeug.exceptions import NotFound, BadRequest, InternalServerError
from sqlalchemy import select, insert, delete
from sqlalchemy.exc import SQLAlchemyError
from typing import Any, Optional
from auxillary.decorators import enforce_json
from auxillary.utils import coerce_int, evict_cache
from storynest.models import db, Post, Comment
from storynest.resource_decorators import token_required
from storynest.resource_auxillary import fetch_post_comments, post_cache_key
from storynest.external_extensions import get_redis

logger = logging.getLogger(__name__)

COMMENTS_BLUEPRINT: Blueprint = Blueprint("comment", "comment", url_prefix="/api/comments")

@COMMENTS_BLUEPRINT.route("/", methods=["POST"])
@enforce_json
@token_required
def add_comment() -> tuple[Response, int]:
    postID: Optional[int] = coerce_int(g.REQUEST_JSON.get("post_id"))
    content = g.REQUEST_JSON.get("content")
    if postID is None or not isinstance(content, str) or not content.strip():
        raise BadRequest("Post ID and content are required")

    imageURL = g.REQUEST_JSON.get("image_url") or None
    if imageURL is not None and not isinstance(imageURL, str):
        raise BadRequest("image_url must be a string")

    if db.session.execute(select(Post.id).where(Post.id == postID)).scalar_one_or_none() is None:
        raise NotFound("Post not found")

    try:
        commentID: int = db.session.execute(insert(Comment).values(post_id=postID,
                                                                   user_id=g.DECODED_TOKEN["sid"],
                                                                   content=content.strip(),
                                                                   image_url=imageURL)
                                            .returning(Comment.id)
                                            ).scalar_one()
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to add comment to post %s", postID)
        raise InternalServerError("Failed to add comment")

    # Cached post mappings carry the comment count
    evict_cache(get_redis(), post_cache_key(postID))
    return jsonify({"message" : "Comment added successfully",
                    "commentId" : commentID,
                    "imageUrl" : imageURL}), 201

@COMMENTS_BLUEPRINT.route("/post/<int:post_id>", methods=["GET"])
def get_comments(post_id: int) -> tuple[Response, int]:
    try:
        comments: list[dict[str, Any]] = fetch_post_comments(post_id)
    except SQLAlchemyError:
        logger.exception("Failed to fetch comments of post %s", post_id)
        raise InternalServerError("Failed to fetch comments")

    return jsonify(comments), 200

@COMMENTS_BLUEPRINT.route("/<int:comment_id>", methods=["DELETE"])
@token_required
def delete_comment(comment_id: int) -> tuple[Response, int]:
    postID: Optional[int] = db.session.execute(select(Comment.post_id)
                                               .where((Comment.id == comment_id) & (Comment.user_id == g.DECODED_TOKEN["sid"]))
                                               ).scalar_one_or_none()
    if postID is None:
        raise NotFound("Comment not found or unauthorized")

    try:
        db.session.execute(delete(Comment)
                           .where((Comment.id == comment_id) & (Comment.user_id == g.DECODED_TOKEN["sid"]))
                           .execution_options(synchronize_session=False))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to delete comment %s", comment_id)
        raise InternalServerError("Failed to delete comment")

    evict_cache(get_redis(), post_cache_key(postID))
    return jsonify({"message" : "Comment deleted successfully"}), 200
