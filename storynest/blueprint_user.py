'''Blueprint module for all actions related to resource: users'''
import logging
from flask import Blueprint, g, jsonify
from werkzeug import Response
from werkzeug.exceptions import BadRequest, NotFound, InternalServerError
from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from typing import Any, Optional
from auxillary.decorators import enforce_json
from storynest.models import db, User, Post
from storynest.resource_decorators import token_required

logger = logging.getLogger(__name__)

USERS_BLUEPRINT: Blueprint = Blueprint("user", "user", url_prefix="/api/users")

def fetch_user_profile(user_id: int) -> Optional[dict[str, Any]]:
    post_count = (select(func.count(Post.id))
                  .where(Post.author_id == User.id)
                  .correlate(User)
                  .scalar_subquery())
    try:
        row = db.session.execute(select(User, post_count.label("post_count")).where(User.id == user_id)).first()
    except SQLAlchemyError:
        logger.exception("Failed to fetch user %s", user_id)
        raise InternalServerError("Failed to fetch user")

    if not row:
        return None
    user, count = row
    return user.__json_like__() | {"post_count" : count}

@USERS_BLUEPRINT.route("/me", methods=["GET"])
@token_required
def get_current_user() -> tuple[Response, int]:
    profile: Optional[dict[str, Any]] = fetch_user_profile(g.DECODED_TOKEN["sid"])
    if not profile:
        raise NotFound("User not found")
    return jsonify(profile), 200

@USERS_BLUEPRINT.route("/<int:user_id>", methods=["GET"])
def get_user(user_id: int) -> tuple[Response, int]:
    profile: Optional[dict[str, Any]] = fetch_user_profile(user_id)
    if not profile:
        raise NotFound("User not found")
    return jsonify(profile), 200

@USERS_BLUEPRINT.route("/profile", methods=["PUT"])
@enforce_json
@token_required
def update_profile() -> tuple[Response, int]:
    updates: dict[str, str] = {}
    if g.REQUEST_JSON.get("bio") is not None:
        if not isinstance(g.REQUEST_JSON["bio"], str):
            raise BadRequest("Bio must be a string")
        updates["bio"] = g.REQUEST_JSON["bio"].strip()

    if g.REQUEST_JSON.get("profile_picture"):
        if not isinstance(g.REQUEST_JSON["profile_picture"], str):
            raise BadRequest("Profile picture must be a URL string")
        updates["profile_picture"] = g.REQUEST_JSON["profile_picture"].strip()

    if not updates:
        raise BadRequest("No fields to update")

    try:
        updated: int = db.session.execute(update(User)
                                          .where(User.id == g.DECODED_TOKEN["sid"])
                                          .values(**updates, updated_at=func.now())
                                          .execution_options(synchronize_session=False)
                                          ).rowcount
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to update profile of user %s", g.DECODED_TOKEN["sid"])
        raise InternalServerError("Failed to update profile")

    if not updated:
        raise NotFound("User not found")

    return jsonify({"message" : "Profile updated successfully", **updates}), 200
