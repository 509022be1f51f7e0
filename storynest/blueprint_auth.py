'''Blueprint module for registration, login and session checks'''
import logging
from flask import Blueprint, g, jsonify
from werkzeug import Response
from werkzeug.exceptions import BadRequest, Unauthorized, InternalServerError
from sqlalchemy import select, insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from auxillary.decorators import enforce_json
from auxillary.utils import hash_password, verify_password
from storynest.models import db, User
from storynest.resource_auxillary import processUserInfo, issue_access_token, attach_access_token, ACCESS_COOKIE
from storynest.resource_decorators import pass_user_details

logger = logging.getLogger(__name__)

AUTH_BLUEPRINT: Blueprint = Blueprint("auth", "auth", url_prefix="/api/auth")

@AUTH_BLUEPRINT.route("/register", methods=["POST"])
@enforce_json
def register() -> tuple[Response, int]:
    op, USER_DETAILS = processUserInfo(username=g.REQUEST_JSON.get("username"),
                                       email=g.REQUEST_JSON.get("email"),
                                       password=g.REQUEST_JSON.get("password"))
    if not op:
        raise BadRequest(USER_DETAILS.get("error"))

    try:
        existingUsers: list[User] = db.session.execute(select(User)
                                                       .where((User.username == USER_DETAILS["username"]) | (User.email == USER_DETAILS["email"]))
                                                       ).scalars().all()
    except SQLAlchemyError:
        logger.exception("Failed to look up existing users during registration")
        raise InternalServerError("An error occured with our database service")

    if any(user.username == USER_DETAILS["username"] for user in existingUsers):
        raise BadRequest("Username already exists")
    if existingUsers:
        raise BadRequest("Email already exists")

    passwordHash, passwordSalt = hash_password(USER_DETAILS.pop("password"))
    try:
        uID: int = db.session.execute(insert(User).values(email=USER_DETAILS["email"],
                                                          username=USER_DETAILS["username"],
                                                          pw_hash=passwordHash,
                                                          pw_salt=passwordSalt)
                                                          .returning(User.id)
                                                          ).scalar_one()
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise BadRequest("Username or email already exists")
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to create user %s", USER_DETAILS["username"])
        raise InternalServerError("An error occured with our database service")

    logger.info("Registered user %s (%s)", USER_DETAILS["username"], uID)
    response: Response = jsonify({"message" : "User registered successfully",
                                  "user" : {"id" : uID, "username" : USER_DETAILS["username"], "email" : USER_DETAILS["email"]}})
    return attach_access_token(response, issue_access_token(USER_DETAILS["username"], uID)), 201

@AUTH_BLUEPRINT.route("/login", methods=["POST"])
@enforce_json
def login() -> tuple[Response, int]:
    username: str = str(g.REQUEST_JSON.get("username") or "").strip()
    password = g.REQUEST_JSON.get("password")
    if not (username and password):
        raise BadRequest("Username and password are required")
    if not isinstance(password, str):
        raise Unauthorized("Invalid username or password")

    try:
        user: User | None = db.session.execute(select(User).where(User.username == username)).scalar_one_or_none()
    except SQLAlchemyError:
        logger.exception("Failed to fetch user %s during login", username)
        raise InternalServerError("An error occured with our database service")

    if not user or not verify_password(password, user.pw_hash, user.pw_salt):
        raise Unauthorized("Invalid username or password")

    response: Response = jsonify({"message" : "Login successful",
                                  "user" : {"id" : user.id,
                                            "username" : user.username,
                                            "email" : user.email,
                                            "profile_picture" : user.profile_picture}})
    return attach_access_token(response, issue_access_token(user.username, user.id)), 200

@AUTH_BLUEPRINT.route("/logout", methods=["POST"])
def logout() -> tuple[Response, int]:
    response: Response = jsonify({"message" : "Logged out successfully"})
    response.delete_cookie(ACCESS_COOKIE, httponly=True, samesite="Lax")
    return response, 200

@AUTH_BLUEPRINT.route("/session", methods=["GET"])
@pass_user_details
def session() -> tuple[Response, int]:
    if not g.REQUESTING_USER:
        return jsonify({"loggedIn" : False}), 200
    return jsonify({"loggedIn" : True,
                    "user" : {"id" : g.REQUESTING_USER["sid"], "username" : g.REQUESTING_USER["sub"]}}), 200
