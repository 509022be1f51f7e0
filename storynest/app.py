import os
import logging
import click
import toml
from flask import Flask
from flask.cli import with_appcontext
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from typing import Any, Optional
from storynest.flask_config import FLASK_CONFIG_OBJECT
from auxillary.utils import generic_error_handler

logger = logging.getLogger(__name__)

APP_CTX_CWD : os.PathLike = os.path.dirname(__file__)
LOG_FORMAT: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

def create_app(config: Optional[object] = None) -> Flask:
    '''Application factory. `config` overrides the environment derived FlaskConfig object, mainly for tests'''
    app = Flask(import_name="storynest",
                instance_path=os.path.join(APP_CTX_CWD, "instance"))

    app.config.from_object(config or FLASK_CONFIG_OBJECT)
    logging.basicConfig(level=app.config.get("LOG_LEVEL", "INFO"), format=LOG_FORMAT)
    app.register_error_handler(Exception, generic_error_handler)

    ### Database setup ###
    from storynest.models import db, CONFIG
    db.init_app(app)
    Migrate(app, db)

    ### CORS ###
    CORS(app, origins=app.config.get("CORS_ORIGINS", []), supports_credentials=True)

    ### Redis ###
    from storynest.external_extensions import init_redis, set_redis
    redis_config_filename: Optional[str] = app.config.get("REDIS_CONFIG_FILENAME")
    if redis_config_filename:
        redis_config_fpath: str = os.path.join(APP_CTX_CWD, "config", redis_config_filename)
        if not os.path.isfile(redis_config_fpath):
            raise FileNotFoundError(f"Redis config toml file not found: {redis_config_fpath}")

        redis_config_kwargs: dict[str, Any] = toml.load(redis_config_fpath)
        # Inject login credentials through env
        if os.environ.get("STORYNEST_REDIS_USERNAME"):
            redis_config_kwargs["username"] = os.environ["STORYNEST_REDIS_USERNAME"]
        if os.environ.get("STORYNEST_REDIS_PASSWORD"):
            redis_config_kwargs["password"] = os.environ["STORYNEST_REDIS_PASSWORD"]
        init_redis(**redis_config_kwargs)
        logger.info("Post cache enabled (%s:%s)", redis_config_kwargs.get("host", "localhost"), redis_config_kwargs.get("port", 6379))
    else:
        set_redis(None)
        logger.info("No Redis config named, post cache disabled")

    ### Blueprints registaration ###
    from storynest.blueprint_auth import AUTH_BLUEPRINT
    from storynest.blueprint_posts import POSTS_BLUEPRINT
    from storynest.blueprint_comments import COMMENTS_BLUEPRINT
    from storynest.blueprint_user import USERS_BLUEPRINT
    from storynest.blueprint_misc import misc
    app.register_blueprint(AUTH_BLUEPRINT)
    app.register_blueprint(POSTS_BLUEPRINT)
    app.register_blueprint(COMMENTS_BLUEPRINT)
    app.register_blueprint(USERS_BLUEPRINT)
    app.register_blueprint(misc)

    ### Additional CLI commands ###
    from storynest.maintenance import reconcile_like_counters, cleanup_orphaned_data

    # Instantiate the database
    @app.cli.command("make_db")
    @with_appcontext
    def make_db() -> None:
        tables: set[str] = set(inspect(db.engine).get_table_names())
        db.create_all()
        new_tables: set[str] = set(inspect(db.engine).get_table_names())
        print(f"[{app.name}]: Tables Created: {', '.join(sorted(new_tables - tables)) or 'None, database already populated'}")

    # Test whether all entities specified in config.json under 'database' are present in the actual database instance
    @app.cli.command("validate_db")
    @with_appcontext
    def validate_db() -> None:
        expected: set[str] = {item for entities in CONFIG["database"]["entities"].values() for item in entities}
        tables: set[str] = set(inspect(db.engine).get_table_names()) - {"alembic_version"}
        if expected - tables:
            print(f"[{app.name}]: Mismatch in schema definition, tables {', '.join(sorted(expected - tables))} specified in database configuration but not found in database")
            raise SystemExit(1)
        if tables - expected:
            print(f"[{app.name}]: Mismatch in schema definition, tables {', '.join(sorted(tables - expected))} not specified in database configuration but found in database")
            raise SystemExit(1)
        print(f"[{app.name}]: Database schema matches configuration")

    # Recompute posts.likes_count from post_likes
    @app.cli.command("reconcile_likes")
    @click.option("--post-id", "post_ids", type=int, multiple=True, help="Restrict the repair to these posts")
    @with_appcontext
    def reconcile_likes(post_ids: tuple[int, ...]) -> None:
        try:
            repaired: dict[int, tuple[int, int]] = reconcile_like_counters(db, post_ids or None)
        except SQLAlchemyError:
            print(f"[{app.name}]: Failed to reconcile like counters")
            raise SystemExit(1)
        print(f"[{app.name}]: Repaired {len(repaired)} like counter(s)")

    @app.cli.command("cleanup_orphans")
    @with_appcontext
    def cleanup_orphans() -> None:
        try:
            removed: dict[str, int] = cleanup_orphaned_data(db)
        except SQLAlchemyError:
            print(f"[{app.name}]: Failed to remove orphaned rows")
            raise SystemExit(1)
        print(f"[{app.name}]: Removed {removed['post_likes']} orphaned like(s) and {removed['comments']} orphaned comment(s)")

    return app
