import os
import logging
from dotenv import load_dotenv
from traceback import format_exc

logger = logging.getLogger(__name__)

bLoaded : bool = load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), ".env"),
                             verbose=True, override=False)
if not bLoaded:
    logger.info("No .env file found for StoryNest in %s, relying on process environment", os.path.dirname(__file__))

def _database_uri() -> str:
    if os.environ.get("SQLALCHEMY_DATABASE_URI"):
        return os.environ["SQLALCHEMY_DATABASE_URI"]
    if not os.environ.get("POSTGRES_HOST"):
        # Local development fallback, mirrors the single-file store StoryNest started with
        return "sqlite:///" + os.path.join(os.path.dirname(__file__), "instance", "storynest.db")
    return "postgresql+psycopg2://{username}:{password}@{host}:{port}/{database}".format(username=os.environ["POSTGRES_USERNAME"],
                                                                                         password=os.environ["POSTGRES_PASSWORD"],
                                                                                         host=os.environ["POSTGRES_HOST"],
                                                                                         port=os.environ.get("POSTGRES_PORT", 5432),
                                                                                         database=os.environ["POSTGRES_DATABASE"])

class FlaskConfig:
    try:
        ### Flask Configurations ###
        APP_PORT: int = int(os.environ.get("FLASK_PORT", 3000))
        APP_HOST: str = os.environ.get("FLASK_HOST", "127.0.0.1")
        APP_DEBUG: bool = bool(int(os.environ.get("FLASK_DEBUG", 0)))
        SECRET_KEY: str = os.environ.get("FLASK_SECRET_KEY", "storynest-dev-secret-key-change-in-production")
        ENVIRONMENT: str = os.environ.get("STORYNEST_ENV", "development")
        LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").upper()

        ### Database Configurations ###
        SQLALCHEMY_DATABASE_URI : str = _database_uri()
        SQLALCHEMY_ENGINE_OPTIONS: dict = {"pool_recycle" : int(os.environ.get("SQLALCHEMY_POOL_RECYCLE", 600)),
                                           "pool_pre_ping" : True}
        if not SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
            SQLALCHEMY_ENGINE_OPTIONS.update({"pool_size" : int(os.environ.get("SQLALCHEMY_POOL_SIZE", 10)),
                                              "max_overflow" : int(os.environ.get("SQLALCHEMY_MAX_OVERFLOW", 5)),
                                              "pool_timeout" : int(os.environ.get("SQLALCHEMY_POOL_TIMEOUT", 30))})
        SQLALCHEMY_TRACK_MODIFICATIONS = bool(int(os.environ.get("SQLALCHEMY_TRACK_MODIFICATIONS", 0)))

        ### Access tokens ###
        ACCESS_TOKEN_LIFETIME: int = int(os.environ.get("ACCESS_TOKEN_LIFETIME", 60*60*24))
        ACCESS_TOKEN_LEEWAY: int = int(os.environ.get("ACCESS_TOKEN_LEEWAY", 180))
        ACCESS_COOKIE_SECURE: bool = ENVIRONMENT == "production"

        ### CORS ###
        CORS_ORIGINS: list[str] = os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(",")

        ### Redis Configuration ###
        # Name of a TOML file under storynest/config holding redis.Redis kwargs. Unset disables the post cache
        REDIS_CONFIG_FILENAME: str | None = os.environ.get("REDIS_CONFIG_FILENAME")

    except (TypeError, ValueError):
        logger.critical("Invalid format/type for environment variables\n%s", format_exc())
        raise
    except KeyError:
        logger.critical("Failed to load environment variables\n%s", format_exc())
        raise


FLASK_CONFIG_OBJECT = FlaskConfig()
