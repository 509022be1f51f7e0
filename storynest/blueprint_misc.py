import logging
from datetime import datetime, timezone
from flask import Blueprint, jsonify, current_app
from werkzeug import Response
from werkzeug.exceptions import InternalServerError
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from storynest.models import db, Post, User, CONFIG

logger = logging.getLogger(__name__)

misc = Blueprint('Misc', 'misc', url_prefix="/api")

@misc.route('/health', methods=['GET'])
def health() -> tuple[Response, int]:
    return jsonify({'status' : 'OK',
                    'timestamp' : datetime.now(timezone.utc).isoformat(),
                    'environment' : current_app.config.get('ENVIRONMENT', 'development')}), 200

@misc.route('/stats', methods=['GET'])
def stats() -> tuple[Response, int]:
    try:
        total_posts: int = db.session.execute(select(func.count(Post.id))).scalar_one()
        total_users: int = db.session.execute(select(func.count(User.id))).scalar_one()
        categories = db.session.execute(select(Post.category, func.count(Post.id).label('count'))
                                        .group_by(Post.category)
                                        .order_by(func.count(Post.id).desc(), Post.category.asc())
                                        .limit(CONFIG['posts']['popular_categories'])
                                        ).all()
    except SQLAlchemyError:
        logger.exception('Failed to compute stats')
        raise InternalServerError('Failed to fetch stats')

    return jsonify({'total_posts' : total_posts,
                    'total_users' : total_users,
                    'popular_categories' : [{'category' : category, 'count' : count} for category, count in categories]}), 200
