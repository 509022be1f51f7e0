'''Repair jobs for data that can drift outside of the request path

- Like counters: posts.likes_count is only adjusted by LikeStore, so rows removed by other means (cascading deletes of
  users, manual cleanup) leave the counter stale. reconcile_like_counters recomputes it from post_likes.
- Orphans: likes and comments pointing at posts/users that no longer exist (e.g. a SQLite database that ran without
  foreign key enforcement).

Both jobs are exposed as Flask CLI commands and are meant to be run periodically, not continuously.
'''
import logging
from typing import Iterable, Optional
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import SQLAlchemyError
from storynest.models import Post, PostLike, Comment, User

logger = logging.getLogger(__name__)

def reconcile_like_counters(database: SQLAlchemy, post_ids: Optional[Iterable[int]] = None) -> dict[int, tuple[int, int]]:
    '''
    Recompute posts.likes_count from the actual post_likes rows, in a single transaction
    Args:
        database: SQLAlchemy instance bound to the application
        post_ids: Restrict the repair to these posts. Defaults to every post

    Returns:
        Mapping of post ID to (stored count, actual count) for every post that was repaired
    '''
    actual_count = (select(func.count(PostLike.id))
                    .where(PostLike.post_id == Post.id)
                    .correlate(Post)
                    .scalar_subquery())
    query = select(Post.id, Post.likes_count, actual_count).where(Post.likes_count != actual_count)
    if post_ids is not None:
        post_ids = list(post_ids)
        if not post_ids:
            return {}
        query = query.where(Post.id.in_(post_ids))

    session = database.session
    try:
        # Lock drifted rows on backends that support it so concurrent toggles queue behind the repair
        drifted: dict[int, tuple[int, int]] = {row[0] : (row[1], row[2]) for row in session.execute(query.with_for_update(of=Post)).all()}
        for post_id, (_, actual) in drifted.items():
            # Recompute inside the UPDATE itself so a toggle committed since the read is still counted
            session.execute(update(Post)
                            .where(Post.id == post_id)
                            .values(likes_count=select(func.count(PostLike.id)).where(PostLike.post_id == post_id).scalar_subquery())
                            .execution_options(synchronize_session=False))
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception('[RECONCILIATION] Failed to repair like counters')
        raise

    for post_id, (stored, actual) in drifted.items():
        logger.warning('[RECONCILIATION] Post %s likes_count drifted: stored %s, actual %s', post_id, stored, actual)
    return drifted

def cleanup_orphaned_data(database: SQLAlchemy) -> dict[str, int]:
    '''Delete likes and comments whose post or author no longer exists. Returns rows removed per table'''
    removed: dict[str, int] = {}
    session = database.session
    try:
        for model, table in ((PostLike, PostLike.__tablename__), (Comment, Comment.__tablename__)):
            result = session.execute(delete(model)
                                     .where(model.post_id.not_in(select(Post.id)) | model.user_id.not_in(select(User.id)))
                                     .execution_options(synchronize_session=False))
            removed[table] = result.rowcount
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception('[CLEANUP] Failed to remove orphaned rows')
        raise

    logger.info('[CLEANUP] Removed orphaned rows: %s', removed)
    return removed
