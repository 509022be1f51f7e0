'''Like relation and the denormalized posts.likes_count counter, maintained as a single unit of work

Every toggle runs the existence check, the post_likes mutation and the relative counter update inside one
transaction. The counter is only ever adjusted with `likes_count = likes_count +/- 1` executed by the database,
so concurrent toggles by different users on the same post cannot lose updates. Two toggles racing on the same
(post, user) pair are arbitrated by the unique constraint on post_likes: the loser fails with StorageConflict
and leaves no trace.
'''
import logging
from contextlib import contextmanager
from typing import Iterator
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import select, insert, update, delete
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from storynest.models import db, Post, PostLike

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
CONFLICT_SQLSTATES: frozenset[str] = frozenset({'40001', '40P01', '55P03'})

class LikeStoreError(Exception):
    '''Base class for failures surfaced by LikeStore'''
    description: str = 'Failed to toggle like'

    def __init__(self, detail: str = '') -> None:
        super().__init__(detail or self.description)
        self.detail = detail

class StorageConflict(LikeStoreError):
    '''The unit of work lost a race against a concurrent conflicting write'''

class StorageUnavailable(LikeStoreError):
    '''The store could not be reached, or the transaction could not be started/committed'''

class PostNotFound(LikeStoreError):
    description: str = 'Post not found'

def is_conflict(exc: DBAPIError) -> bool:
    '''Whether a driver error signals contention rather than an infrastructure failure'''
    if isinstance(exc, IntegrityError):
        return True
    sqlstate: str | None = getattr(exc.orig, 'pgcode', None) or getattr(exc.orig, 'sqlstate', None)
    if sqlstate in CONFLICT_SQLSTATES:
        return True
    return 'database is locked' in str(exc.orig).lower()

class LikeStore:
    def __init__(self, database: SQLAlchemy) -> None:
        self.database = database

    @property
    def session(self) -> Session:
        return self.database.session

    def _rollback(self) -> None:
        try:
            self.session.rollback()
        except SQLAlchemyError:
            logger.exception('[LIKES] Rollback failed, connection will be discarded')

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        '''Scoped transaction: commit on clean exit, roll back on every other exit path (including cancellation)'''
        session: Session = self.session
        try:
            yield session
            session.commit()
        except LikeStoreError:
            self._rollback()
            raise
        except DBAPIError as e:
            self._rollback()
            if is_conflict(e):
                raise StorageConflict(str(e.orig)) from e
            raise StorageUnavailable(str(e.orig)) from e
        except SQLAlchemyError as e:
            self._rollback()
            raise StorageUnavailable(str(e)) from e
        except BaseException:
            self._rollback()
            raise

    def toggle_like(self, post_id: int, user_id: int) -> dict[str, bool]:
        '''Flip the like state of (post_id, user_id), returning the new state as {"liked": bool}

        Raises PostNotFound if the post does not exist, StorageConflict/StorageUnavailable if the unit of work could not
        be committed. No partial effect survives a failure, and no retry is attempted here.
        '''
        return self.toggle_and_count(post_id, user_id)[0]

    def toggle_and_count(self, post_id: int, user_id: int) -> tuple[dict[str, bool], int]:
        '''Same as toggle_like, additionally returning the post's likes_count as read inside the same unit of work'''
        delta: int
        with self.unit_of_work() as session:
            if session.execute(select(Post.id).where(Post.id == post_id)).scalar_one_or_none() is None:
                raise PostNotFound(f'No post with ID {post_id} exists')

            like_id: int | None = session.execute(select(PostLike.id)
                                                  .where((PostLike.post_id == post_id) & (PostLike.user_id == user_id))
                                                  ).scalar_one_or_none()
            if like_id is not None:
                removed: int = session.execute(delete(PostLike)
                                               .where(PostLike.id == like_id)
                                               .execution_options(synchronize_session=False)
                                               ).rowcount
                if removed != 1:
                    # Another toggle for this pair removed the row between our check and delete
                    raise StorageConflict(f'Like on post {post_id} by user {user_id} was removed concurrently')
                delta = -1
            else:
                # Duplicate insert from a concurrent toggle surfaces as IntegrityError -> StorageConflict
                session.execute(insert(PostLike).values(post_id=post_id, user_id=user_id))
                delta = 1

            session.execute(update(Post)
                            .where(Post.id == post_id)
                            .values(likes_count=Post.likes_count + delta)
                            .execution_options(synchronize_session=False))
            likes_count: int = session.execute(select(Post.likes_count).where(Post.id == post_id)).scalar_one()

        logger.debug('[LIKES] user %s %s post %s', user_id, 'liked' if delta > 0 else 'unliked', post_id)
        return {'liked' : delta > 0}, likes_count

    def has_liked(self, post_id: int, user_id: int) -> bool:
        try:
            return self.session.execute(select(PostLike.id)
                                        .where((PostLike.post_id == post_id) & (PostLike.user_id == user_id))
                                        .limit(1)
                                        ).first() is not None
        except SQLAlchemyError as e:
            self._rollback()
            raise StorageUnavailable(str(e)) from e

    def like_count(self, post_id: int) -> int:
        try:
            count: int | None = self.session.execute(select(Post.likes_count).where(Post.id == post_id)).scalar_one_or_none()
        except SQLAlchemyError as e:
            self._rollback()
            raise StorageUnavailable(str(e)) from e
        if count is None:
            raise PostNotFound(f'No post with ID {post_id} exists')
        return count

like_store: LikeStore = LikeStore(db)
