import pytest
from sqlalchemy import delete, func, insert, select, update

from storynest.like_store import like_store
from storynest.maintenance import cleanup_orphaned_data, reconcile_like_counters
from storynest.models import Comment, Post, PostLike, User


@pytest.fixture
def liked_post(make_user, make_post):
    author = make_user("author")
    post_id = make_post(author).id
    user_ids = [make_user(f"fan{i}").id for i in range(3)]
    for user_id in user_ids:
        like_store.toggle_like(post_id, user_id)
    return post_id, user_ids


def stored_count(db, post_id):
    return db.session.execute(select(Post.likes_count).where(Post.id == post_id)).scalar_one()


def test_reconcile_repairs_drifted_counter(db, liked_post):
    post_id, _ = liked_post
    db.session.execute(update(Post).where(Post.id == post_id).values(likes_count=10))
    db.session.commit()

    assert reconcile_like_counters(db) == {post_id: (10, 3)}
    assert stored_count(db, post_id) == 3


def test_reconcile_after_cascading_user_delete(db, liked_post):
    post_id, user_ids = liked_post
    db.session.execute(delete(User).where(User.id == user_ids[0]))
    db.session.commit()

    # The cascade removed the like row behind the counter's back
    assert stored_count(db, post_id) == 3
    assert reconcile_like_counters(db) == {post_id: (3, 2)}
    assert stored_count(db, post_id) == 2


def test_reconcile_leaves_consistent_counters_alone(db, liked_post):
    assert reconcile_like_counters(db) == {}


def test_reconcile_restricted_to_given_posts(db, liked_post, make_user, make_post):
    post_id, _ = liked_post
    other_id = make_post(make_user("other")).id
    db.session.execute(update(Post).where(Post.id.in_([post_id, other_id])).values(likes_count=7))
    db.session.commit()

    assert reconcile_like_counters(db, [other_id]) == {other_id: (7, 0)}
    assert stored_count(db, post_id) == 7
    assert reconcile_like_counters(db, []) == {}


def test_cleanup_removes_orphaned_rows(db, liked_post):
    post_id, user_ids = liked_post
    db.session.execute(insert(Comment).values(post_id=post_id, user_id=user_ids[0], content="kept"))
    db.session.commit()

    # Orphans can only appear while foreign keys are not enforced
    with db.engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys = OFF")
        conn.execute(insert(PostLike).values(post_id=4242, user_id=user_ids[0]))
        conn.execute(insert(Comment).values(post_id=4242, user_id=user_ids[0], content="orphan"))
        conn.execute(insert(Comment).values(post_id=post_id, user_id=4343, content="orphan"))
        conn.commit()
        conn.exec_driver_sql("PRAGMA foreign_keys = ON")

    assert cleanup_orphaned_data(db) == {"post_likes": 1, "comments": 2}
    assert db.session.execute(select(func.count(PostLike.id))).scalar_one() == 3
    assert db.session.execute(select(Comment.content)).scalars().all() == ["kept"]


def test_reconcile_likes_command(app, db, liked_post):
    post_id, _ = liked_post
    db.session.execute(update(Post).where(Post.id == post_id).values(likes_count=0))
    db.session.commit()

    result = app.test_cli_runner().invoke(args=["reconcile_likes", "--post-id", str(post_id)])

    assert result.exit_code == 0, result.output
    assert "Repaired 1 like counter(s)" in result.output
    assert stored_count(db, post_id) == 3


def test_cleanup_orphans_command(app, db, liked_post):
    result = app.test_cli_runner().invoke(args=["cleanup_orphans"])

    assert result.exit_code == 0, result.output
    assert "Removed 0 orphaned like(s) and 0 orphaned comment(s)" in result.output


def test_make_db_and_validate_db_commands(app, db):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["make_db"])
    assert result.exit_code == 0, result.output
    assert "database already populated" in result.output

    result = runner.invoke(args=["validate_db"])
    assert result.exit_code == 0, result.output
    assert "Database schema matches configuration" in result.output
