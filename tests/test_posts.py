import pytest
from sqlalchemy import func, select

from storynest.like_store import like_store, PostNotFound, StorageConflict, StorageUnavailable
from storynest.models import Comment, PostLike
from storynest.redis_config import RedisConfig
from storynest.resource_auxillary import post_cache_key

NEW_POST = {"title": "First light", "content": "The harbour at dawn.", "category": "travel"}


@pytest.fixture
def author(make_user):
    return make_user("author")


@pytest.fixture
def author_client(author, login):
    return login("author")


@pytest.fixture
def reader_client(make_user, login):
    make_user("reader")
    return login("reader")


def test_create_text_post(author_client):
    response = author_client.post("/api/posts/", json=NEW_POST)

    assert response.status_code == 201
    body = response.get_json()
    assert body["mediaCount"] == 0
    assert body["mediaUrls"] == []

    post = author_client.get(f"/api/posts/{body['postId']}").get_json()
    assert post["post_type"] == "text"
    assert post["username"] == "author"
    assert post["likes_count"] == 0
    assert post["comment_count"] == 0


def test_create_post_with_media(author_client):
    media = [{"url": "https://cdn.example.com/a.jpg", "type": "image"},
             {"url": "https://cdn.example.com/b.mp4", "type": "video"}]

    response = author_client.post("/api/posts/", json=NEW_POST | {"media": media})

    assert response.status_code == 201
    body = response.get_json()
    assert body["mediaCount"] == 2
    assert body["mediaUrls"] == ["https://cdn.example.com/a.jpg", "https://cdn.example.com/b.mp4"]
    assert body["allMedia"] == media

    post = author_client.get(f"/api/posts/{body['postId']}").get_json()
    assert post["post_type"] == "mixed"
    assert post["media_url"] == "https://cdn.example.com/a.jpg"
    assert post["media_type"] == "image"
    assert post["all_media"] == media


@pytest.mark.parametrize("field, message", [
    ("title", "Title is required"),
    ("content", "Content is required"),
    ("category", "Category is required"),
])
def test_create_post_requires_fields(author_client, field, message):
    response = author_client.post("/api/posts/", json=NEW_POST | {field: "   "})

    assert response.status_code == 400
    assert response.get_json()["message"] == message


def test_create_post_rejects_bad_input(author_client):
    assert author_client.post("/api/posts/", json=NEW_POST | {"title": "t" * 201}).status_code == 400
    assert author_client.post("/api/posts/", json=NEW_POST | {"post_type": "poll"}).status_code == 400
    assert author_client.post("/api/posts/", json=NEW_POST | {"media": [{"type": "image"}]}).status_code == 400


def test_create_post_requires_login(client):
    assert client.post("/api/posts/", json=NEW_POST).status_code == 401


def test_list_posts(client, author, make_post):
    first = make_post(author, title="first", category="travel").id
    second = make_post(author, title="second", category="food").id
    third = make_post(author, title="third", category="travel").id

    posts = client.get("/api/posts/").get_json()
    assert [post["id"] for post in posts] == [third, second, first]
    assert all(post["username"] == "author" for post in posts)

    travel = client.get("/api/posts/?category=travel").get_json()
    assert [post["id"] for post in travel] == [third, first]
    assert len(client.get("/api/posts/?category=all").get_json()) == 3

    page = client.get("/api/posts/?limit=1&offset=1").get_json()
    assert [post["id"] for post in page] == [second]

    assert client.get("/api/posts/?limit=ten").status_code == 400


def test_list_posts_caps_limit(client, author, make_post):
    for i in range(3):
        make_post(author, title=f"post {i}")

    assert len(client.get("/api/posts/?limit=100000").get_json()) == 3
    assert len(client.get("/api/posts/?limit=0").get_json()) == 1


def test_get_missing_post(client):
    response = client.get("/api/posts/404")

    assert response.status_code == 404
    assert response.get_json()["message"] == "Post not found"


def test_get_post_includes_like_state_for_logged_in_users(client, reader_client, author, make_post):
    post_id = make_post(author).id

    assert "liked" not in client.get(f"/api/posts/{post_id}").get_json()
    assert reader_client.get(f"/api/posts/{post_id}").get_json()["liked"] is False

    reader_client.post(f"/api/posts/{post_id}/like")
    assert reader_client.get(f"/api/posts/{post_id}").get_json()["liked"] is True


def test_toggle_like(reader_client, author, make_post):
    post_id = make_post(author).id

    response = reader_client.post(f"/api/posts/{post_id}/like")
    assert response.status_code == 200
    assert response.get_json() == {"liked": True, "likes_count": 1}

    response = reader_client.post(f"/api/posts/{post_id}/like")
    assert response.get_json() == {"liked": False, "likes_count": 0}


def test_toggle_like_requires_login(client, author, make_post):
    post_id = make_post(author).id

    response = client.post(f"/api/posts/{post_id}/like")

    assert response.status_code == 401
    assert like_store.like_count(post_id) == 0


def test_toggle_like_count_comes_from_the_toggle(monkeypatch, reader_client, author, make_post):
    post_id = make_post(author, likes_count=2).id

    def post_gone(post_id):
        raise PostNotFound(f"No post with ID {post_id} exists")

    # The post disappearing after the toggle committed must not turn a successful toggle into a 404
    monkeypatch.setattr(like_store, "like_count", post_gone)
    response = reader_client.post(f"/api/posts/{post_id}/like")

    assert response.status_code == 200
    assert response.get_json() == {"liked": True, "likes_count": 3}


def test_toggle_like_on_missing_post(reader_client):
    response = reader_client.post("/api/posts/9999/like")

    assert response.status_code == 404
    assert response.get_json()["message"] == "Post not found"


@pytest.mark.parametrize("error", [StorageConflict, StorageUnavailable])
def test_toggle_like_storage_failure_is_generic(monkeypatch, reader_client, author, make_post, error):
    post_id = make_post(author).id

    def failing_toggle(post_id, user_id):
        raise error("could not serialize access due to concurrent update")

    monkeypatch.setattr(like_store, "toggle_and_count", failing_toggle)
    response = reader_client.post(f"/api/posts/{post_id}/like")

    assert response.status_code == 500
    assert response.get_json() == {"message": "Failed to toggle like"}


def test_post_comments(client, author, make_post, db):
    post_id = make_post(author).id
    for content in ("first!", "second"):
        db.session.add(Comment(post_id=post_id, user_id=author.id, content=content))
        db.session.commit()

    comments = client.get(f"/api/posts/{post_id}/comments").get_json()

    assert [comment["content"] for comment in comments] == ["first!", "second"]
    assert comments[0]["username"] == "author"


def test_search_posts(client, author, make_post):
    make_post(author, title="Walking in Kyoto", content="Temples")
    make_post(author, title="Bread", content="A sourdough diary from kyoto")
    make_post(author, title="Unrelated", content="Nothing to see")

    results = client.get("/api/posts/search/kyoto").get_json()

    assert sorted(post["title"] for post in results) == ["Bread", "Walking in Kyoto"]
    assert client.get("/api/posts/search/%20").status_code == 400


def test_search_is_capped(client, author, make_post):
    for i in range(55):
        make_post(author, title=f"story {i}")

    assert len(client.get("/api/posts/search/story").get_json()) == 50


def test_delete_post(db, author_client, reader_client, author, make_post):
    post_id = make_post(author).id
    reader_client.post(f"/api/posts/{post_id}/like")

    response = reader_client.delete(f"/api/posts/{post_id}")
    assert response.status_code == 403

    response = author_client.delete(f"/api/posts/{post_id}")
    assert response.status_code == 200
    assert author_client.get(f"/api/posts/{post_id}").status_code == 404
    assert db.session.execute(select(func.count(PostLike.id))).scalar_one() == 0

    assert author_client.delete(f"/api/posts/{post_id}").status_code == 404


#
# Post cache
#
def test_get_post_is_served_from_cache(client, cache, author, make_post):
    post_id = make_post(author, all_media='[{"url": "https://cdn.example.com/a.jpg", "type": "image"}]').id

    first = client.get(f"/api/posts/{post_id}").get_json()
    assert cache.exists(post_cache_key(post_id))
    assert cache.ttl(post_cache_key(post_id)) <= RedisConfig.TTL_STRONG

    cached = client.get(f"/api/posts/{post_id}").get_json()
    assert cached == first


def test_missing_post_is_cached_as_not_found(client, cache):
    assert client.get("/api/posts/777").status_code == 404
    assert RedisConfig.NF_SENTINEL_KEY in cache.hgetall(post_cache_key(777))
    assert client.get("/api/posts/777").status_code == 404


def test_new_post_replaces_cached_not_found(client, author_client, cache):
    assert client.get("/api/posts/1").status_code == 404
    assert RedisConfig.NF_SENTINEL_KEY in cache.hgetall(post_cache_key(1))

    assert author_client.post("/api/posts/", json=NEW_POST).get_json()["postId"] == 1

    assert not cache.exists(post_cache_key(1))
    response = client.get("/api/posts/1")
    assert response.status_code == 200
    assert response.get_json()["title"] == NEW_POST["title"]


def test_like_evicts_cached_post(client, reader_client, cache, author, make_post):
    post_id = make_post(author).id
    assert client.get(f"/api/posts/{post_id}").get_json()["likes_count"] == 0

    reader_client.post(f"/api/posts/{post_id}/like")

    assert not cache.exists(post_cache_key(post_id))
    assert client.get(f"/api/posts/{post_id}").get_json()["likes_count"] == 1
