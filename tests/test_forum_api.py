"""Forum endpoints: posts, replies, and moderation through HTTP."""

import pytest


@pytest.fixture
def forum(client, make_user, auth_headers):
    users = {
        "admin": make_user("root_admin", role="admin"),
        "dave": make_user("dave", role="moderator"),
        "eve": make_user("eve", role="moderator"),
        "bob": make_user("bob"),
        "carol": make_user("carol"),
    }
    headers = {name: auth_headers(u) for name, u in users.items()}

    r = client.post(
        "/forum/posts",
        json={"title": "Past paper 2019 Q3", "content": "How do I start this?", "tags": ["Maths"]},
        headers=headers["bob"],
    )
    assert r.status_code == 201
    return {"users": users, "h": headers, "post": r.json()["post"]}


class TestPosts:
    def test_create_requires_login(self, client):
        r = client.post("/forum/posts", json={"title": "t", "content": "c"})
        assert r.status_code == 401

    def test_create_and_read(self, client, forum):
        post = forum["post"]
        assert post["author"]["username"] == "bob"
        assert post["tags"] == ["maths"]

        r = client.get(f"/forum/posts/{post['post_id']}")
        assert r.status_code == 200
        assert r.json()["post"]["title"] == "Past paper 2019 Q3"
        assert r.json()["replies"] == []

    def test_validation_error_shape(self, client, forum):
        r = client.post("/forum/posts", json={"title": "", "content": "x"}, headers=forum["h"]["bob"])
        assert r.status_code == 400
        assert "title" in r.json()["fields"]

    def test_duplicate(self, client, forum):
        r = client.post(
            "/forum/posts",
            json={"title": "Past paper 2019 Q3", "content": "How do I start this?"},
            headers=forum["h"]["bob"],
        )
        assert r.status_code == 409
        assert r.json()["code"] == "duplicate_post"

    def test_edit_own_only(self, client, forum):
        pid = forum["post"]["post_id"]
        r = client.patch(f"/forum/posts/{pid}", json={"content": "Solved it"}, headers=forum["h"]["carol"])
        assert r.status_code == 403

        r = client.patch(f"/forum/posts/{pid}", json={"content": "Solved it"}, headers=forum["h"]["bob"])
        assert r.status_code == 200
        assert r.json()["post"]["content"] == "Solved it"
        assert r.json()["post"]["edited"] is True

    def test_list_with_tag(self, client, forum):
        client.post("/forum/posts", json={"title": "Other", "content": "x", "tags": ["physics"]}, headers=forum["h"]["carol"])
        titles = [p["title"] for p in client.get("/forum/posts", params={"tag": "maths"}).json()["posts"]]
        assert titles == ["Past paper 2019 Q3"]
        assert len(client.get("/forum/posts").json()["posts"]) == 2


class TestLocking:
    def test_lock_blocks_replies(self, client, forum):
        pid = forum["post"]["post_id"]
        h = forum["h"]

        r = client.post(f"/forum/posts/{pid}/replies", json={"content": "Start with the integral"}, headers=h["carol"])
        assert r.status_code == 201

        r = client.patch(f"/forum/posts/{pid}/moderation", json={"action": "lock"}, headers=h["dave"])
        assert r.status_code == 200
        post = r.json()["post"]
        assert post["is_locked"] is True
        assert post["modified_by"]["performed_by_username"] == "dave"

        r = client.post(f"/forum/posts/{pid}/replies", json={"content": "me too"}, headers=h["carol"])
        assert r.status_code == 403
        assert r.json()["code"] == "post_locked"

        r = client.get(f"/forum/posts/{pid}")
        assert r.json()["post"]["reply_count"] == 1
        assert len(r.json()["replies"]) == 1

    def test_author_cannot_lock(self, client, forum):
        pid = forum["post"]["post_id"]
        r = client.patch(f"/forum/posts/{pid}/moderation", json={"action": "lock"}, headers=forum["h"]["bob"])
        assert r.status_code == 403


class TestDeletion:
    def test_moderator_delete_freezes_post(self, client, forum):
        pid = forum["post"]["post_id"]
        h = forum["h"]

        r = client.delete(f"/forum/posts/{pid}", headers=h["eve"])
        assert r.status_code == 200
        assert r.json()["post"]["is_deleted"] is True

        assert client.get(f"/forum/posts/{pid}").status_code == 404
        assert client.get(f"/forum/posts/{pid}", headers=h["bob"]).status_code == 404
        assert client.get(f"/forum/posts/{pid}", headers=h["eve"]).status_code == 200

        r = client.patch(f"/forum/posts/{pid}", json={"content": "undelete me"}, headers=h["bob"])
        assert r.status_code == 400
        assert r.json()["code"] == "post_deleted"

        r = client.post(f"/forum/posts/{pid}/replies", json={"content": "hello?"}, headers=h["carol"])
        assert r.status_code == 404

    def test_include_deleted_only_for_moderators(self, client, forum):
        pid = forum["post"]["post_id"]
        client.delete(f"/forum/posts/{pid}", headers=forum["h"]["eve"])

        anon = client.get("/forum/posts", params={"include_deleted": True}).json()["posts"]
        user = client.get("/forum/posts", params={"include_deleted": True}, headers=forum["h"]["carol"]).json()["posts"]
        mod = client.get("/forum/posts", params={"include_deleted": True}, headers=forum["h"]["dave"]).json()["posts"]
        assert anon == [] and user == []
        assert [p["post_id"] for p in mod] == [pid]

    def test_restore(self, client, forum):
        pid = forum["post"]["post_id"]
        h = forum["h"]
        client.delete(f"/forum/posts/{pid}", headers=h["eve"])

        r = client.patch(f"/forum/posts/{pid}/moderation", json={"action": "restore"}, headers=h["eve"])
        assert r.status_code == 403

        r = client.patch(f"/forum/posts/{pid}/moderation", json={"action": "restore"}, headers=h["admin"])
        assert r.status_code == 200
        assert r.json()["post"]["is_deleted"] is False

        r = client.patch(f"/forum/posts/{pid}/moderation", json={"action": "restore"}, headers=h["admin"])
        assert r.status_code == 400
        assert r.json()["code"] == "post_not_deleted"


class TestModerationActions:
    def test_pin_admin_only(self, client, forum):
        pid = forum["post"]["post_id"]
        h = forum["h"]
        assert client.patch(f"/forum/posts/{pid}/moderation", json={"action": "pin"}, headers=h["dave"]).status_code == 403

        r = client.patch(f"/forum/posts/{pid}/moderation", json={"action": "toggle_pin"}, headers=h["admin"])
        assert r.json()["post"]["is_pinned"] is True
        r = client.patch(f"/forum/posts/{pid}/moderation", json={"action": "toggle_pin"}, headers=h["admin"])
        assert r.json()["post"]["is_pinned"] is False

    def test_invalid_action(self, client, forum):
        pid = forum["post"]["post_id"]
        r = client.patch(f"/forum/posts/{pid}/moderation", json={"action": "feature"}, headers=forum["h"]["admin"])
        assert r.status_code == 400
        assert r.json()["code"] == "invalid_action"

    def test_missing_post(self, client, forum):
        r = client.patch("/forum/posts/9999/moderation", json={"action": "lock"}, headers=forum["h"]["admin"])
        assert r.status_code == 404

    def test_history_requires_moderator(self, client, forum):
        pid = forum["post"]["post_id"]
        h = forum["h"]
        client.patch(f"/forum/posts/{pid}/moderation", json={"action": "lock"}, headers=h["dave"])
        client.patch(f"/forum/posts/{pid}/moderation", json={"action": "unlock"}, headers=h["eve"])

        r = client.get(f"/forum/posts/{pid}/moderation", headers=h["bob"])
        assert r.status_code == 403
        assert r.json()["code"] == "moderator_required"

        r = client.get(f"/forum/posts/{pid}/moderation", headers=h["dave"])
        assert r.status_code == 200
        history = r.json()["history"]
        assert [(e["action"], e["performed_by_username"]) for e in history] == [("lock", "dave"), ("unlock", "eve")]


class TestReplies:
    def test_reply_lifecycle(self, client, forum):
        pid = forum["post"]["post_id"]
        h = forum["h"]

        r = client.post(f"/forum/posts/{pid}/replies", json={"content": "Try substitution"}, headers=h["carol"])
        rid = r.json()["reply"]["reply_id"]

        r = client.patch(f"/forum/replies/{rid}", json={"content": "Try u-substitution"}, headers=h["carol"])
        assert r.status_code == 200
        assert r.json()["reply"]["edited"] is True

        assert client.patch(f"/forum/replies/{rid}", json={"content": "hijack"}, headers=h["bob"]).status_code == 403

        r = client.delete(f"/forum/replies/{rid}", headers=h["dave"])
        assert r.status_code == 200
        assert r.json()["deleted"] is True

        r = client.get(f"/forum/posts/{pid}/replies")
        assert r.json()["replies"] == []
        assert client.get(f"/forum/posts/{pid}").json()["post"]["reply_count"] == 0

    def test_replies_of_missing_post(self, client):
        assert client.get("/forum/posts/4242/replies").status_code == 404

    def test_empty_reply(self, client, forum):
        pid = forum["post"]["post_id"]
        r = client.post(f"/forum/posts/{pid}/replies", json={"content": "   "}, headers=forum["h"]["carol"])
        assert r.status_code == 400
