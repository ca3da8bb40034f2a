"""Role hierarchy and forum authorization rules."""

from datetime import datetime, timedelta, timezone

import pytest

from paper_nexus.forum.permissions import (
    ACTIONS,
    ROLE_HIERARCHY,
    can_edit,
    can_perform_action,
    has_role,
)


def _actor(user_id, role):
    return {"user_id": user_id, "role": role}


class TestRoleHierarchy:
    def test_total_order(self):
        assert ROLE_HIERARCHY["admin"] > ROLE_HIERARCHY["moderator"] > ROLE_HIERARCHY["user"]

    def test_has_role(self):
        assert has_role(_actor(1, "admin"), "moderator")
        assert has_role(_actor(1, "moderator"), "moderator")
        assert not has_role(_actor(1, "user"), "moderator")
        assert not has_role(None, "user")
        assert not has_role(_actor(1, "superuser"), "user")


class TestCanPerformAction:
    @pytest.mark.parametrize("role", ["user", "moderator", "admin"])
    @pytest.mark.parametrize("is_author", [True, False])
    @pytest.mark.parametrize("action", ["pin", "unpin"])
    def test_pin_is_admin_only(self, role, is_author, action):
        author_id = 7 if is_author else 99
        allowed = can_perform_action(action, _actor(7, role), author_id, "post")
        assert allowed is (role == "admin")

    @pytest.mark.parametrize("action", ACTIONS)
    def test_admin_may_do_anything(self, action):
        assert can_perform_action(action, _actor(1, "admin"), 2, "post") is True

    @pytest.mark.parametrize("action", ["delete", "lock", "unlock"])
    def test_moderator_actions_on_any_content(self, action):
        assert can_perform_action(action, _actor(1, "moderator"), 2, "post") is True
        assert can_perform_action(action, _actor(1, "moderator"), 2, "reply") is True

    def test_moderator_cannot_edit_or_restore_others(self):
        mod = _actor(1, "moderator")
        assert can_perform_action("edit", mod, 2, "post") is False
        assert can_perform_action("restore", mod, 2, "post") is False

    @pytest.mark.parametrize("action", ["edit", "delete"])
    def test_author_may_edit_and_delete_own(self, action):
        assert can_perform_action(action, _actor(5, "user"), 5, "post") is True
        assert can_perform_action(action, _actor(5, "user"), 6, "post") is False

    @pytest.mark.parametrize("action", ["lock", "unlock", "restore"])
    def test_author_cannot_moderate_own_post(self, action):
        assert can_perform_action(action, _actor(5, "user"), 5, "post") is False

    def test_unknown_inputs_deny(self):
        assert can_perform_action("explode", _actor(1, "admin"), 1, "post") is False
        assert can_perform_action("edit", None, 1, "post") is False
        assert can_perform_action("edit", _actor(1, "root"), 1, "post") is False
        assert can_perform_action("edit", {}, None, "post") is False
        assert can_perform_action(None, _actor(1, "user"), 1, "post") is False

    def test_accepts_objects_with_attributes(self, actor):
        token = actor({"user_id": 3, "username": "bob", "role": "user"})
        assert can_perform_action("edit", token, 3, "post") is True
        assert can_perform_action("pin", token, 3, "post") is False


class TestCanEdit:
    def test_inside_window(self):
        now = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)
        assert can_edit("2024-01-02T00:00:00Z", now=now) is True

    def test_window_elapsed(self):
        created = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)
        assert can_edit(created, now=created + timedelta(hours=24)) is False
        assert can_edit(created, now=created + timedelta(hours=23, minutes=59)) is True

    def test_custom_window(self):
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert can_edit(created, now=created + timedelta(hours=2), window_hours=1) is False

    def test_missing_or_garbage_created_at(self):
        assert can_edit(None) is False
        assert can_edit("not a date") is False
