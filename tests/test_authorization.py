"""Test ownership checks."""

import pytest

from zappytalk_api.auth import AuthContext
from zappytalk_api.authorization import authorize, owns, require_owner
from zappytalk_api.errors import Forbidden


class TestAuthorize:
    def test_same_identity_allowed(self):
        assert authorize("u1", "u1") is True

    def test_different_identity_denied(self):
        assert authorize("u1", "u2") is False

    def test_absent_subject_denied(self):
        assert authorize("u1", None) is False

    def test_absent_owner_denied(self):
        assert authorize(None, "u1") is False

    def test_case_sensitive(self):
        assert authorize("User_1", "user_1") is False


class TestRequireOwner:
    def test_owner_passes(self):
        require_owner(AuthContext(subject_id="u1"), "u1")

    def test_non_owner_forbidden_with_message(self):
        with pytest.raises(Forbidden) as exc:
            require_owner(AuthContext(subject_id="u2"), "u1", "Access denied. You can only access your own user data.")
        assert exc.value.status_code == 403
        assert exc.value.message == "Access denied. You can only access your own user data."

    def test_verified_context_without_subject_forbidden(self):
        with pytest.raises(Forbidden):
            require_owner(AuthContext(subject_id=None), "u1")

    def test_unisolated_context_skips_check(self):
        require_owner(AuthContext(subject_id=None, isolated=False), "u1")


class TestOwns:
    def test_owner(self):
        assert owns(AuthContext(subject_id="u1"), "u1") is True

    def test_non_owner(self):
        assert owns(AuthContext(subject_id="u2"), "u1") is False

    def test_unisolated_context(self):
        assert owns(AuthContext(subject_id=None, isolated=False), "u1") is True
