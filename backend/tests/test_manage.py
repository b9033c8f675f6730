"""Tests for the operator commands in app.manage."""

import hashlib
from unittest.mock import patch

import pytest

from app.manage import create_admin, issue_key, revoke_key
from app.models.api_key import ApiKey
from app.models.user import User
from pipeline_support import add_user


@pytest.fixture
def db_factory(session_factory):
    with patch("app.manage.get_db", session_factory):
        yield session_factory


class TestCreateAdmin:
    def test_creates_admin_user(self, db_factory):
        create_admin("ops1", "ops@example.com")
        db = db_factory()
        try:
            user = db.get(User, "ops1")
            assert user.is_admin
            assert user.name == "ops@example.com"
        finally:
            db.close()

    def test_promotes_existing_user(self, db_factory):
        add_user(db_factory, "member1")
        create_admin("member1", "member1@example.com")
        db = db_factory()
        try:
            assert db.get(User, "member1").is_admin
        finally:
            db.close()

    def test_rejects_separator_in_uid(self, db_factory):
        with pytest.raises(SystemExit):
            create_admin("bad_uid", "x@example.com")


class TestKeys:
    def test_issue_key_stores_only_hash(self, db_factory):
        add_user(db_factory, "ops1", role="admin")
        raw_key = issue_key("ops1", rpm=30)

        assert raw_key.startswith("wdk_")
        db = db_factory()
        try:
            api_key = db.query(ApiKey).one()
            assert api_key.key_hash == hashlib.sha256(raw_key.encode()).hexdigest()
            assert api_key.rate_limit_rpm == 30
        finally:
            db.close()

    def test_issue_key_for_unknown_user(self, db_factory):
        with pytest.raises(SystemExit):
            issue_key("ghost")

    def test_revoke_key(self, db_factory):
        add_user(db_factory, "ops1", role="admin")
        issue_key("ops1")
        db = db_factory()
        try:
            key_id = db.query(ApiKey).one().id
        finally:
            db.close()

        assert revoke_key(key_id) is True
        assert revoke_key(9999) is False
