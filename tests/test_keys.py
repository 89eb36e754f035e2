"""Tests for the remote key layout."""

import pytest

from pocketstore.sync.keys import Identity, file_key, parse_latest_key, version_name


@pytest.fixture
def identity():
    return Identity.from_email("Ada@Example.com")


class TestIdentity:
    """Tests for email-derived identities."""

    def test_normalized(self, identity):
        """Test that emails are lowercased and split."""
        assert identity.email == "ada@example.com"
        assert identity.localpart == "ada"
        assert identity.domain == "example.com"

    @pytest.mark.parametrize("email", ["", "ada", "@example.com", "ada@", "a/b@example.com"])
    def test_invalid_email(self, email):
        """Test that malformed emails are rejected."""
        with pytest.raises(ValueError):
            Identity.from_email(email)

    def test_key_layout(self, identity):
        """Test the domain-scoped keys."""
        assert identity.prefix == "domain/example.com/user/ada/"
        assert identity.profile_key() == "domain/example.com/user/ada/profile"
        assert identity.latest_key("project_1", "version_0123456789abcdef") == (
            "domain/example.com/user/ada/project/latest/project_1/version_0123456789abcdef"
        )
        assert identity.version_key("version_0123456789abcdef") == (
            "domain/example.com/user/ada/project/version/version_0123456789abcdef"
        )

    def test_legacy_mapping(self, identity):
        """Test that legacy keys map onto the domain namespace."""
        assert identity.legacy_prefix == "user/ada@example.com/"
        assert identity.to_current("user/ada@example.com/profile") == (
            "domain/example.com/user/ada/profile"
        )
        with pytest.raises(ValueError):
            identity.to_current("user/bob@example.com/profile")


class TestKeys:
    """Tests for module-level key helpers."""

    def test_file_key(self):
        """Test the content-addressed blob key."""
        h = "ab" + "cd" + "e" * 60
        assert file_key(h) == f"file/ab/cd/{h}"

    def test_file_key_rejects_non_hash(self):
        """Test that only real hashes become file keys."""
        with pytest.raises(ValueError):
            file_key("../etc/passwd")

    def test_version_name(self):
        """Test version naming from a record hash."""
        assert version_name("0123456789abcdef" + "f" * 48) == "version_0123456789abcdef"

    def test_parse_latest_key(self, identity):
        """Test splitting a latest marker key."""
        key = identity.latest_key("project_1", "version_0123456789abcdef")
        assert parse_latest_key(identity, key) == ("project_1", "version_0123456789abcdef")

    def test_parse_latest_key_rejects_others(self, identity):
        """Test that unrelated keys are not parsed."""
        assert parse_latest_key(identity, identity.profile_key()) is None
        assert parse_latest_key(identity, identity.latest_prefix() + "project_1/other") is None
