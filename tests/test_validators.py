"""Tests for validators.py input checks."""

import pytest

from vcs_mirror.validators import (
    validate_branch_name,
    validate_repository_url,
    validate_server_path,
)


class TestValidateRepositoryUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "https://svn.example.com/repo",
            "http://localhost:8080/svn",
            "svn://svn.example.com/repo",
            "svn+ssh://mirror@svn.example.com/repo",
            "file:///srv/svn/repo",
        ],
    )
    def test_valid(self, url):
        assert validate_repository_url(url) == (True, "")

    def test_empty(self):
        ok, message = validate_repository_url("  ")
        assert not ok
        assert message == "Repository URL cannot be empty"

    def test_bad_scheme(self):
        ok, message = validate_repository_url("ftp://svn.example.com/repo")
        assert not ok
        assert "must use one of" in message

    def test_missing_host(self):
        ok, message = validate_repository_url("https:///repo")
        assert not ok
        assert "hostname" in message


class TestValidateServerPath:
    @pytest.mark.parametrize("path", ["/", "/trunk", "/trunk/project/"])
    def test_valid(self, path):
        assert validate_server_path(path)[0]

    @pytest.mark.parametrize(
        "path,reason",
        [
            ("trunk", "must start with '/'"),
            ("", "must start with '/'"),
            ("/trunk/../secret", "cannot contain '..'"),
            ("/trunk//x", "empty path segments"),
        ],
    )
    def test_invalid(self, path, reason):
        ok, message = validate_server_path(path)
        assert not ok
        assert reason in message


class TestValidateBranchName:
    @pytest.mark.parametrize("name", ["master", "feature/mirror", "release-1.2"])
    def test_valid(self, name):
        assert validate_branch_name(name) == (True, "")

    @pytest.mark.parametrize(
        "name",
        ["", "a..b", "with space", "tilde~1", "colon:x", "ref@{1}", "/lead", "trail/", "x.lock"],
    )
    def test_invalid(self, name):
        ok, message = validate_branch_name(name)
        assert not ok
        assert message.startswith("Branch name")
