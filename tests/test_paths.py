"""Tests for rest_server/paths.py - URL shape parsing."""

import pytest

from conftest import SHA_A
from rest_server.errors import ApiError, ErrorKind
from rest_server.paths import ObjectType, RequestPath, Shape, is_sha256, parse_path


class TestParsePath:
    """Tests for the recognized URL shapes."""

    def test_repository(self):
        assert parse_path("/alice/") == RequestPath(Shape.REPOSITORY, repo="alice")
        assert parse_path("/alice") == RequestPath(Shape.REPOSITORY, repo="alice")

    def test_default_repository_root(self):
        assert parse_path("/") == RequestPath(Shape.REPOSITORY)

    def test_config(self):
        path = parse_path("/alice/config")
        assert path.shape == Shape.CONFIG
        assert path.repo == "alice"
        assert path.tpe == ObjectType.CONFIG

    def test_default_config(self):
        path = parse_path("/config")
        assert path.shape == Shape.CONFIG
        assert path.repo is None

    def test_listing(self):
        assert parse_path("/alice/keys/") == RequestPath(Shape.LISTING, "alice", ObjectType.KEYS)
        assert parse_path("/alice/keys") == RequestPath(Shape.LISTING, "alice", ObjectType.KEYS)

    def test_default_listing(self):
        assert parse_path("/snapshots/") == RequestPath(Shape.LISTING, None, ObjectType.SNAPSHOTS)

    def test_object(self):
        path = parse_path(f"/alice/data/{SHA_A}")
        assert path == RequestPath(Shape.OBJECT, "alice", ObjectType.DATA, SHA_A)
        assert path.parts() == ("alice", ObjectType.DATA, SHA_A)

    def test_default_object(self):
        path = parse_path(f"/index/{SHA_A}")
        assert path == RequestPath(Shape.OBJECT, None, ObjectType.INDEX, SHA_A)
        assert path.repo_name == ""

    def test_type_case_insensitive(self):
        path = parse_path(f"/alice/DATA/{SHA_A}")
        assert path.tpe == ObjectType.DATA

    def test_lock_names_are_free_form(self):
        path = parse_path("/alice/locks/my-lock.1")
        assert path.shape == Shape.OBJECT
        assert path.name == "my-lock.1"

    def test_percent_decoding(self):
        path = parse_path("/my%20repo/")
        assert path.repo == "my repo"


class TestRejectedPaths:
    """Tests for paths that must be refused."""

    def test_non_hex_name(self):
        with pytest.raises(ApiError) as exc_info:
            parse_path("/alice/data/nothex")
        assert exc_info.value.kind == ErrorKind.FILENAME_NOT_ALLOWED
        assert exc_info.value.http_status == 403

    def test_uppercase_hex_name(self):
        with pytest.raises(ApiError) as exc_info:
            parse_path("/alice/snapshots/" + SHA_A.upper())
        assert exc_info.value.kind == ErrorKind.FILENAME_NOT_ALLOWED

    @pytest.mark.parametrize("path", [
        "/alice/data/config",
        "/alice/keys/data",
        "/alice/locks/locks",
    ])
    def test_reserved_object_name(self, path):
        with pytest.raises(ApiError) as exc_info:
            parse_path(path)
        assert exc_info.value.kind == ErrorKind.PATH_NOT_ALLOWED

    @pytest.mark.parametrize("path", [
        "/../etc/",
        "/alice/locks/..",
        "/./data/",
        "/%2e%2e/config",
        "/alice%2fbob/",
        "/alice//keys/",
    ])
    def test_traversal(self, path):
        with pytest.raises(ApiError) as exc_info:
            parse_path(path)
        assert exc_info.value.kind == ErrorKind.PATH_NOT_ALLOWED

    def test_too_deep(self):
        with pytest.raises(ApiError) as exc_info:
            parse_path(f"/alice/data/{SHA_A}/extra")
        assert exc_info.value.kind == ErrorKind.PATH_NOT_ALLOWED

    def test_config_with_name(self):
        with pytest.raises(ApiError):
            parse_path("/alice/config/extra")

    def test_unknown_type(self):
        with pytest.raises(ApiError) as exc_info:
            parse_path("/alice/blobs/")
        assert exc_info.value.kind == ErrorKind.PATH_NOT_ALLOWED

    def test_invalid_utf8(self):
        with pytest.raises(ApiError) as exc_info:
            parse_path("/%ff%fe/")
        assert exc_info.value.kind == ErrorKind.NON_UNICODE_PATH


class TestIsSha256:
    """Tests for is_sha256."""

    def test_valid(self):
        assert is_sha256(SHA_A)

    def test_wrong_length(self):
        assert not is_sha256(SHA_A[:-1])

    def test_non_hex(self):
        assert not is_sha256("g" * 64)
