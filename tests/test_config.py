"""Tests for rest_server/config.py and context.py - configuration."""

from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from rest_server.config import ServerConfig, parse_listen, parse_size
from rest_server.context import ServerContext
from rest_server.errors import ConfigError
from rest_server.htpasswd import Htpasswd
from rest_server.tls import TLSConfig


class TestParseListen:
    """Tests for parse_listen."""

    def test_host_port(self):
        assert parse_listen("localhost:8000") == ("localhost", 8000)

    def test_port_only(self):
        assert parse_listen(":9000") == ("0.0.0.0", 9000)

    def test_ipv6(self):
        assert parse_listen("[::1]:8000") == ("::1", 8000)

    @pytest.mark.parametrize("value", ["localhost", "host:port", "host:70000"])
    def test_invalid(self, value):
        with pytest.raises(ConfigError):
            parse_listen(value)


class TestParseSize:
    """Tests for parse_size."""

    @pytest.mark.parametrize("value,expected", [
        (1024, 1024),
        ("1024", 1024),
        ("10K", 10 * 1024),
        ("512M", 512 * 1024 ** 2),
        ("2GiB", 2 * 1024 ** 3),
        ("1t", 1024 ** 4),
    ])
    def test_valid(self, value, expected):
        assert parse_size(value) == expected

    @pytest.mark.parametrize("value", ["lots", "-5", -5, True, "5X"])
    def test_invalid(self, value):
        with pytest.raises(ConfigError):
            parse_size(value)


class TestServerConfig:
    """Tests for ServerConfig loading and merging."""

    def test_defaults(self):
        config = ServerConfig()
        assert config.listen == "localhost:8000"
        assert config.data_dir == Path("/tmp/restic")
        assert config.htpasswd_path == Path("/tmp/restic/.htpasswd")
        assert not config.disable_auth
        assert not config.tls
        assert config.quota is None

    def test_from_file(self, tmp_path):
        path = tmp_path / "server.yaml"
        path.write_text(yaml.dump({
            "server": {"listen": "0.0.0.0:8443"},
            "storage": {"data-dir": str(tmp_path / "repos"), "quota": "1G"},
            "auth": {"disable-auth": True},
            "acl": {"private-repos": True, "append-only": True},
            "log": {"level": "DEBUG", "access-log": str(tmp_path / "access.log")},
        }))

        config = ServerConfig.from_file(path)

        assert config.listen == "0.0.0.0:8443"
        assert config.data_dir == tmp_path / "repos"
        assert config.quota == 1024 ** 3
        assert config.disable_auth
        assert config.private_repos and config.append_only
        assert config.log_level == "debug"
        assert config.access_log == tmp_path / "access.log"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "server.yaml"
        path.write_text("")
        assert ServerConfig.from_file(path) == ServerConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            ServerConfig.from_file(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "server.yaml"
        path.write_text("server: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            ServerConfig.from_file(path)

    def test_unknown_key(self):
        with pytest.raises(ConfigError, match="storage.path"):
            ServerConfig.from_dict({"storage": {"path": "/x"}})

    def test_section_not_mapping(self):
        with pytest.raises(ConfigError):
            ServerConfig.from_dict({"server": "localhost"})

    def test_bad_bool(self):
        with pytest.raises(ConfigError):
            ServerConfig.from_dict({"auth": {"disable-auth": "yes"}})

    def test_merge_overrides(self):
        base = ServerConfig.from_dict({"server": {"listen": "a:1"}, "acl": {"append-only": True}})

        merged = base.merge({"listen": "b:2", "append_only": None, "data_dir": "/srv"})

        assert merged.listen == "b:2"
        assert merged.append_only
        assert merged.data_dir == Path("/srv")
        assert base.listen == "a:1"

    def test_merge_unknown(self):
        with pytest.raises(ConfigError):
            ServerConfig().merge({"bogus": 1})

    def test_explicit_htpasswd_file(self, tmp_path):
        config = ServerConfig(htpasswd_file=tmp_path / "users")
        assert config.htpasswd_path == tmp_path / "users"

    def test_validate_tls_pair(self, tmp_path):
        config = ServerConfig(tls_cert=tmp_path / "c.pem")
        with pytest.raises(ConfigError, match="together"):
            config.validate()

    def test_validate_log_level(self):
        with pytest.raises(ConfigError):
            ServerConfig(log_level="loud").validate()


class TestServerContext:
    """Tests for ServerContext.from_config."""

    def test_auth_disabled(self, tmp_path):
        config = ServerConfig(data_dir=tmp_path / "repos", disable_auth=True, listen="127.0.0.1:0")

        context = ServerContext.from_config(config)

        assert (tmp_path / "repos").is_dir()
        assert context.storage.root == (tmp_path / "repos").resolve()
        assert not context.auth.enabled
        assert context.host == "127.0.0.1"
        assert context.port == 0
        assert context.tls is None

    def test_auth_from_default_htpasswd(self, tmp_path):
        data_dir = tmp_path / "repos"
        store = Htpasswd(path=data_dir / ".htpasswd")
        store.create("alice", "secret")
        store.save()

        context = ServerContext.from_config(ServerConfig(data_dir=data_dir))

        assert context.auth.enabled
        assert context.auth.verify("alice", "secret")

    def test_missing_htpasswd(self, tmp_path):
        with pytest.raises(ConfigError, match="Credential file"):
            ServerContext.from_config(ServerConfig(data_dir=tmp_path / "repos"))

    def test_acl_loaded(self, tmp_path):
        acl_path = tmp_path / "acl.toml"
        acl_path.write_text('[alice]\nalice = "Modify"\n')
        config = ServerConfig(
            data_dir=tmp_path / "repos", disable_auth=True, acl_path=acl_path, append_only=True,
        )

        context = ServerContext.from_config(config)

        assert "alice" in context.acl.repos
        assert context.acl.append_only

    def test_bad_acl(self, tmp_path):
        acl_path = tmp_path / "acl.toml"
        acl_path.write_text('[alice]\nalice = "Root"\n')
        config = ServerConfig(data_dir=tmp_path / "repos", disable_auth=True, acl_path=acl_path)

        with pytest.raises(ConfigError):
            ServerContext.from_config(config)

    def test_tls_from_paths(self, tmp_path):
        cert, key = tmp_path / "c.pem", tmp_path / "k.pem"
        tls = TLSConfig(cert_path=cert, key_path=key, fingerprint="AB:CD")
        config = ServerConfig(data_dir=tmp_path / "repos", disable_auth=True, tls_cert=cert, tls_key=key)

        with patch("rest_server.context.TLSConfig.from_paths", return_value=tls) as from_paths:
            context = ServerContext.from_config(config)

        from_paths.assert_called_once_with(cert, key)
        assert context.tls is tls

    def test_tls_missing_files(self, tmp_path):
        config = ServerConfig(
            data_dir=tmp_path / "repos", disable_auth=True,
            tls_cert=tmp_path / "c.pem", tls_key=tmp_path / "k.pem",
        )
        with pytest.raises(ConfigError, match="TLS file not found"):
            ServerContext.from_config(config)

    def test_tls_self_signed(self, tmp_path):
        tls = TLSConfig(cert_path=tmp_path / "c", key_path=tmp_path / "k", fingerprint="AB")
        config = ServerConfig(data_dir=tmp_path / "repos", disable_auth=True, tls=True, cert_dir=tmp_path / "tls")

        with patch("rest_server.context.generate_self_signed_cert", return_value=tls) as generate:
            context = ServerContext.from_config(config)

        generate.assert_called_once_with(cert_dir=tmp_path / "tls")
        assert context.tls is tls

    def test_context_is_frozen(self, tmp_path):
        config = ServerConfig(data_dir=tmp_path / "repos", disable_auth=True)
        context = ServerContext.from_config(config)
        with pytest.raises(AttributeError):
            context.quota = 5
