"""Tests for the mcp-test command line interface."""

import json
import socket
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from mcp_test_auth.cli import format_tokens, main
from mcp_test_auth.core.resolver import AccessTokenResult, CredentialResolver
from mcp_test_auth.oauth.discovery import AuthServerMetadata, ProtectedResourceMetadata
from mcp_test_auth.oauth.oauth_tokens import StoredServerMetadata, StoredTokens
from mcp_test_auth.storage.token_store import TokenStore
from mcp_test_auth.utils.errors import DiscoveryError

SERVER_URL = "https://mcp.example.com/mcp"


@pytest.fixture(autouse=True)
def no_logging_setup():
    """Keep the CLI from reconfiguring the root logger during tests."""
    with patch("mcp_test_auth.cli.setup_logging") as mock_setup:
        yield mock_setup


@pytest.fixture
def full_tokens() -> StoredTokens:
    return StoredTokens(
        access_token="access-123",
        refresh_token="refresh-456",  # pragma: allowlist secret
        token_type="Bearer",
        expires_at=1_700_000_000_000,
    )


class TestFormatTokens:
    """Tests for token output formats."""

    def test_env_format(self, full_tokens: StoredTokens) -> None:
        """Test KEY=value output in a fixed order."""
        assert format_tokens(full_tokens, "env").splitlines() == [
            "MCP_ACCESS_TOKEN=access-123",
            "MCP_REFRESH_TOKEN=refresh-456",
            "MCP_TOKEN_TYPE=Bearer",
            "MCP_TOKEN_EXPIRES_AT=1700000000000",
        ]

    def test_env_format_omits_unset(self) -> None:
        """Test that a missing refresh token and expiry are left out."""
        output = format_tokens(StoredTokens(access_token="abc"), "env")
        assert output.splitlines() == ["MCP_ACCESS_TOKEN=abc", "MCP_TOKEN_TYPE=Bearer"]

    def test_json_format(self, full_tokens: StoredTokens) -> None:
        """Test JSON output keeps the expiry numeric."""
        assert json.loads(format_tokens(full_tokens, "json")) == {
            "MCP_ACCESS_TOKEN": "access-123",
            "MCP_REFRESH_TOKEN": "refresh-456",  # pragma: allowlist secret
            "MCP_TOKEN_TYPE": "Bearer",
            "MCP_TOKEN_EXPIRES_AT": 1_700_000_000_000,
        }

    def test_gh_format(self, full_tokens: StoredTokens) -> None:
        """Test gh secret set commands with a header comment."""
        lines = format_tokens(full_tokens, "gh").splitlines()
        assert lines[0] == "# Run these commands to set GitHub Actions secrets:"
        assert lines[1] == 'gh secret set MCP_ACCESS_TOKEN --body "access-123"'
        assert 'gh secret set MCP_TOKEN_EXPIRES_AT --body "1700000000000"' in lines
        assert len(lines) == 5


class TestTokenCommand:
    """Tests for ``mcp-test token``."""

    def test_prints_stored_tokens(
        self, state_dir: Path, full_tokens: StoredTokens, capsys
    ) -> None:
        """Test that stored tokens are printed to stdout in env format."""
        TokenStore(SERVER_URL, state_dir).save_tokens(full_tokens)

        exit_code = main(["token", SERVER_URL, "--state-dir", str(state_dir)])

        assert exit_code == 0
        assert "MCP_ACCESS_TOKEN=access-123" in capsys.readouterr().out

    def test_json_output(self, state_dir: Path, full_tokens: StoredTokens, capsys) -> None:
        """Test the --format json option."""
        TokenStore(SERVER_URL, state_dir).save_tokens(full_tokens)

        main(["token", SERVER_URL, "--state-dir", str(state_dir), "--format", "json"])

        assert json.loads(capsys.readouterr().out)["MCP_ACCESS_TOKEN"] == "access-123"

    def test_no_tokens(self, state_dir: Path, capsys) -> None:
        """Test the guidance printed when nothing is stored."""
        exit_code = main(["token", SERVER_URL, "--state-dir", str(state_dir)])

        captured = capsys.readouterr()
        assert exit_code == 1
        assert captured.out == ""
        assert f"No tokens found for {SERVER_URL}" in captured.err
        assert str(state_dir / "mcp.example.com_mcp" / "tokens.json") in captured.err
        assert f"mcp-test login {SERVER_URL}" in captured.err

    def test_state_dir_from_environment(
        self, monkeypatch, state_dir: Path, full_tokens: StoredTokens, capsys
    ) -> None:
        """Test that MCP_STATE_DIR is used when --state-dir is not given."""
        monkeypatch.setenv("MCP_STATE_DIR", str(state_dir))
        TokenStore(SERVER_URL, state_dir).save_tokens(full_tokens)

        assert main(["token", SERVER_URL]) == 0
        assert "access-123" in capsys.readouterr().out

    def test_invalid_url(self, capsys) -> None:
        """Test that a relative URL exits with 1 and a message."""
        exit_code = main(["token", "not-a-url"])

        assert exit_code == 1
        assert "Invalid URL: not-a-url" in capsys.readouterr().err

    def test_unknown_format_rejected(self) -> None:
        """Test that argparse rejects unsupported formats."""
        with pytest.raises(SystemExit):
            main(["token", SERVER_URL, "--format", "yaml"])


class TestLoginCommand:
    """Tests for ``mcp-test login``."""

    def test_env_tokens(self, monkeypatch, state_dir: Path, capsys) -> None:
        """Test login with MCP_ACCESS_TOKEN set."""
        monkeypatch.setenv("MCP_ACCESS_TOKEN", "env-token")

        exit_code = main(["login", SERVER_URL, "--state-dir", str(state_dir)])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert f"Authenticating with {SERVER_URL}..." in out
        assert "Using token from environment variables." in out
        assert "Token has no expiration." in out
        assert "Tokens stored in" not in out

    def test_out_of_range_expiry(self, monkeypatch, state_dir: Path, capsys) -> None:
        """Test that an expiry beyond the datetime range is printed raw."""
        monkeypatch.setenv("MCP_ACCESS_TOKEN", "env-token")
        monkeypatch.setenv("MCP_TOKEN_EXPIRES_AT", "99999999999999999")

        exit_code = main(["login", SERVER_URL, "--state-dir", str(state_dir)])

        assert exit_code == 0
        assert "Token expires: 99999999999999999 (epoch ms)" in capsys.readouterr().out

    def test_cached_tokens(self, state_dir: Path, valid_tokens: StoredTokens, capsys) -> None:
        """Test login when valid tokens are already stored."""
        TokenStore(SERVER_URL, state_dir).save_tokens(valid_tokens)

        exit_code = main(["login", SERVER_URL, "--state-dir", str(state_dir)])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert "Authentication successful!" in out
        assert "Token expires: " in out
        assert f"Tokens stored in: {state_dir / 'mcp.example.com_mcp'}" in out

    def test_refreshed_message(self, state_dir: Path, capsys) -> None:
        """Test the message shown after a refresh."""
        result = AccessTokenResult("abc", "Bearer", None, refreshed=True, from_env=False)
        with patch.object(CredentialResolver, "get_access_token", AsyncMock(return_value=result)):
            assert main(["login", SERVER_URL, "--state-dir", str(state_dir)]) == 0

        assert "Token refreshed successfully." in capsys.readouterr().out

    def test_force_clears_tokens(
        self, state_dir: Path, valid_tokens: StoredTokens, capsys
    ) -> None:
        """Test that --force removes stored tokens before authenticating."""
        store = TokenStore(SERVER_URL, state_dir)
        store.save_tokens(valid_tokens)
        result = AccessTokenResult("new", "Bearer", None, refreshed=False, from_env=False)

        with patch.object(
            CredentialResolver, "get_access_token", AsyncMock(return_value=result)
        ):
            exit_code = main(["login", SERVER_URL, "--state-dir", str(state_dir), "--force"])

        assert exit_code == 0
        assert "Clearing existing credentials..." in capsys.readouterr().out
        assert store.load_tokens() is None

    def test_scopes_passed_to_resolver(self, state_dir: Path) -> None:
        """Test that --scopes is split and handed to the resolver config."""
        result = AccessTokenResult("abc", "Bearer", None, refreshed=False, from_env=False)

        with patch("mcp_test_auth.cli.CredentialResolver") as mock_resolver_class:
            mock_resolver_class.return_value.get_access_token = AsyncMock(return_value=result)
            main(["login", SERVER_URL, "--state-dir", str(state_dir), "--scopes", "read, write"])

        config = mock_resolver_class.call_args.args[0]
        assert config.scopes == ["read", "write"]
        assert config.state_dir == state_dir

    def test_failure(self, state_dir: Path, capsys) -> None:
        """Test that an auth error exits with 1 and is printed to stderr."""
        with patch.object(
            CredentialResolver,
            "get_access_token",
            AsyncMock(side_effect=DiscoveryError("metadata unavailable", status=500)),
        ):
            exit_code = main(["login", SERVER_URL, "--state-dir", str(state_dir)])

        assert exit_code == 1
        assert "Authentication failed: metadata unavailable" in capsys.readouterr().err

    @pytest.mark.integration
    def test_callback_port_in_use(
        self,
        monkeypatch,
        state_dir: Path,
        auth_server_metadata: AuthServerMetadata,
        protected_resource_metadata: ProtectedResourceMetadata,
        capsys,
    ) -> None:
        """Test that a busy MCP_CALLBACK_PORT is reported instead of crashing."""
        metadata = StoredServerMetadata(
            auth_server=auth_server_metadata, protected_resource=protected_resource_metadata
        )

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen(1)
            busy_port = sock.getsockname()[1]
            monkeypatch.setenv("MCP_CALLBACK_PORT", str(busy_port))

            with patch.object(
                CredentialResolver, "discover_servers", AsyncMock(return_value=metadata)
            ):
                exit_code = main(["login", SERVER_URL, "--state-dir", str(state_dir)])

        assert exit_code == 1
        err = capsys.readouterr().err
        assert "Authentication failed:" in err
        assert f"Could not listen on 127.0.0.1:{busy_port}" in err

    def test_invalid_url(self, capsys) -> None:
        """Test that login rejects a relative URL."""
        assert main(["login", "not-a-url"]) == 1
        assert "Invalid URL" in capsys.readouterr().err


class TestLogoutAndServers:
    """Tests for ``mcp-test logout`` and ``mcp-test servers``."""

    def test_logout(self, state_dir: Path, valid_tokens: StoredTokens, capsys) -> None:
        """Test that logout deletes stored tokens."""
        store = TokenStore(SERVER_URL, state_dir)
        store.save_tokens(valid_tokens)

        assert main(["logout", SERVER_URL, "--state-dir", str(state_dir)]) == 0
        assert store.load_tokens() is None
        assert f"Cleared stored tokens for {SERVER_URL}" in capsys.readouterr().out

    def test_logout_without_tokens(self, state_dir: Path, capsys) -> None:
        """Test logout when nothing is stored."""
        assert main(["logout", SERVER_URL, "--state-dir", str(state_dir)]) == 0
        assert "No stored tokens" in capsys.readouterr().out

    def test_servers(self, state_dir: Path, valid_tokens: StoredTokens, capsys) -> None:
        """Test listing a server that was never discovered."""
        TokenStore(SERVER_URL, state_dir).save_tokens(valid_tokens)

        assert main(["servers", "--state-dir", str(state_dir)]) == 0
        out = capsys.readouterr().out
        assert "mcp.example.com_mcp" in out
        assert "tokens" in out
        assert "(not discovered)" in out

    def test_servers_show_discovered_url(
        self,
        state_dir: Path,
        auth_server_metadata: AuthServerMetadata,
        capsys,
    ) -> None:
        """Test that a port in the server URL survives the listing."""
        url = "https://api.example.com:8080/mcp"
        TokenStore(url, state_dir).save_server_metadata(
            StoredServerMetadata(
                auth_server=auth_server_metadata,
                protected_resource=ProtectedResourceMetadata(resource=url),
            )
        )

        assert main(["servers", "--state-dir", str(state_dir)]) == 0
        out = capsys.readouterr().out
        assert "api.example.com_8080_mcp" in out
        assert url in out
        assert "no tokens" in out

    def test_servers_empty(self, state_dir: Path, capsys) -> None:
        """Test listing an empty state directory."""
        assert main(["servers", "--state-dir", str(state_dir)]) == 0
        assert "No stored servers found" in capsys.readouterr().out


class TestMain:
    """Tests for argument handling."""

    def test_no_command(self, capsys) -> None:
        """Test that running without a command prints help and exits with 1."""
        assert main([]) == 1
        assert "usage:" in capsys.readouterr().out

    def test_log_level_flag(self, state_dir: Path, no_logging_setup) -> None:
        """Test that --log-level is upper-cased and passed to setup_logging."""
        main(["--log-level", "debug", "servers", "--state-dir", str(state_dir)])
        assert no_logging_setup.call_args.kwargs["level"] == "DEBUG"

    def test_log_level_from_environment(
        self, monkeypatch, state_dir: Path, no_logging_setup
    ) -> None:
        """Test that LOG_LEVEL is the fallback log level."""
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        main(["servers", "--state-dir", str(state_dir)])
        assert no_logging_setup.call_args.kwargs["level"] == "WARNING"

    def test_invalid_configuration(self, monkeypatch, capsys) -> None:
        """Test that a bad environment value exits with 1."""
        monkeypatch.setenv("MCP_CALLBACK_PORT", "not-a-port")
        assert main(["servers"]) == 1
        assert "Configuration error" in capsys.readouterr().err
