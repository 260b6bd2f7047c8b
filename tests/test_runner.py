"""Tests for the flow runners and token printing."""

from __future__ import annotations

import base64
import json
import threading
import time
from http.client import HTTPConnection
from typing import TYPE_CHECKING, Callable
from unittest.mock import MagicMock, patch

import httpx
import pytest

from idptoken import runner
from idptoken.exceptions import OutputError, ServerStartError, TokenResponseError
from idptoken.exit_codes import EXIT_CALLBACK_REJECTED, EXIT_SUCCESS
from idptoken.models import FlowConfig, TokenSet
from idptoken.output import OutputManager
from idptoken.server import find_free_port

if TYPE_CHECKING:
    from conftest import FakeIdp


def _jwt(claims: dict[str, object]) -> str:
    body = base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=").decode()
    return f"e30.{body}.sig"


def _hit(port: int, path: str) -> None:
    """Wait for the server to come up, then send one GET."""
    time.sleep(0.3)
    conn = HTTPConnection("127.0.0.1", port, timeout=5)
    conn.request("GET", path)
    conn.getresponse().read()
    conn.close()


class TestPrintTokens:
    def test_json_on_stdout(self, json_output: OutputManager, capsys: pytest.CaptureFixture[str]) -> None:
        runner.print_tokens(TokenSet(access_token="AT1", token_type="Bearer", expires_in=60))

        out = json.loads(capsys.readouterr().out)
        assert out == {"access_token": "AT1", "token_type": "Bearer", "expires_in": 60}

    def test_verbose_adds_decoded_tokens_on_stderr(
        self, verbose_output: OutputManager, capsys: pytest.CaptureFixture[str]
    ) -> None:
        tokens = TokenSet(
            access_token=_jwt({"sub": "user-1", "exp": 1700000000}),
            id_token=_jwt({"email": "user@idp.example"}),
            expires_in=3605,
        )

        runner.print_tokens(tokens, verbose=True)

        captured = capsys.readouterr()
        assert json.loads(captured.out)["expires_in"] == 3605
        assert "Access token expires in 1 hour, 0 minutes and 5 seconds" in captured.err
        assert "AccessToken:\n" + "-" * 12 + "\n" in captured.err
        assert '"exp": 1700000000 //👈 ' in captured.err
        assert "IDToken:" in captured.err
        assert "user@idp.example" in captured.err

    def test_write_failure_raises_output_error(self, json_output: OutputManager) -> None:
        with patch.object(json_output, "print_json", side_effect=BrokenPipeError("closed")):
            with pytest.raises(OutputError, match="could not print tokens"):
                runner.print_tokens(TokenSet(access_token="AT1"))


class TestDispatch:
    def test_client_credentials_wins(self, config_factory: Callable[..., FlowConfig]) -> None:
        config = config_factory(client_credentials=True, refresh_token="RT0")
        with patch.object(runner, "run_client_credentials_flow", return_value=0) as cc, patch.object(
            runner, "run_refresh_flow"
        ) as rf, patch.object(runner, "run_auth_code_flow") as ac:
            assert runner.run(config) == 0
        cc.assert_called_once()
        rf.assert_not_called()
        ac.assert_not_called()

    def test_refresh_token_before_auth_code(self, config_factory: Callable[..., FlowConfig]) -> None:
        config = config_factory(refresh_token="RT0")
        with patch.object(runner, "run_refresh_flow", return_value=0) as rf, patch.object(
            runner, "run_auth_code_flow"
        ) as ac:
            runner.run(config)
        rf.assert_called_once()
        ac.assert_not_called()

    def test_auth_code_by_default(self, flow_config: FlowConfig) -> None:
        with patch.object(runner, "run_auth_code_flow", return_value=3) as ac:
            assert runner.run(flow_config) == 3
        ac.assert_called_once()


class TestRefreshFlow:
    def test_never_starts_server(
        self,
        config_factory: Callable[..., FlowConfig],
        fake_idp: FakeIdp,
        idp_client: httpx.Client,
        json_output: OutputManager,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        config = config_factory(refresh_token="RT0")

        with patch("idptoken.runner.CallbackServer") as server_cls:
            code = runner.run(config, idp_client)

        assert code == EXIT_SUCCESS
        server_cls.assert_not_called()
        forms = fake_idp.token_forms()
        assert len(fake_idp.requests) == 1
        assert forms[0]["grant_type"] == "refresh_token"
        assert forms[0]["refresh_token"] == "RT0"
        assert json.loads(capsys.readouterr().out)["access_token"] == "AT1"

    def test_with_userinfo(
        self,
        config_factory: Callable[..., FlowConfig],
        idp_client: httpx.Client,
        json_output: OutputManager,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        config = config_factory(refresh_token="RT0", userinfo=True)
        runner.run_refresh_flow(config, idp_client)
        assert json.loads(capsys.readouterr().out)["userinfo"]["sub"] == "user-1"

    def test_failure_raises(
        self,
        config_factory: Callable[..., FlowConfig],
        fake_idp: FakeIdp,
        idp_client: httpx.Client,
        json_output: OutputManager,
    ) -> None:
        fake_idp.token_response = {"error": "invalid_grant"}
        with pytest.raises(TokenResponseError, match="no access token received"):
            runner.run_refresh_flow(config_factory(refresh_token="RT0"), idp_client)


class TestClientCredentialsFlow:
    def test_single_post(
        self,
        config_factory: Callable[..., FlowConfig],
        fake_idp: FakeIdp,
        idp_client: httpx.Client,
        json_output: OutputManager,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        config = config_factory(client_credentials=True, userinfo=True)

        assert runner.run(config, idp_client) == EXIT_SUCCESS

        assert [r.url.path for r in fake_idp.requests] == ["/token"]
        assert fake_idp.token_forms()[0]["grant_type"] == "client_credentials"
        assert "userinfo" not in json.loads(capsys.readouterr().out)


class TestAuthCodeFlow:
    def test_end_to_end(
        self,
        config_factory: Callable[..., FlowConfig],
        idp_client: httpx.Client,
        json_output: OutputManager,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        config = config_factory(port=find_free_port())
        t = threading.Thread(
            target=_hit, args=(config.port, "/oauth2/callback?code=XYZ123&state=xyz"), daemon=True
        )
        t.start()

        code = runner.run_auth_code_flow(config, idp_client, grace=1.0)

        assert code == EXIT_SUCCESS
        captured = capsys.readouterr()
        assert json.loads(captured.out)["access_token"] == "AT1"
        assert f"http://127.0.0.1:{config.port}/login" in captured.err

    def test_rejected_callback_exit_code(
        self,
        config_factory: Callable[..., FlowConfig],
        idp_client: httpx.Client,
        json_output: OutputManager,
    ) -> None:
        config = config_factory(port=find_free_port())
        t = threading.Thread(
            target=_hit, args=(config.port, "/oauth2/callback?code=XYZ123&state=bad"), daemon=True
        )
        t.start()

        assert runner.run_auth_code_flow(config, idp_client, grace=1.0) == EXIT_CALLBACK_REJECTED

    def test_browser_launched_unless_disabled(
        self,
        config_factory: Callable[..., FlowConfig],
        idp_client: httpx.Client,
        json_output: OutputManager,
    ) -> None:
        config = config_factory(port=find_free_port(), no_browser=False)
        t = threading.Thread(
            target=_hit, args=(config.port, "/oauth2/callback?code=XYZ123&state=xyz"), daemon=True
        )
        t.start()

        with patch("idptoken.runner.launch_browser") as launch:
            runner.run_auth_code_flow(config, idp_client, grace=1.0)

        launch.assert_called_once_with(f"http://127.0.0.1:{config.port}/login")

    def test_port_in_use(
        self,
        config_factory: Callable[..., FlowConfig],
        idp_client: httpx.Client,
        json_output: OutputManager,
    ) -> None:
        blocker = MagicMock()
        blocker.start.side_effect = ServerStartError("could not listen on 127.0.0.1:8080")

        with patch("idptoken.runner.CallbackServer", return_value=blocker):
            with pytest.raises(ServerStartError):
                runner.run_auth_code_flow(config_factory(), idp_client)
        blocker.stop.assert_not_called()


def test_print_tokens_verbose_requires_flag(json_output: OutputManager, capsys: pytest.CaptureFixture[str]) -> None:
    runner.print_tokens(TokenSet(access_token="AT1", expires_in=10))
    assert "expires in" not in capsys.readouterr().err
