"""Tests for devserve/cli.py - serve task orchestration."""

from unittest.mock import MagicMock, patch

import pytest

from devserve.cli import build_parser, main
from devserve.tls import TLSMaterial


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "serve.yaml"
    path.write_text("port: 4321\ninitial_page: /index.html\n")
    return path


@pytest.fixture
def mocks():
    """Patch out everything that binds ports or opens browsers."""
    with patch("devserve.cli.ServerBootstrap") as mock_bootstrap_class, \
            patch("devserve.cli.serve_forever") as mock_serve, \
            patch("devserve.cli.open_browser") as mock_open, \
            patch("devserve.cli.CertificateStore") as mock_store_class:
        bootstrap = mock_bootstrap_class.return_value
        bootstrap.start.return_value = MagicMock(servers=["static"])
        yield {
            "bootstrap": bootstrap,
            "serve": mock_serve,
            "open": mock_open,
            "store": mock_store_class.return_value,
        }


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.port is None
        assert args.nobrowser is False
        assert args.config is None

    def test_port_must_be_int(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--port", "abc"])


class TestMain:
    """Tests for main()."""

    def test_http_skips_tls_resolution(self, config_file, mocks):
        """Plain HTTP never resolves TLS material."""
        assert main(["--config", str(config_file), "--nobrowser"]) == 0

        mocks["store"].resolve.assert_not_called()
        config, material = mocks["bootstrap"].start.call_args[0]
        assert config.port == 4321
        assert config.https is False
        assert material is None
        mocks["open"].assert_not_called()
        mocks["serve"].assert_called_once_with(["static"])

    def test_port_override(self, config_file, mocks):
        """--port wins over the config file, including the browser URI."""
        assert main(["--config", str(config_file), "--port", "8080"]) == 0

        config = mocks["bootstrap"].start.call_args[0][0]
        assert config.port == 8080
        mocks["open"].assert_called_once_with("http://localhost:8080/index.html")

    def test_https_resolves_with_effective_port(self, tmp_path, mocks):
        config_file = tmp_path / "serve.yaml"
        config_file.write_text("https: true\n")
        material = TLSMaterial(certificate=b"C", key=b"K")
        mocks["store"].resolve.return_value = material

        assert main(["--config", str(config_file), "--port", "9443", "--nobrowser"]) == 0

        resolved_config = mocks["store"].resolve.call_args[0][0]
        assert resolved_config.port == 9443
        config, passed_material = mocks["bootstrap"].start.call_args[0]
        assert passed_material is material

    def test_https_failed_resolution_still_starts(self, tmp_path, mocks):
        config_file = tmp_path / "serve.yaml"
        config_file.write_text("https: true\npfx_path: /missing.pfx\n")
        mocks["store"].resolve.return_value = None

        assert main(["--config", str(config_file), "--nobrowser"]) == 0

        assert mocks["bootstrap"].start.call_args[0][1] is None
        mocks["serve"].assert_called_once()

    def test_config_error(self, tmp_path, mocks):
        assert main(["--config", str(tmp_path / "missing.yaml")]) == 1
        mocks["bootstrap"].start.assert_not_called()

    def test_bind_error(self, config_file, mocks):
        mocks["bootstrap"].start.side_effect = OSError("Address already in use")

        assert main(["--config", str(config_file), "--nobrowser"]) == 1
        mocks["serve"].assert_not_called()
