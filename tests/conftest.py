"""Shared pytest fixtures for devserve tests."""

import shutil
import subprocess
import sys
import threading
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from devserve.httpd import serve_forever


def generate_pem_pair(directory: Path, cn: str = "localhost") -> tuple[Path, Path]:
    """Generate a throwaway self-signed cert/key pair with openssl."""
    directory.mkdir(parents=True, exist_ok=True)
    cert_path = directory / "test.crt"
    key_path = directory / "test.key"
    subprocess.run(
        [
            "openssl", "req",
            "-x509", "-nodes",
            "-newkey", "rsa:2048",
            "-keyout", str(key_path),
            "-out", str(cert_path),
            "-days", "1",
            "-subj", f"/CN={cn}",
        ],
        check=True,
        capture_output=True,
    )
    return cert_path, key_path


@pytest.fixture
def pem_pair(tmp_path):
    """(cert_path, key_path) of a freshly generated certificate."""
    if shutil.which("openssl") is None:
        pytest.skip("requires the openssl binary")
    return generate_pem_pair(tmp_path / "certs")


@pytest.fixture
def project_dir(tmp_path):
    """Minimal web project with an index page and scripts."""
    root = tmp_path / "project"
    (root / "dist").mkdir(parents=True)
    (root / "index.html").write_text("<html><body><h1>Hello</h1></body></html>")
    (root / "dist" / "app.bundle.js").write_text("console.log('bundle');")
    (root / "dist" / "style.css").write_text("body { color: red; }")
    return root


@pytest.fixture
def api_entry(project_dir):
    """API entry module exposing a flat routes mapping."""
    (project_dir / "api.py").write_text('''
def hello(request, response):
    response.json({"message": "hello"})


def user(request, response):
    response.json({"id": request.params["id"], "verbose": request.query.get("verbose")})


def plain(request, response):
    response.set_header("Content-Type", "text/plain")
    response.send("plain text")


def broken(request, response):
    raise ValueError("boom")


routes = {
    "/hello": hello,
    "/users/:id": user,
    "/plain": plain,
    "/broken": broken,
}
''')
    return "api.py"


@pytest.fixture
def serve():
    """Run bootstrapped servers on a background thread until test teardown."""
    stop = threading.Event()
    threads = []

    def _serve(handles):
        thread = threading.Thread(
            target=serve_forever,
            args=(handles.servers, stop, 0.05),
            daemon=True,
        )
        thread.start()
        threads.append(thread)
        return handles

    yield _serve

    stop.set()
    for thread in threads:
        thread.join(timeout=5)
