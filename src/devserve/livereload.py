"""Live reload for the static server.

The browser polls LIVERELOAD_PATH and reloads the page when the returned
version changes. The version is a digest of every file's path, size and
mtime under the served root.
"""

import hashlib
import os
from pathlib import Path

LIVERELOAD_PATH = "/__livereload"
POLL_INTERVAL_MS = 1000
SKIP_DIRS = {".git", "node_modules", "__pycache__"}

CLIENT_SCRIPT = f"""<script>
(function () {{
  var version = null;
  function poll() {{
    fetch("{LIVERELOAD_PATH}", {{cache: "no-store"}})
      .then(function (r) {{ return r.json(); }})
      .then(function (data) {{
        if (version !== null && data.version !== version) {{
          window.location.reload();
          return;
        }}
        version = data.version;
        setTimeout(poll, {POLL_INTERVAL_MS});
      }})
      .catch(function () {{ setTimeout(poll, {POLL_INTERVAL_MS}); }});
  }}
  poll();
}})();
</script>
"""


class ChangeWatcher:
    """Computes a version token for a directory tree."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def version(self) -> str:
        digest = hashlib.sha1()
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
            for name in sorted(filenames):
                path = os.path.join(dirpath, name)
                try:
                    st = os.stat(path)
                except OSError:
                    # Deleted between listing and stat
                    continue
                rel = os.path.relpath(path, self.root)
                digest.update(f"{rel}\0{st.st_size}\0{st.st_mtime_ns}\n".encode())
        return digest.hexdigest()[:16]


def inject_client(html: bytes) -> bytes:
    """Insert the polling client before </body> (or append it)."""
    script = CLIENT_SCRIPT.encode("utf-8")
    index = html.lower().rfind(b"</body>")
    if index == -1:
        return html + script
    return html[:index] + script + html[index:]
