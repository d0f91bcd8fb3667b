# devbox/sandbox/startup_script.py
"""
Startup Script Generator

Produces the shell bootstrap embedded in each sandbox's StartupConfig.
The script:
  1. waits (bounded) for project markers to show up in the working dir
  2. falls back to a placeholder server if nothing arrives
  3. detects the framework from the manifest and installs dependencies,
     skipping the install when the manifest hash is unchanged
  4. runs the app under a supervisor loop that repeats detection and
     relaunches it on exit, so files synced after boot take effect

Runtimes are described as data (RuntimeProfile); adding a runtime means
adding a profile, not a branch.
"""
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from devbox.core.config import settings
from devbox.sandbox.sandbox_config import RegistryConfig, get_registry, normalize_runtime


PLACEHOLDER_HTML = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>devbox</title></head>
<body style="font-family: sans-serif; text-align: center; padding-top: 15vh;">
<h1>Sandbox is up</h1>
<p>Waiting for project files. This page is replaced as soon as your app starts.</p>
</body>
</html>
"""


@dataclass(frozen=True)
class RuntimeProfile:
    name: str
    # Files whose presence means project files have arrived
    markers: Tuple[str, ...]
    # Dependency manifest and the dir that proves a previous install
    manifest: str
    deps_dir: str
    install_command: str
    # Shell body that sets START_CMD (framework detection + defaults)
    detect: str
    # Shell body that writes a placeholder app and sets START_CMD
    placeholder: str
    # Used by restart recovery when no recorded start command exists
    default_start: str
    # Extra setup run before installing (registry config etc.)
    setup: str = ""
    env: Dict[str, str] = field(default_factory=dict)


_HTTP_PLACEHOLDER_DIR = 'mkdir -p "$STATE_DIR/placeholder"\nwrite_placeholder_html "$STATE_DIR/placeholder/index.html"\n'

NODE = RuntimeProfile(
    name="node",
    markers=("package.json", "index.js", "server.js", "app.js", "main.js", "index.html"),
    manifest="package.json",
    deps_dir="node_modules",
    install_command="npm install --no-audit --no-fund",
    detect="""if [ -f package.json ]; then
  if grep -q '"next"' package.json; then
    START_CMD="npx next dev -H 0.0.0.0 -p $APP_PORT"
  elif grep -q '"nuxt"' package.json; then
    START_CMD="npx nuxt dev --host 0.0.0.0 --port $APP_PORT"
  elif grep -q '"vite"' package.json; then
    START_CMD="npx vite --host 0.0.0.0 --port $APP_PORT"
  elif grep -q '"react-scripts"' package.json; then
    START_CMD="BROWSER=none npx react-scripts start"
  elif grep -q '"dev"[[:space:]]*:' package.json; then
    START_CMD="npm run dev"
  elif grep -q '"start"[[:space:]]*:' package.json; then
    START_CMD="npm start"
  fi
fi
if [ -z "$START_CMD" ]; then
  for f in server.js index.js app.js main.js; do
    if [ -f "$f" ]; then START_CMD="node $f"; break; fi
  done
fi
if [ -z "$START_CMD" ] && [ -f index.html ]; then
  START_CMD="npx --yes serve -l $APP_PORT ."
fi
""",
    placeholder="""cat > "$STATE_DIR/placeholder.js" <<'JS'
const http = require('http');
const fs = require('fs');
const page = fs.readFileSync(__dirname + '/placeholder.html');
http.createServer((req, res) => {
  res.writeHead(200, { 'Content-Type': 'text/html; charset=utf-8' });
  res.end(page);
}).listen(process.env.PORT || 3000, '0.0.0.0');
JS
write_placeholder_html "$STATE_DIR/placeholder.html"
START_CMD="node $STATE_DIR/placeholder.js"
""",
    default_start="npm run dev || npm start",
)

PYTHON = RuntimeProfile(
    name="python",
    markers=("requirements.txt", "pyproject.toml", "manage.py", "main.py", "app.py", "server.py"),
    manifest="requirements.txt",
    deps_dir="",
    install_command="pip install --no-cache-dir -r requirements.txt",
    detect="""if [ -f manage.py ]; then
  START_CMD="python manage.py runserver 0.0.0.0:$APP_PORT"
elif grep -qi 'fastapi' requirements.txt 2>/dev/null; then
  for m in main app server; do
    if [ -f "$m.py" ]; then START_CMD="python -m uvicorn $m:app --host 0.0.0.0 --port $APP_PORT --reload"; break; fi
  done
elif grep -qi 'flask' requirements.txt 2>/dev/null; then
  for m in app main server; do
    if [ -f "$m.py" ]; then START_CMD="python -m flask --app $m run --host 0.0.0.0 --port $APP_PORT"; break; fi
  done
fi
if [ -z "$START_CMD" ]; then
  for f in main.py app.py server.py; do
    if [ -f "$f" ]; then START_CMD="python $f"; break; fi
  done
fi
""",
    placeholder=_HTTP_PLACEHOLDER_DIR
    + 'START_CMD="python -m http.server $APP_PORT --bind 0.0.0.0 --directory $STATE_DIR/placeholder"\n',
    default_start="python main.py || python app.py",
    env={"PYTHONUNBUFFERED": "1"},
)

GO = RuntimeProfile(
    name="go",
    markers=("go.mod", "main.go"),
    manifest="go.mod",
    deps_dir="",
    install_command="go mod download",
    detect="""if [ -f go.mod ] || [ -f main.go ]; then
  START_CMD="go run ."
fi
""",
    placeholder="""mkdir -p "$STATE_DIR/placeholder"
write_placeholder_html "$STATE_DIR/placeholder/index.html"
cat > "$STATE_DIR/placeholder/main.go" <<'GO'
package main

import (
	"net/http"
	"os"
)

func main() {
	port := os.Getenv("PORT")
	if port == "" {
		port = "3000"
	}
	http.Handle("/", http.FileServer(http.Dir(os.Getenv("STATE_DIR") + "/placeholder")))
	http.ListenAndServe("0.0.0.0:"+port, nil)
}
GO
START_CMD="STATE_DIR=$STATE_DIR go run $STATE_DIR/placeholder/main.go"
""",
    default_start="go run .",
)

RUBY = RuntimeProfile(
    name="ruby",
    markers=("Gemfile", "config.ru", "app.rb", "main.rb"),
    manifest="Gemfile",
    deps_dir="",
    install_command="bundle install",
    detect="""if [ -f bin/rails ] && grep -q 'rails' Gemfile 2>/dev/null; then
  START_CMD="bundle exec rails server -b 0.0.0.0 -p $APP_PORT"
elif [ -f config.ru ]; then
  START_CMD="bundle exec rackup -o 0.0.0.0 -p $APP_PORT"
elif [ -f app.rb ] && grep -q 'sinatra' Gemfile app.rb 2>/dev/null; then
  START_CMD="ruby app.rb -o 0.0.0.0 -p $APP_PORT"
fi
if [ -z "$START_CMD" ]; then
  for f in app.rb main.rb server.rb; do
    if [ -f "$f" ]; then START_CMD="ruby $f"; break; fi
  done
fi
""",
    placeholder="""write_placeholder_html "$STATE_DIR/placeholder.html"
cat > "$STATE_DIR/placeholder.rb" <<'RUBY'
require 'socket'
page = File.read(File.join(__dir__, 'placeholder.html'))
server = TCPServer.new('0.0.0.0', (ENV['PORT'] || 3000).to_i)
loop do
  client = server.accept
  client.gets
  client.print "HTTP/1.1 200 OK\\r\\nContent-Type: text/html\\r\\nContent-Length: #{page.bytesize}\\r\\nConnection: close\\r\\n\\r\\n#{page}"
  client.close
end
RUBY
START_CMD="ruby $STATE_DIR/placeholder.rb"
""",
    default_start="ruby app.rb",
)

PHP = RuntimeProfile(
    name="php",
    markers=("composer.json", "index.php", "public/index.php"),
    manifest="composer.json",
    deps_dir="vendor",
    install_command="command -v composer >/dev/null 2>&1 && composer install --no-interaction",
    detect="""if [ -f public/index.php ]; then
  START_CMD="php -S 0.0.0.0:$APP_PORT -t public"
elif [ -f index.php ]; then
  START_CMD="php -S 0.0.0.0:$APP_PORT -t ."
fi
""",
    placeholder=_HTTP_PLACEHOLDER_DIR
    + 'START_CMD="php -S 0.0.0.0:$APP_PORT -t $STATE_DIR/placeholder"\n',
    default_start="php -S 0.0.0.0:3000 -t .",
)

JAVA = RuntimeProfile(
    name="java",
    markers=("pom.xml", "build.gradle", "Main.java", "app.jar"),
    manifest="pom.xml",
    deps_dir="target",
    install_command="command -v mvn >/dev/null 2>&1 && mvn -q -DskipTests package",
    detect="""for jar in target/*.jar build/libs/*.jar *.jar; do
  if [ -f "$jar" ]; then START_CMD="java -jar $jar --server.port=$APP_PORT"; break; fi
done
if [ -z "$START_CMD" ] && [ -f Main.java ]; then
  START_CMD="java Main.java"
fi
""",
    placeholder="""mkdir -p "$STATE_DIR/placeholder"
write_placeholder_html "$STATE_DIR/placeholder/index.html"
cat > "$STATE_DIR/placeholder/Placeholder.java" <<'JAVA'
import com.sun.net.httpserver.HttpServer;
import java.net.InetSocketAddress;
import java.nio.file.Files;
import java.nio.file.Path;

public class Placeholder {
    public static void main(String[] args) throws Exception {
        byte[] page = Files.readAllBytes(Path.of(args[0]));
        int port = Integer.parseInt(System.getenv().getOrDefault("PORT", "3000"));
        HttpServer server = HttpServer.create(new InetSocketAddress("0.0.0.0", port), 0);
        server.createContext("/", exchange -> {
            exchange.getResponseHeaders().add("Content-Type", "text/html");
            exchange.sendResponseHeaders(200, page.length);
            exchange.getResponseBody().write(page);
            exchange.close();
        });
        server.start();
    }
}
JAVA
START_CMD="java $STATE_DIR/placeholder/Placeholder.java $STATE_DIR/placeholder/index.html"
""",
    default_start="java -jar app.jar",
)

RUNTIME_PROFILES: Dict[str, RuntimeProfile] = {
    p.name: p for p in (NODE, PYTHON, GO, RUBY, PHP, JAVA)
}


def get_profile(runtime: str) -> RuntimeProfile:
    return RUNTIME_PROFILES[normalize_runtime(runtime)]


def default_start_command(runtime: str) -> str:
    return get_profile(runtime).default_start


def npm_registry_block(registry: RegistryConfig) -> str:
    """Inline npm configuration pointing at a registry mirror."""
    return (
        f'echo "[devbox] npm registry: {registry.description}"\n'
        f"npm config set registry {registry.url}\n"
        'npm config set cache "$WORKDIR/.npm-cache"\n'
        "npm config set prefer-offline true\n"
        "npm config set audit false\n"
        "npm config set fund false\n"
    )


_FUNCTIONS = """write_placeholder_html() {
  cat > "$1" <<'HTML'
""" + PLACEHOLDER_HTML + """HTML
}

install_deps() {
  manifest="$1"
  check_dir="$2"
  install_cmd="$3"
  new_hash=$(md5sum "$manifest" | cut -d' ' -f1)
  old_hash=$(cat "$STATE_DIR/deps.hash" 2>/dev/null)
  if [ "$new_hash" = "$old_hash" ] && { [ -z "$check_dir" ] || [ -d "$check_dir" ]; }; then
    echo "[devbox] $manifest unchanged, skipping dependency install"
    return 0
  fi
  echo "[devbox] installing dependencies ($install_cmd)"
  if sh -c "$install_cmd"; then
    echo "$new_hash" > "$STATE_DIR/deps.hash"
  else
    echo "[devbox] dependency install failed, continuing"
  fi
}
"""

_SUPERVISOR = """while true; do
  prepare_app
  echo "[devbox] starting: $START_CMD"
  sh -c "$START_CMD"
  echo "[devbox] app exited with status $?, restarting in ${BACKOFF}s"
  sleep "$BACKOFF"
done
"""


def generate_startup_script(
    runtime: str,
    registry: Optional[RegistryConfig] = None,
    wait_seconds: Optional[int] = None,
    backoff_seconds: Optional[int] = None,
) -> str:
    """Build the bootstrap script for a runtime. Pure: same input, same text."""
    profile = get_profile(runtime)
    wait_seconds = settings.sandbox.startup_wait_seconds if wait_seconds is None else wait_seconds
    backoff_seconds = settings.sandbox.supervisor_backoff_seconds if backoff_seconds is None else backoff_seconds

    env_lines = "".join(f'export {k}="{v}"\n' for k, v in sorted(profile.env.items()))
    markers = " ".join(profile.markers)

    setup = profile.setup
    if profile.name == "node":
        setup += npm_registry_block(registry or get_registry(settings.sandbox.npm_registry))

    parts = [
        "#!/bin/sh\n",
        f"# devbox startup script (runtime: {profile.name})\n",
        f'WORKDIR="{settings.sandbox.working_dir}"\n',
        f"APP_PORT={settings.sandbox.app_port}\n",
        f"WAIT_TIMEOUT={int(wait_seconds)}\n",
        f"BACKOFF={int(backoff_seconds)}\n",
        'STATE_DIR="$WORKDIR/.devbox"\n',
        'export PORT="$APP_PORT" HOST="0.0.0.0" STATE_DIR\n',
        env_lines,
        'mkdir -p "$STATE_DIR"\n',
        'cd "$WORKDIR" || exit 1\n\n',
        _FUNCTIONS,
        "\nhas_markers() {\n",
        f"  for f in {markers}; do\n",
        '    [ -f "$WORKDIR/$f" ] && return 0\n',
        "  done\n",
        "  return 1\n",
        "}\n\n",
        'echo "[devbox] waiting up to ${WAIT_TIMEOUT}s for project files"\n',
        "waited=0\n",
        "while ! has_markers; do\n",
        '  if [ "$waited" -ge "$WAIT_TIMEOUT" ]; then\n',
        '    echo "[devbox] no project files after ${WAIT_TIMEOUT}s"\n',
        "    break\n",
        "  fi\n",
        "  sleep 2\n",
        "  waited=$((waited + 2))\n",
        "done\n\n",
        setup,
        "\n# Runs before every launch so files synced after boot are picked up\n",
        "prepare_app() {\n",
        'START_CMD=""\n',
        "if has_markers; then\n",
        f'  if [ -f "{profile.manifest}" ]; then\n',
        f'    install_deps "{profile.manifest}" "{profile.deps_dir}" "{profile.install_command}"\n',
        "  fi\n",
        profile.detect,
        "fi\n",
        'if [ -z "$START_CMD" ]; then\n',
        '  echo "[devbox] no start command detected, serving placeholder"\n',
        profile.placeholder,
        "fi\n",
        'echo "$START_CMD" > "$STATE_DIR/start.cmd"\n',
        "}\n\n",
        _SUPERVISOR,
    ]
    return "".join(parts)
