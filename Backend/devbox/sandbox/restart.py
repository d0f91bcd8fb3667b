# devbox/sandbox/restart.py
"""
App Restart Controller

Restarts the application process inside a running sandbox without touching
the pod. The startup script's supervisor loop relaunches whatever we kill.
"""
import asyncio
import re
import shlex
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple

from devbox.core.config import settings
from devbox.core.exceptions import DevboxError
from devbox.core.logging import log
from devbox.sandbox.executor import RemoteExecutor
from devbox.sandbox.startup_script import default_start_command


@dataclass(frozen=True)
class ProcessSignature:
    name: str
    patterns: Tuple[str, ...]
    signal: str = "TERM"

    def matches(self, args: str) -> bool:
        return any(re.search(p, args) for p in self.patterns)


# Most specific first; the first signature with a live match wins.
PROCESS_SIGNATURES: Tuple[ProcessSignature, ...] = (
    ProcessSignature("next", (r"next[ -]dev", r"next[ -]start", r"/next\b")),
    ProcessSignature("nuxt", (r"\bnuxt\b",)),
    ProcessSignature("vite", (r"\bvite\b",)),
    ProcessSignature("react-scripts", (r"react-scripts start", r"react-scripts/scripts/start")),
    ProcessSignature("nodemon", (r"\bnodemon\b",)),
    ProcessSignature("gunicorn", (r"\bgunicorn\b",), "HUP"),
    ProcessSignature("uvicorn", (r"\buvicorn\b",)),
    ProcessSignature("flask", (r"\bflask run\b", r"-m flask\b")),
    ProcessSignature("django", (r"manage\.py runserver",)),
    ProcessSignature("rails", (r"\brails server\b", r"\brails s\b", r"\bpuma\b")),
    ProcessSignature("rackup", (r"\brackup\b",)),
    ProcessSignature("go", (r"\bgo run\b", r"/go-build\d*/.*/exe/")),
    ProcessSignature("php", (r"\bphp -S\b",)),
    ProcessSignature("node", (r"^(\S*/)?node\s+\S+\.(c|m)?js\b",)),
    ProcessSignature("python", (r"^(\S*/)?python3?\s+\S+\.py\b",)),
)

FALLBACK_COMMAND = "for n in node python python3 ruby php java; do pkill -HUP -x $n; done; true"

_IGNORED = (re.compile(r"startup\.sh"), re.compile(r"^ps\b|\bps -o\b"))

# Launchers (the supervisor's `sh -c`, npm/npx) rank below the server they spawn
_WRAPPER = re.compile(r"^(\S*/)?(sh\s+-c\s|npm\b|npx\b)")


@dataclass
class RestartOutcome:
    restarted: bool
    method: str
    signature: Optional[str] = None
    pid: Optional[int] = None
    error: Optional[str] = None


def find_target(processes: List[Tuple[int, str]],
                signatures: Tuple[ProcessSignature, ...] = PROCESS_SIGNATURES) -> Optional[Tuple[ProcessSignature, int]]:
    """First (signature, pid) match, never the supervisor or ps itself. Launchers rank last."""
    candidates = [
        (pid, args) for pid, args in processes
        if pid != 1 and not any(p.search(args) for p in _IGNORED)
    ]
    candidates.sort(key=lambda c: bool(_WRAPPER.search(c[1])))
    for signature in signatures:
        for pid, args in candidates:
            if signature.matches(args):
                return signature, pid
    return None


class AppRestartController:
    def __init__(self, executor: RemoteExecutor, resources=None):
        self.executor = executor
        self.resources = resources
        self._tasks: Set[asyncio.Task] = set()

    async def restart_app(self, project_id: str, runtime: Optional[str] = None) -> RestartOutcome:
        """Signal the app process so the supervisor relaunches it. Never raises."""
        try:
            processes = await self.executor.list_processes(project_id)
            target = find_target(processes)

            if target is None:
                log("RESTART", "No known app process found, broadcasting HUP", project_id=project_id)
                await self.executor.sh(project_id, FALLBACK_COMMAND)
                return RestartOutcome(restarted=True, method="broadcast")

            signature, pid = target
            log("RESTART", f"Sending {signature.signal} to {signature.name} (pid {pid})", project_id=project_id)
            await self.executor.exec(project_id, ["kill", f"-{signature.signal}", str(pid)])
            await asyncio.sleep(settings.sandbox.restart_grace_seconds)
            return RestartOutcome(restarted=True, method="signal", signature=signature.name, pid=pid)

        except Exception as e:
            log("RESTART", f"Restart failed: {e}", project_id=project_id)
            recovered = await self._recover(project_id, runtime)
            return RestartOutcome(
                restarted=False,
                method="recovery" if recovered else "failed",
                error=str(e),
            )

    async def _recover(self, project_id: str, runtime: Optional[str]) -> bool:
        if self.resources is None:
            return False
        try:
            state = await self.resources.get_sandbox_status(project_id)
        except DevboxError as e:
            log("RESTART", f"Recovery skipped, status unavailable: {e.message}", project_id=project_id)
            return False

        if state.phase != "Running":
            log("RESTART", f"Recovery skipped, pod is {state.phase}", project_id=project_id)
            return False

        command = relaunch_command(runtime or state.runtime or settings.sandbox.default_runtime)
        task = asyncio.create_task(self._relaunch(project_id, command))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _relaunch(self, project_id: str, command: str) -> None:
        try:
            await self.executor.sh(project_id, command)
            log("RESTART", "Relaunch dispatched", project_id=project_id)
        except Exception as e:
            log("RESTART", f"Relaunch failed: {e}", project_id=project_id)


def relaunch_command(runtime: str) -> str:
    """Detached relaunch, preferring the command the supervisor recorded."""
    workdir = shlex.quote(settings.sandbox.working_dir)
    fallback = shlex.quote(default_start_command(runtime))
    return (
        f"cd {workdir} && "
        f"CMD=$(cat .devbox/start.cmd 2>/dev/null || echo {fallback}); "
        f"PORT={settings.sandbox.app_port} HOST=0.0.0.0 "
        f'nohup sh -c "$CMD" > .devbox/relaunch.log 2>&1 &'
    )
