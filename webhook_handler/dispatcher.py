"""Runs the deployment script, one execution at a time.

The exclusive slot is a `threading.Lock` owned by the dispatcher instance.
Busy policy is reject: `try_dispatch` never blocks, it returns False while a
run is in flight and the caller answers 503. Every run is bounded by
`settings.script_timeout`; on expiry the script's whole process group is
killed so forked children cannot keep the slot (or the output pipes) alive.
"""
import logging
import os
import signal
import subprocess  # nosec
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .config import SCRIPT_VAR, SECRET_VAR, SOURCE_VAR, WEBSITE_VAR, Settings
from .notifier import deploy_alert
from .utils import tail

logger = logging.getLogger("webhook.dispatcher")

# seconds to wait for output pipes to close after the process group is killed
KILL_GRACE = 5.0


@dataclass(frozen=True)
class DispatchContext:
    """The parts of a verified request the script gets to see."""
    ref: Optional[str] = None
    delivery: Optional[str] = None
    event: Optional[str] = None
    remote: Optional[str] = None


@dataclass
class DispatchOutcome:
    exit_code: Optional[int]
    duration: float
    stdout: str = ''
    stderr: str = ''
    timed_out: bool = False
    error: Optional[str] = None
    context: DispatchContext = field(default_factory=DispatchContext)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and self.error is None

    def describe(self) -> str:
        if self.error:
            return f'failed to start: {self.error}'
        if self.timed_out:
            return f'timed out after {self.duration:.1f}s'
        return f'exited with {self.exit_code} after {self.duration:.1f}s'


class ScriptDispatcher:
    def __init__(self, settings: Settings, on_failure: Optional[Callable[[DispatchOutcome], None]] = None):
        self.settings = settings
        self.on_failure = on_failure or _alert_failure
        self._slot = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self.last_outcome: Optional[DispatchOutcome] = None

    @property
    def busy(self) -> bool:
        return self._slot.locked()

    def build_command(self) -> List[str]:
        if self.settings.shell:
            return [self.settings.shell, self.settings.script_path]
        return [self.settings.script_path]

    def build_env(self, context: DispatchContext) -> Dict[str, str]:
        env = {k: v for k, v in os.environ.items() if k != SECRET_VAR}
        env[SCRIPT_VAR] = self.settings.script_path
        if self.settings.source_dir:
            env[SOURCE_VAR] = self.settings.source_dir
        if self.settings.website_dir:
            env[WEBSITE_VAR] = self.settings.website_dir
        for key, value in (('WEBHOOK_REF', context.ref),
                           ('WEBHOOK_DELIVERY', context.delivery),
                           ('WEBHOOK_EVENT', context.event)):
            if value:
                env[key] = value
        return env

    def working_dir(self) -> str:
        if self.settings.source_dir:
            return self.settings.source_dir
        return os.path.dirname(os.path.abspath(self.settings.script_path))

    def run(self, context: Optional[DispatchContext] = None) -> DispatchOutcome:
        """Run the script in the calling thread and wait for it (or the timeout)."""
        context = context or DispatchContext()
        start = time.monotonic()
        try:
            proc = subprocess.Popen(  # nosec
                self.build_command(),
                cwd=self.working_dir(),
                env=self.build_env(context),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding='utf-8',
                errors='replace',
                start_new_session=True,
            )
        except OSError as e:
            return DispatchOutcome(None, time.monotonic() - start, error=str(e), context=context)

        logger.info("Started %s (pid %s) for ref=%s", self.settings.script_path, proc.pid, context.ref)
        try:
            out, err = proc.communicate(timeout=self.settings.script_timeout)
            timed_out = False
        except subprocess.TimeoutExpired:
            logger.warning("Script exceeded %ss, killing process group %s", self.settings.script_timeout, proc.pid)
            _kill_group(proc)
            out, err = _drain(proc)
            timed_out = True
        return DispatchOutcome(
            None if timed_out else proc.returncode,
            time.monotonic() - start,
            stdout=out or '',
            stderr=err or '',
            timed_out=timed_out,
            context=context,
        )

    def try_dispatch(self, context: Optional[DispatchContext] = None) -> bool:
        """Start a background run if the slot is free. Never blocks."""
        if not self._slot.acquire(blocking=False):
            logger.info("Dispatch rejected, a deployment is already running")
            return False
        try:
            worker = threading.Thread(target=self._run_and_release, args=(context,),
                                      name='webhook-dispatch', daemon=True)
            worker.start()
        except RuntimeError:
            self._slot.release()
            raise
        self._worker = worker
        return True

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Join the current worker, if any. Returns True once the slot is free."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)
        return not self.busy

    def _run_and_release(self, context: Optional[DispatchContext]):
        try:
            outcome = self.run(context)
            self.last_outcome = outcome
            if outcome.ok:
                logger.info("Deployment finished in %.1fs", outcome.duration)
                return
            logger.error("Deployment %s\n%s", outcome.describe(), tail(outcome.stderr))
            try:
                self.on_failure(outcome)
            except Exception:
                logger.exception("failure callback raised")
        except Exception:
            logger.exception("Unexpected error while running deployment script")
        finally:
            self._slot.release()


def _kill_group(proc: subprocess.Popen):
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except OSError:
        proc.kill()


def _drain(proc: subprocess.Popen):
    """Collect output after a kill without waiting forever on inherited pipes."""
    try:
        return proc.communicate(timeout=KILL_GRACE)
    except subprocess.TimeoutExpired:
        logger.error("Output pipes of pid %s still held after kill, closing them", proc.pid)
        for pipe in (proc.stdout, proc.stderr):
            if pipe is not None:
                pipe.close()
        proc.wait()
        return '', ''


def _alert_failure(outcome: DispatchOutcome):
    ref = outcome.context.ref or 'unknown ref'
    deploy_alert(f"DEPLOY FAILED ({ref}): {outcome.describe()}\n{tail(outcome.stderr, 5)}")
