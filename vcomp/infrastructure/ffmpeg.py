import subprocess
import threading
import queue
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence
from vcomp.domain.errors import EncoderEnvironmentError

# how long to keep reading after exit when a child still holds stderr open
POST_EXIT_DRAIN_SECONDS = 2.0

_EOF = object()


@dataclass
class PassResult:
    exit_code: int
    tail: List[str] = field(default_factory=list)
    cancelled: bool = False
    timed_out: bool = False
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.cancelled and not self.timed_out

    @property
    def tail_text(self) -> str:
        return "\n".join(self.tail)


class EncoderRunner:
    """Runs one ffmpeg invocation and supervises it.

    stderr is read on a helper thread and handed to `on_line` from the
    calling thread in emission order, while the supervising loop watches the
    cancel event and the deadline.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", termination_grace: float = 5.0, tail_lines: int = 20):
        self.ffmpeg_path = ffmpeg_path
        self.termination_grace = termination_grace
        self.tail_lines = tail_lines
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _read_stderr(stream, lines: "queue.Queue"):
        try:
            for line in stream:
                lines.put(line)
        except (OSError, ValueError):
            # stream closed underneath us after kill
            pass
        finally:
            lines.put(_EOF)

    def _terminate(self, process: subprocess.Popen):
        if process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=self.termination_grace)
        except subprocess.TimeoutExpired:
            self.logger.warning(f"FFMPEG_KILL: pid={process.pid} ignored terminate for {self.termination_grace}s")
            process.kill()
            process.wait()

    def run_pass(
        self,
        arguments: Sequence[str],
        on_line: Optional[Callable[[str], None]] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> PassResult:
        cmd = [self.ffmpeg_path] + list(arguments)
        start_time = time.monotonic()
        deadline = start_time + timeout if timeout else None

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                universal_newlines=True,
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            raise EncoderEnvironmentError(f"Cannot start encoder '{self.ffmpeg_path}': {e}") from e

        self.logger.info(f"FFMPEG_START: pid={process.pid} {' '.join(cmd)}")

        lines: "queue.Queue" = queue.Queue()
        reader = threading.Thread(target=self._read_stderr, args=(process.stderr, lines), daemon=True)
        reader.start()

        tail: deque = deque(maxlen=self.tail_lines)
        cancelled = False
        timed_out = False
        eof = False
        exited_at: Optional[float] = None

        def deliver(raw: str):
            line = raw.rstrip("\r\n")
            if not line:
                return
            tail.append(line)
            if on_line is not None:
                try:
                    on_line(line)
                except Exception as e:
                    self.logger.error(f"Progress callback failed: {e}")

        while True:
            try:
                item = lines.get(timeout=0.1)
            except queue.Empty:
                item = None

            if item is _EOF:
                eof = True
            elif item is not None:
                deliver(item)

            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                self._terminate(process)
                break
            if deadline is not None and time.monotonic() > deadline:
                timed_out = True
                self.logger.warning(f"FFMPEG_TIMEOUT: pid={process.pid} exceeded {timeout}s")
                self._terminate(process)
                break

            if process.poll() is not None:
                if eof:
                    break
                if exited_at is None:
                    exited_at = time.monotonic()
                elif time.monotonic() - exited_at > POST_EXIT_DRAIN_SECONDS:
                    break

        exit_code = process.wait()
        reader.join(timeout=1.0)

        # lines emitted between the last get and exit
        while True:
            try:
                item = lines.get_nowait()
            except queue.Empty:
                break
            if item is not _EOF:
                deliver(item)

        if reader.is_alive():
            # a grandchild still holds the write end; closing now would block on the reader
            self.logger.debug(f"FFMPEG_END: pid={process.pid} stderr still held open after exit")
        else:
            process.stderr.close()

        elapsed = time.monotonic() - start_time
        if cancelled:
            status = "cancelled"
        elif timed_out:
            status = "timeout"
        elif exit_code == 0:
            status = "ok"
        else:
            status = "failed"
        self.logger.info(f"FFMPEG_END: pid={process.pid} status={status} code={exit_code} elapsed={elapsed:.2f}s")

        return PassResult(
            exit_code=exit_code,
            tail=list(tail),
            cancelled=cancelled,
            timed_out=timed_out,
            elapsed_seconds=elapsed,
        )
