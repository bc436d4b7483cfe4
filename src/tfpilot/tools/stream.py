"""Run a child process and multiplex its output streams into one ordered channel.

Each stream is drained by its own reader thread that pushes ``StreamEvent``
items onto a shared queue.  A supervisor thread closes the queue once both
readers finish and the process has exited, so the consumer simply drains the
queue until it sees the close marker.  Lines from one stream keep their order;
interleaving between stdout and stderr follows arrival order only.
"""

from __future__ import annotations

import json
import logging
import queue
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Literal, Mapping, Sequence

LOGGER = logging.getLogger(__name__)

TERMINATE_TIMEOUT = 5.0

StreamName = Literal["command", "stdout", "stderr"]

_CLOSED = object()


@dataclass(slots=True, frozen=True)
class StreamEvent:
    """One line of output (or the synthetic command record) from a child process."""

    stream: StreamName
    line: str


EventHandler = Callable[[StreamEvent], None]


def _pump(stream_name: StreamName, handle: IO[str], channel: "queue.Queue[object]") -> None:
    try:
        for raw_line in iter(handle.readline, ""):
            channel.put(StreamEvent(stream_name, raw_line))
    except (OSError, ValueError) as error:
        # The descriptor was closed underneath the reader.
        LOGGER.debug("Stopped reading %s: %s", stream_name, error)
    finally:
        handle.close()


def _stop(process: subprocess.Popen[str]) -> None:
    LOGGER.warning("Stopping pid %s after its output consumer failed", process.pid)
    process.terminate()
    try:
        process.wait(timeout=TERMINATE_TIMEOUT)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


def run_with_each_line(
    args: Sequence[str],
    on_event: EventHandler,
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    """Execute ``args`` and feed every output line to ``on_event``.

    The first event is always the synthetic ``command`` record holding the
    JSON-encoded argv that was executed.  Returns the process exit code.
    Raises ``OSError`` when the executable cannot be started.
    """

    channel: "queue.Queue[object]" = queue.Queue()
    channel.put(StreamEvent("command", json.dumps(list(args))))

    process = subprocess.Popen(  # noqa: S603 - argv is assembled from settings
        list(args),
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
        bufsize=1,
    )
    assert process.stdout is not None and process.stderr is not None

    readers = [
        threading.Thread(target=_pump, args=("stdout", process.stdout, channel), daemon=True),
        threading.Thread(target=_pump, args=("stderr", process.stderr, channel), daemon=True),
    ]
    for reader in readers:
        reader.start()

    def _supervise() -> None:
        for reader in readers:
            reader.join()
        process.wait()
        channel.put(_CLOSED)

    supervisor = threading.Thread(target=_supervise, daemon=True)
    supervisor.start()

    try:
        while True:
            item = channel.get()
            if item is _CLOSED:
                break
            on_event(item)  # type: ignore[arg-type]
    finally:
        if process.poll() is None:
            _stop(process)
        supervisor.join(TERMINATE_TIMEOUT)
    return process.returncode


__all__ = ["EventHandler", "StreamEvent", "StreamName", "run_with_each_line"]
