"""Turn the scanner's unstructured transcript into state updates."""

from __future__ import annotations

import re

from corgea_ide.engines.scan.models import StateUpdate

ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
_LINE_SPLIT_RE = re.compile(r"\r\n|\r|\n")
_PERCENT_RE = re.compile(r"\[.*?(\d+(?:\.\d+)?)%")
_SCAN_ID_RE = re.compile(r"Scan has started with ID:\s*(\S+)")
_URL_RE = re.compile(r"https?://\S+")

_URL_HOST_MARKERS = ("corgea.app", "localhost", "127.0.0.1")


def strip_ansi(text: str) -> str:
    return ANSI_RE.sub("", text)


def parse_line(line: str) -> StateUpdate:
    """Classify one complete line; first matching rule wins."""
    if "Packaging your project" in line:
        return StateUpdate(
            line=line, stage="init", progress_stage="init", message="Packaging your project..."
        )
    if "Project packaged successfully" in line:
        return StateUpdate(
            line=line,
            stage="package",
            progress_stage="package",
            message="Project packaged successfully",
        )

    m = _PERCENT_RE.search(line)
    if m:
        return StateUpdate(line=line, percentage=float(m.group(1)))

    m = _SCAN_ID_RE.search(strip_ansi(line))
    if m:
        scan_id = m.group(1)
        return StateUpdate(
            line=line,
            stage="upload",
            progress_stage="scan",
            message=f"Scan started with ID: {scan_id}",
            scan_id=scan_id,
        )

    if "scan_id=" in line and any(host in line for host in _URL_HOST_MARKERS):
        m = _URL_RE.search(strip_ansi(line))
        if m:
            return StateUpdate(
                line=line,
                progress_stage="url_ready",
                message="Scan results available",
                scan_url=m.group(0),
            )

    return StateUpdate(line=line)


class OutputParser:
    """Line-buffering parser fed with raw process chunks.

    Partial lines are buffered per stream so a marker split across two chunks
    is still recognised. A trailing ``\\r`` is held back until the next chunk
    decides whether it is part of ``\\r\\n``.
    """

    def __init__(self) -> None:
        self._buffers: dict[str, str] = {}

    def feed(self, chunk: str, stream: str = "stdout") -> list[StateUpdate]:
        data = self._buffers.pop(stream, "") + chunk
        parts = _LINE_SPLIT_RE.split(data)
        tail = parts.pop()
        if data.endswith("\r"):
            # the split consumed it; keep it for a possible "\r\n"
            tail = parts.pop() + "\r" if parts else "\r"
        if tail:
            self._buffers[stream] = tail
        return [parse_line(line) for line in parts if line]

    def flush(self) -> list[StateUpdate]:
        """Emit what is left in the buffers; called once the process exited."""
        updates = []
        for stream in list(self._buffers):
            rest = self._buffers.pop(stream).rstrip("\r")
            if rest:
                updates.append(parse_line(rest))
        return updates

    def reset(self) -> None:
        self._buffers.clear()
