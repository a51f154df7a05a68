"""Outbound side-channel: marker-framed JSON records on stdout."""

from __future__ import annotations

import json
import sys
from typing import TextIO

from agent_runner.contracts import OutputRecord, OutputStatus

OUTPUT_START_MARKER = "---AGENT_RUNNER_OUTPUT_START---"
OUTPUT_END_MARKER = "---AGENT_RUNNER_OUTPUT_END---"


class OutputWriter:
    """Writes one framed record per reportable event and flushes immediately."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def write(self, record: OutputRecord) -> None:
        stream = self._stream if self._stream is not None else sys.stdout
        stream.write(f"{OUTPUT_START_MARKER}\n")
        stream.write(json.dumps(record.to_payload(), ensure_ascii=False))
        stream.write(f"\n{OUTPUT_END_MARKER}\n")
        stream.flush()

    def success(self, result: str | None, *, new_session_id: str | None = None) -> None:
        self.write(
            OutputRecord(
                status=OutputStatus.SUCCESS,
                result=result,
                new_session_id=new_session_id,
            ),
        )

    def error(self, error: str, *, new_session_id: str | None = None) -> None:
        self.write(
            OutputRecord(
                status=OutputStatus.ERROR,
                result=None,
                new_session_id=new_session_id,
                error=error,
            ),
        )
