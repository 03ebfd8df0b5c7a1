"""Compiler collaborator: protocol plus the Mermaid CLI adapter."""
from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence

from .config import CompilerOptions
from .errors import CompileError

logger = logging.getLogger(__name__)

DIAGRAM_TYPES = (
    "graph",
    "flowchart",
    "sequenceDiagram",
    "classDiagram",
    "classDiagram-v2",
    "stateDiagram",
    "stateDiagram-v2",
    "erDiagram",
    "journey",
    "gantt",
    "pie",
    "quadrantChart",
    "requirementDiagram",
    "gitGraph",
    "mindmap",
    "timeline",
    "C4Context",
    "C4Container",
    "C4Component",
    "C4Dynamic",
    "C4Deployment",
    "sankey-beta",
    "xychart-beta",
    "block-beta",
    "packet-beta",
    "architecture-beta",
    "kanban",
    "radar-beta",
)

_FAULT_RE = re.compile(r"\b(?:null|undefined)\b|Cannot read propert", re.IGNORECASE)
_LINE_RE = re.compile(r"(?:Parse error on line|line)\s+(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class Diagnostic:
    message: str
    line: Optional[int] = None

    def to_error(self) -> CompileError:
        return CompileError(self.message, line=self.line)


class Compiler(Protocol):
    def configure(self, options: CompilerOptions) -> None: ...

    async def validate(self, source: str) -> Optional[Diagnostic]: ...

    async def compile(self, diagram_id: str, source: str) -> str: ...


def is_internal_fault(message: str) -> bool:
    """True when a compiler message points at a null/undefined crash inside it."""
    return bool(_FAULT_RE.search(message))


def diagram_type_of(source: str) -> Optional[str]:
    """Return the header keyword of ``source``, skipping front matter and comments."""
    lines = source.splitlines()
    idx = 0
    if lines and lines[0].strip() == "---":
        idx = 1
        while idx < len(lines) and lines[idx].strip() != "---":
            idx += 1
        idx += 1
    for line in lines[idx:]:
        stripped = line.strip()
        if not stripped or stripped.startswith("%%"):
            continue
        return stripped.split(None, 1)[0]
    return None


class MermaidCliCompiler:
    """Runs the Mermaid CLI (``mmdc``) to turn source into SVG."""

    def __init__(
        self,
        options: Optional[CompilerOptions] = None,
        *,
        executable: str = "mmdc",
        extra_args: Sequence[str] = (),
        timeout: float = 60.0,
    ) -> None:
        self._options = options or CompilerOptions()
        self._executable = executable
        self._extra_args = list(extra_args)
        self._timeout = timeout

    @property
    def options(self) -> CompilerOptions:
        return self._options

    def configure(self, options: CompilerOptions) -> None:
        self._options = options

    def is_available(self) -> bool:
        return shutil.which(self._executable) is not None

    async def validate(self, source: str) -> Optional[Diagnostic]:
        if not source.strip():
            return Diagnostic("diagram source is empty")
        header = diagram_type_of(source)
        if header not in DIAGRAM_TYPES:
            return Diagnostic(f"unknown diagram type: {header!r}", line=1)
        return None

    async def compile(self, diagram_id: str, source: str) -> str:
        executable = shutil.which(self._executable)
        if executable is None:
            raise CompileError(
                f"Mermaid CLI not found: {self._executable}; install @mermaid-js/mermaid-cli",
                fatal=True,
            )

        with tempfile.TemporaryDirectory(prefix="diagramlive-") as tmpdir:
            workdir = Path(tmpdir)
            input_file = workdir / "input.mmd"
            output_file = workdir / "output.svg"
            config_file = workdir / "config.json"
            input_file.write_text(source, encoding="utf-8")
            config_file.write_text(json.dumps(self._options.to_mermaid_config()), encoding="utf-8")

            proc = await asyncio.create_subprocess_exec(
                executable,
                "-i",
                str(input_file),
                "-o",
                str(output_file),
                "-c",
                str(config_file),
                "-I",
                diagram_id,
                *self._extra_args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                raise CompileError(f"Mermaid CLI timed out after {self._timeout:g}s") from None

            if proc.returncode != 0:
                raise _error_from_stderr(stderr.decode("utf-8", "replace"))
            if not output_file.exists():
                raise CompileError("Mermaid CLI reported success but wrote no SVG")
            return output_file.read_text(encoding="utf-8")


def _error_from_stderr(stderr: str) -> CompileError:
    lines = [line.strip() for line in stderr.splitlines() if line.strip()]
    message = next((line for line in lines if "error" in line.lower()), lines[0] if lines else "")
    message = message or "Mermaid CLI failed"
    match = _LINE_RE.search(stderr)
    line = int(match.group(1)) if match else None
    logger.debug("mmdc stderr: %s", stderr)
    return CompileError(message, line=line, fatal=is_internal_fault(stderr))


__all__ = [
    "Compiler",
    "DIAGRAM_TYPES",
    "Diagnostic",
    "MermaidCliCompiler",
    "diagram_type_of",
    "is_internal_fault",
]
