"""
Typesetting collaborator: LaTeX source in, PDF bytes out.

PdfLatexTypesetter runs pdflatex in a scratch directory off the event loop
(asyncio subprocess). A rejected document raises CompileError with the
errors parsed from the .log; a missing binary or a hung process is an
infrastructure fault and surfaces as OSError / TimeoutError for the gateway
to retry.
"""
import asyncio
import re
import tempfile
from pathlib import Path
from typing import List, Tuple

from groundwork.config import get_settings
from groundwork.exceptions import CompileError
from groundwork.utils.logger import logger

JOB_NAME = "resume"

_ERROR_RE = re.compile(r"^! (.+)$", re.MULTILINE)
_FILE_LINE_ERROR_RE = re.compile(r"^[^\s:]+\.tex:(\d+): (.+)$", re.MULTILINE)
_EXTRA_ERROR_PATTERNS = (
    r"Undefined control sequence",
    r"File ended while scanning use of",
    r"Emergency stop",
)


def parse_latex_log(log_content: str) -> Tuple[List[str], List[str]]:
    """(errors, warnings) from a pdflatex .log"""
    errors = [m.group(1).strip() for m in _ERROR_RE.finditer(log_content)]
    errors.extend(
        f"line {m.group(1)}: {m.group(2).strip()}"
        for m in _FILE_LINE_ERROR_RE.finditer(log_content)
    )
    for pattern in _EXTRA_ERROR_PATTERNS:
        match = re.search(rf"({pattern}.*?)$", log_content, re.MULTILINE)
        if match and not any(match.group(1) in e for e in errors):
            errors.append(match.group(1))

    warnings = [m.group(1).strip() for m in re.finditer(r"LaTeX Warning: (.+)", log_content)]
    warnings.extend(m.group(1).strip() for m in re.finditer(r"Overfull \\hbox \((.+)\)", log_content))
    return errors, warnings


class Typesetter:
    async def compile(self, latex_source: str) -> bytes:
        raise NotImplementedError


class PdfLatexTypesetter(Typesetter):
    def __init__(self, binary: str = "pdflatex", timeout_seconds: float = 60.0, num_passes: int = 1):
        self.binary = binary
        self.timeout_seconds = timeout_seconds
        self.num_passes = num_passes

    async def _run(self, workdir: Path) -> int:
        process = await asyncio.create_subprocess_exec(
            self.binary,
            "-interaction=nonstopmode",
            "-halt-on-error",
            "-file-line-error",
            "-no-shell-escape",
            f"{JOB_NAME}.tex",
            cwd=str(workdir),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            return await asyncio.wait_for(process.wait(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise

    async def compile(self, latex_source: str) -> bytes:
        with tempfile.TemporaryDirectory(prefix="groundwork-tex-") as tmp:
            workdir = Path(tmp)
            (workdir / f"{JOB_NAME}.tex").write_text(latex_source, encoding="utf-8")

            returncode = 0
            for _ in range(self.num_passes):
                returncode = await self._run(workdir)
                if returncode != 0:
                    break

            log_file = workdir / f"{JOB_NAME}.log"
            errors, warnings = [], []
            if log_file.exists():
                # pdflatex logs are latin-1
                errors, warnings = parse_latex_log(log_file.read_text(encoding="latin-1"))

            pdf_file = workdir / f"{JOB_NAME}.pdf"
            if returncode != 0 or errors or not pdf_file.exists():
                detail = errors[0] if errors else f"pdflatex exited with status {returncode}"
                raise CompileError(detail, errors=errors or [detail])

            if warnings:
                logger.info("typesetting.warnings", extra={"reason": "; ".join(warnings[:3])})
            return pdf_file.read_bytes()


def get_typesetter() -> Typesetter:
    settings = get_settings()
    return PdfLatexTypesetter(settings.pdflatex_path, settings.pdflatex_timeout_seconds)
