"""
ttpcore/loader.py
Reads YAML procedure definitions into Procedure objects.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import pydantic
import yaml

from ttpcore.base.errors import ErrorCode, LoaderError
from ttpcore.executor.procedure import Procedure

logger = logging.getLogger(__name__)


def parse_procedure(text: str, *, source: str = "<string>", work_dir: Optional[Path] = None) -> Procedure:
    """
    Parse procedure YAML text.

    Raises:
        LoaderError: malformed YAML or a definition that fails validation
    """
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise LoaderError(f"{source}: invalid YAML: {exc}", details={"source": source}) from exc

    if not isinstance(raw, dict):
        raise LoaderError(f"{source}: procedure must be a mapping", details={"source": source})

    if work_dir is not None:
        raw["work_dir"] = work_dir

    try:
        procedure = Procedure.model_validate(raw)
    except pydantic.ValidationError as exc:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise LoaderError(
            f"{source}: invalid procedure definition ({exc.error_count()} problem(s))",
            details={"source": source, "problems": problems},
        ) from exc

    logger.debug(f"[Loader] Parsed {source}: {len(procedure.steps)} step(s)")
    return procedure


def load_procedure(path: Union[str, Path]) -> Procedure:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise LoaderError(
            f"procedure file not found: {path}",
            details={"source": str(path)},
            code=ErrorCode.LOAD_FILE_NOT_FOUND,
        ) from exc
    return parse_procedure(text, source=str(path), work_dir=path.resolve().parent)
