"""
ttpcore/bridge/atomic.py

Purpose:
    Turn an Atomic Red Team technique definition into a procedure directory
    the loader can run.

Layout:
    input:  <ttp_path>/<base>.yaml        (+ optional <ttp_path>/src/)
    output: <output_root>/<base>/<base>.yaml  (+ copied src/)
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field

from ttpcore.base.errors import BridgeError
from ttpcore.executor.procedure import Procedure

logger = logging.getLogger(__name__)

# ART placeholder syntax: #{argument_name}
_PLACEHOLDER = re.compile(r"#\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}")

_ARG_TYPES = {
    "string": "string",
    "str": "string",
    "url": "string",
    "path": "path",
    "integer": "int",
    "int": "int",
    "float": "float",
    "bool": "bool",
    "boolean": "bool",
}


class AtomicExecutor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    command: Optional[str] = None
    cleanup_command: Optional[str] = None
    steps: Optional[str] = None
    elevation_required: bool = False


class AtomicInputArgument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str = ""
    type: str = "string"
    default: Any = None


class AtomicTest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    description: str = ""
    supported_platforms: List[str] = Field(default_factory=list)
    executor: AtomicExecutor = Field(default_factory=AtomicExecutor)
    input_arguments: Dict[str, AtomicInputArgument] = Field(default_factory=dict)


class AtomicSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    attack_technique: str
    display_name: str = ""
    atomic_tests: List[AtomicTest] = Field(default_factory=list)


def format_step_name(name: str) -> str:
    """Lower-case and replace spaces with dashes: 'Test Name' -> 'test-name'."""
    return name.strip().lower().replace(" ", "-")


def rewrite_placeholders(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return _PLACEHOLDER.sub(lambda m: "{{ args.%s }}" % m.group(1), text)


def _arg_spec(name: str, arg: AtomicInputArgument) -> Dict[str, Any]:
    spec: Dict[str, Any] = {
        "name": name,
        "type": _ARG_TYPES.get(arg.type.strip().lower(), "string"),
    }
    if arg.default is not None:
        spec["default"] = str(arg.default)
    if arg.description:
        spec["description"] = arg.description
    return spec


def _platforms(test: AtomicTest) -> List[str]:
    known = {"windows", "linux", "macos"}
    return [p.lower() for p in test.supported_platforms if p.lower() in known]


def convert_schema(atomic: AtomicSchema) -> Dict[str, Any]:
    """
    Build a procedure definition (plain dict, ready for YAML) from an ART technique.

    Tests without an executor command are manual and are skipped.
    """
    steps: List[Dict[str, Any]] = []
    for test in atomic.atomic_tests:
        command = test.executor.command
        if not command or not command.strip():
            logger.warning(f"[Atomic] Skipping '{test.name}': no executor command (manual test)")
            continue

        step: Dict[str, Any] = {
            "name": format_step_name(test.name),
            "inline": rewrite_placeholders(command),
        }
        if test.description:
            step["description"] = test.description.strip()
        platforms = _platforms(test)
        if platforms:
            step["supported_platforms"] = platforms
        if test.executor.cleanup_command and test.executor.cleanup_command.strip():
            step["cleanup"] = rewrite_placeholders(test.executor.cleanup_command)
        if test.input_arguments:
            step["args"] = [_arg_spec(name, arg) for name, arg in test.input_arguments.items()]
        steps.append(step)

    display = atomic.display_name or atomic.attack_technique
    definition: Dict[str, Any] = {
        "name": format_step_name(display),
        "description": display,
        "mitre": {"techniques": [atomic.attack_technique]},
        "steps": steps,
    }

    try:
        Procedure.model_validate(definition)
    except pydantic.ValidationError as exc:
        raise BridgeError(
            f"converted technique {atomic.attack_technique} is not a valid procedure",
            details={"technique": atomic.attack_technique, "problems": [e["msg"] for e in exc.errors()]},
        ) from exc
    return definition


class AtomicConverter:
    """Writes converted techniques under an explicit output root."""

    def __init__(self, output_root: Union[str, Path]):
        self.output_root = Path(output_root)

    def read_schema(self, ttp_path: Path) -> AtomicSchema:
        source = ttp_path / f"{ttp_path.name}.yaml"
        try:
            raw = yaml.safe_load(source.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise BridgeError(f"technique file not found: {source}", details={"source": str(source)}) from exc
        except yaml.YAMLError as exc:
            raise BridgeError(f"{source}: invalid YAML: {exc}", details={"source": str(source)}) from exc

        try:
            return AtomicSchema.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise BridgeError(
                f"{source}: not an Atomic Red Team technique",
                details={"source": str(source), "problems": [e["msg"] for e in exc.errors()]},
            ) from exc

    def convert_directory(self, ttp_path: Union[str, Path]) -> Path:
        """
        Convert <ttp_path>/<base>.yaml and write it to <output_root>/<base>/<base>.yaml.

        Returns:
            Path of the written procedure file
        """
        if not str(ttp_path).strip():
            raise BridgeError("a valid TTP path must be provided")
        ttp_path = Path(ttp_path)
        base = ttp_path.resolve().name

        definition = convert_schema(self.read_schema(ttp_path))

        out_dir = self.output_root / base
        out_dir.mkdir(parents=True, exist_ok=True)
        out_file = out_dir / f"{base}.yaml"
        out_file.write_text(
            yaml.safe_dump(definition, sort_keys=False, default_flow_style=False, allow_unicode=True),
            encoding="utf-8",
        )

        src = ttp_path / "src"
        if src.is_dir():
            shutil.copytree(src, out_dir / "src", dirs_exist_ok=True)
            logger.info(f"[Atomic] Copied {src} -> {out_dir / 'src'}")

        logger.info(f"[Atomic] Wrote {out_file} ({len(definition['steps'])} step(s))")
        return out_file
