"""
ttpcore/executor/procedure.py

Purpose:
    An ordered, immutable set of steps plus the arguments and environment
    they run with.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ttpcore.base.errors import LoaderError, ValidationError
from ttpcore.executor.models import ArgSpec
from ttpcore.executor.steps import BaseStep, Step, decode_step


class MitreInfo(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    tactics: List[str] = Field(default_factory=list)
    techniques: List[str] = Field(default_factory=list)
    subtechniques: List[str] = Field(default_factory=list)


class Procedure(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = ""
    description: str = ""
    env: Dict[str, str] = Field(default_factory=dict)
    args: List[ArgSpec] = Field(default_factory=list)
    mitre: Optional[MitreInfo] = None
    steps: List[Step] = Field(default_factory=list)
    # Directory the definition was loaded from; commands run relative to it
    work_dir: Optional[Path] = Field(default=None, exclude=True)

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    @field_validator("steps", mode="before")
    @classmethod
    def _decode_steps(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        decoded = []
        for raw in value:
            if isinstance(raw, BaseStep):
                decoded.append(raw)
                continue
            if not isinstance(raw, Mapping):
                raise ValueError(f"step must be a mapping, got {type(raw).__name__}")
            try:
                decoded.append(decode_step(raw))
            except ValidationError as exc:
                raise ValueError(exc.message) from exc
        return decoded

    @model_validator(mode="after")
    def _check_steps(self) -> "Procedure":
        seen = set()
        for step in self.steps:
            if step.name in seen:
                raise ValueError(f"duplicate step name: {step.name}")
            seen.add(step.name)
            try:
                step.arg_defaults()
            except (TypeError, ValueError) as exc:
                raise ValueError(f"step '{step.name}' has an invalid argument default: {exc}") from exc
        return self

    def resolve_args(self, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Combine declared defaults with caller-supplied values, coerced to their
        declared types. Step-level arguments can be overridden by name too.

        Raises:
            LoaderError: unknown argument, missing required value, or bad type
        """
        overrides = dict(overrides or {})
        specs: Dict[str, ArgSpec] = {}
        for step in self.steps:
            for spec in step.args:
                specs.setdefault(spec.name, spec)
        for spec in self.args:
            specs[spec.name] = spec

        unknown = sorted(set(overrides) - set(specs))
        if unknown:
            raise LoaderError(
                f"unknown argument(s): {', '.join(unknown)}",
                details={"procedure": self.name, "unknown": unknown},
            )

        values: Dict[str, Any] = {}
        for name, spec in specs.items():
            is_procedure_arg = any(s.name == name for s in self.args)
            raw = overrides.get(name, spec.default if is_procedure_arg else None)
            if raw is None:
                if is_procedure_arg:
                    raise LoaderError(
                        f"value for required argument '{name}' not provided",
                        details={"procedure": self.name, "argument": name},
                    )
                continue
            try:
                values[name] = spec.coerce(raw)
            except (TypeError, ValueError) as exc:
                raise LoaderError(
                    f"invalid value for argument '{name}' ({spec.type}): {raw!r}",
                    details={"procedure": self.name, "argument": name},
                ) from exc
        return values
