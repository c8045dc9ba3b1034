"""
ttpcore/bridge/art.py
Raw Atomic Red Team records turned into base64-encoded abilities and variables.
"""
#
# PURPOSE:
# Downstream consumers (C2-style ability stores) expect every command and
# argument value as standard-alphabet base64. An AtomicRecord is the JSON
# form of one atomic; process_atomic_test() expands an ART YAML test into one
# ability per supported platform, plus one variable per input argument.
#
# NORMALISATION:
# Before encoding, "\x07" (BEL, left behind by an unescaped "\a") becomes "a"
# and doubled backslashes collapse to one.
#

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple, Union

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field

from ttpcore.base.errors import BridgeError
from ttpcore.bridge.atomic import AtomicTest

logger = logging.getLogger(__name__)

SUPPORTED_PLATFORMS = ("windows", "linux", "macos")


def replace_special_chars(text: str) -> str:
    text = text.replace("\x07", "a")
    return text.replace("\\\\", "\\")


def encode_bytes(data: bytes) -> str:
    return base64.standard_b64encode(data).decode("ascii")


def decode_bytes(encoded: str) -> bytes:
    try:
        return base64.b64decode(encoded.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise BridgeError(f"invalid base64 value: {exc}", details={"value": encoded}) from exc


def encode_text(text: str) -> str:
    return encode_bytes(text.encode("utf-8"))


def decode_text(encoded: str) -> str:
    return decode_bytes(encoded).decode("utf-8")


@dataclass(frozen=True)
class Ability:
    ability_id: int
    command: str  # base64

    @classmethod
    def create(cls, ability_id: int, command: str) -> "Ability":
        return cls(ability_id=ability_id, command=encode_text(command))

    @property
    def decoded_command(self) -> str:
        return decode_text(self.command)


@dataclass(frozen=True)
class Var:
    ability_id: int
    var_name: str
    value: str  # base64

    @classmethod
    def create(cls, ability_id: int, name: str, value: str) -> "Var":
        return cls(ability_id=ability_id, var_name=name, value=encode_text(value))

    @property
    def decoded_value(self) -> str:
        return decode_text(self.value)


class ArtConfig(BaseModel):
    """Locations of the ART and CTI checkouts."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    art_path: str = ""
    cti_path: str = ""

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ArtConfig":
        path = Path(path)
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except FileNotFoundError as exc:
            raise BridgeError(f"ART config not found: {path}", details={"source": str(path)}) from exc
        except yaml.YAMLError as exc:
            raise BridgeError(f"{path}: invalid YAML: {exc}", details={"source": str(path)}) from exc
        try:
            return cls.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise BridgeError(f"{path}: invalid ART config", details={"source": str(path)}) from exc


class ArtArgument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int = 0
    name: str = ""
    default: str = ""


class AtomicRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ability_id: int = 0
    platform: str = ""
    executor: str = ""
    command: str = ""
    input_arguments: Dict[str, ArtArgument] = Field(default_factory=dict)
    encoder: List[str] = Field(default_factory=list)

    abilities: List[Ability] = Field(default_factory=list, exclude=True)
    input_vars: List[Var] = Field(default_factory=list, exclude=True)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "AtomicRecord":
        path = Path(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise BridgeError(f"atomic record not found: {path}", details={"source": str(path)}) from exc
        except json.JSONDecodeError as exc:
            raise BridgeError(f"{path}: invalid JSON: {exc}", details={"source": str(path)}) from exc
        try:
            return cls.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise BridgeError(
                f"{path}: invalid atomic record",
                details={"source": str(path), "problems": [e["msg"] for e in exc.errors()]},
            ) from exc

    def process_atomic_test(self, test: AtomicTest) -> None:
        """Append one ability (and its variables) per supported platform of `test`."""
        for platform in test.supported_platforms:
            if platform.lower() not in SUPPORTED_PLATFORMS:
                logger.debug(f"[ART] Ignoring platform '{platform}' for '{test.name}'")
                continue
            command = replace_special_chars(test.executor.command or "")
            self.abilities.append(Ability.create(self.ability_id, command))
            for name, arg in test.input_arguments.items():
                value = "" if arg.default is None else str(arg.default)
                self.input_vars.append(Var.create(self.ability_id, name, replace_special_chars(value)))

    def generate_vars_and_abilities(self) -> None:
        """Emit variables and a single ability from this record's own command and arguments."""
        for name, arg in self.input_arguments.items():
            self.input_vars.append(Var.create(self.ability_id, name, replace_special_chars(arg.default)))
        self.abilities.append(Ability.create(self.ability_id, self.command))

    def to_records(self) -> Tuple[List[Dict[str, object]], List[Dict[str, object]]]:
        abilities = [{"ability_id": a.ability_id, "command": a.command} for a in self.abilities]
        variables = [
            {"ability_id": v.ability_id, "var_name": v.var_name, "value": v.value} for v in self.input_vars
        ]
        return abilities, variables
