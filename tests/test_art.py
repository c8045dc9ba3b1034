"""Test the raw ART bridge: encoding, platform filtering, and record loading."""

import base64
import json

import pytest

from ttpcore.base.errors import BridgeError
from ttpcore.bridge.art import (
    ArtConfig,
    AtomicRecord,
    decode_bytes,
    decode_text,
    encode_bytes,
    encode_text,
    replace_special_chars,
)
from ttpcore.bridge.atomic import AtomicTest


def test_encoding_uses_standard_alphabet():
    assert encode_text("whoami") == base64.b64encode(b"whoami").decode()
    assert decode_text(encode_text("echo 'héllo' | base64")) == "echo 'héllo' | base64"


def test_bytes_round_trip_preserves_everything():
    data = bytes(range(256))
    assert decode_bytes(encode_bytes(data)) == data


def test_invalid_base64_raises():
    with pytest.raises(BridgeError):
        decode_bytes("not base64!!")


def test_special_characters_are_normalised():
    assert replace_special_chars("\x07rp -a") == "arp -a"
    assert replace_special_chars("C:\\\\Windows\\\\System32") == "C:\\Windows\\System32"


def test_process_atomic_test_emits_per_platform():
    test = AtomicTest.model_validate({
        "name": "List ARP",
        "supported_platforms": ["Windows", "linux", "amiga"],
        "input_arguments": {"iface": {"default": "eth0"}},
        "executor": {"name": "sh", "command": "\x07rp -i #{iface}"},
    })
    record = AtomicRecord(ability_id=7)
    record.process_atomic_test(test)

    assert len(record.abilities) == 2
    assert {a.ability_id for a in record.abilities} == {7}
    assert record.abilities[0].decoded_command == "arp -i #{iface}"
    assert [(v.var_name, v.decoded_value) for v in record.input_vars] == [("iface", "eth0"), ("iface", "eth0")]


def test_unsupported_platforms_produce_nothing():
    test = AtomicTest.model_validate({
        "name": "Retro",
        "supported_platforms": ["amiga"],
        "executor": {"name": "sh", "command": "echo hi"},
    })
    record = AtomicRecord(ability_id=1)
    record.process_atomic_test(test)
    assert record.abilities == []
    assert record.input_vars == []


def test_load_record_and_generate(tmp_path):
    path = tmp_path / "atomic.json"
    path.write_text(json.dumps({
        "ability_id": 42,
        "platform": "linux",
        "executor": "sh",
        "command": "ls C:\\\\temp",
        "input_arguments": {"target": {"id": 1, "name": "target", "default": "C:\\\\temp"}},
        "encoder": ["base64"],
    }))

    record = AtomicRecord.load(path)
    record.generate_vars_and_abilities()
    abilities, variables = record.to_records()

    assert abilities == [{"ability_id": 42, "command": encode_text("ls C:\\\\temp")}]
    assert variables == [{"ability_id": 42, "var_name": "target", "value": encode_text("C:\\temp")}]


def test_load_record_errors(tmp_path):
    with pytest.raises(BridgeError):
        AtomicRecord.load(tmp_path / "missing.json")
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(BridgeError):
        AtomicRecord.load(bad)


def test_art_config_load(tmp_path):
    path = tmp_path / "art.yaml"
    path.write_text("art_path: /opt/atomic-red-team\ncti_path: /opt/cti\n")
    config = ArtConfig.load(path)
    assert config.art_path == "/opt/atomic-red-team"
    assert config.cti_path == "/opt/cti"
