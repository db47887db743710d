"""Operand decoding, opcode table and program image loading."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from isa import (
    MEM_CELLS,
    OPERAND_COUNT,
    Invalid,
    Literal,
    LoadFailure,
    OpCode,
    RegisterRef,
    VMError,
    decode,
    encode_words,
    is_opcode,
    load_program,
    load_words,
    mnemonic,
    render_operand,
)


def test_decode_covers_every_word() -> None:
    for w in range(0, 32768):
        assert decode(w) == Literal(w)
    for w in range(32768, 32776):
        assert decode(w) == RegisterRef(w - 32768)
    for w in range(32776, 65536):
        assert decode(w) == Invalid(w)


def test_value_variants_are_distinct() -> None:
    assert Literal(0) != RegisterRef(0)
    assert RegisterRef(3) != Invalid(3)


@pytest.mark.parametrize(
    ("word", "text"),
    [(0, "0"), (32767, "32767"), (32768, "r0"), (32775, "r7"), (32776, "32776"), (65535, "65535")],
)
def test_render_operand(word: int, text: str) -> None:
    assert render_operand(word) == text


def test_opcode_table() -> None:
    assert len(OpCode) == 22
    assert set(OPERAND_COUNT) == set(OpCode)
    assert OPERAND_COUNT[OpCode.HALT] == 0
    assert OPERAND_COUNT[OpCode.EQ] == 3
    assert OPERAND_COUNT[OpCode.NOT] == 2
    assert is_opcode(21)
    assert not is_opcode(22)


def test_mnemonic() -> None:
    assert mnemonic(OpCode.ADD, [32768, 32769, 4]) == "add r0 r1 4"
    assert mnemonic(OpCode.NOOP) == "noop"


def test_load_words_little_endian() -> None:
    assert load_words(b"\x13\x00\x48\x00\x00\x80") == [19, 72, 32768]
    assert load_words(b"") == []


def test_load_words_drops_odd_byte(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)
    assert load_words(b"\x01\x02\x03") == [0x0201]
    assert "odd length" in caplog.text


def test_encode_words_inverts_load() -> None:
    words = [0, 1, 255, 256, 32767, 32768, 65535]
    assert load_words(encode_words(words)) == words


def test_load_program(tmp_path: Path) -> None:
    path = tmp_path / "prog.bin"
    path.write_bytes(encode_words([19, 72, 0]))
    assert load_program(path) == [19, 72, 0]


def test_load_program_missing_file(tmp_path: Path) -> None:
    with pytest.raises(LoadFailure, match="Couldn't read program file"):
        load_program(tmp_path / "nope.bin")


def test_load_program_too_large(tmp_path: Path) -> None:
    path = tmp_path / "big.bin"
    path.write_bytes(encode_words([21] * (MEM_CELLS + 1)))
    with pytest.raises(LoadFailure, match="doesn't fit"):
        load_program(path)


def test_load_failure_is_vm_error() -> None:
    assert issubclass(LoadFailure, VMError)
