"""ISA: opcode table, operand decoding and program image helpers."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Iterable, Union

MEM_CELLS = 32768  # 15-bit address space
WORD_MASK = 0xFFFF
VALUE_MODULUS = 32768  # arithmetic wraps in 15 bits
REGISTER_BASE = 32768
REGISTER_COUNT = 8


class OpCode(IntEnum):
    """Keeps opcodes from all operations."""

    HALT = 0
    SET = 1  # a = b
    PUSH = 2
    POP = 3  # a = pop()
    EQ = 4  # a = b == c
    GT = 5  # a = b > c
    JMP = 6
    JT = 7  # jump to b if a != 0
    JF = 8  # jump to b if a == 0
    ADD = 9
    MULT = 10
    MOD = 11
    AND = 12
    OR = 13
    NOT = 14  # 15-bit complement
    RMEM = 15  # a = MEM[b]
    WMEM = 16  # MEM[a] = b
    CALL = 17
    RET = 18
    OUT = 19
    IN = 20
    NOOP = 21


# number of operand words following each opcode
OPERAND_COUNT: dict[OpCode, int] = {
    OpCode.HALT: 0,
    OpCode.SET: 2,
    OpCode.PUSH: 1,
    OpCode.POP: 1,
    OpCode.EQ: 3,
    OpCode.GT: 3,
    OpCode.JMP: 1,
    OpCode.JT: 2,
    OpCode.JF: 2,
    OpCode.ADD: 3,
    OpCode.MULT: 3,
    OpCode.MOD: 3,
    OpCode.AND: 3,
    OpCode.OR: 3,
    OpCode.NOT: 2,
    OpCode.RMEM: 2,
    OpCode.WMEM: 2,
    OpCode.CALL: 1,
    OpCode.RET: 0,
    OpCode.OUT: 1,
    OpCode.IN: 1,
    OpCode.NOOP: 0,
}

MNEMONICS: dict[OpCode, str] = {op: op.name.lower() for op in OpCode}


def is_opcode(word: int) -> bool:
    """Return True if `word` names one of the 22 opcodes."""
    return 0 <= word < len(OpCode)


# --- operand values ---
@dataclass(frozen=True)
class Literal:
    """Operand word 0..32767, standing for itself."""

    value: int


@dataclass(frozen=True)
class RegisterRef:
    """Operand word 32768..32775, naming register `index`."""

    index: int


@dataclass(frozen=True)
class Invalid:
    """Operand word 32776 and above."""

    word: int


Value = Union[Literal, RegisterRef, Invalid]


def decode(word: int) -> Value:
    """Classify a raw word as Literal, RegisterRef or Invalid."""
    if word < REGISTER_BASE:
        return Literal(word)
    if word < REGISTER_BASE + REGISTER_COUNT:
        return RegisterRef(word - REGISTER_BASE)
    return Invalid(word)


def render_operand(word: int) -> str:
    """Render an operand word for listings: `r<k>` for registers, decimal otherwise."""
    v = decode(word)
    if isinstance(v, RegisterRef):
        return f"r{v.index}"
    if isinstance(v, Literal):
        return str(v.value)
    return str(v.word)


def mnemonic(opcode: OpCode, operands: Iterable[int] = ()) -> str:
    """Get operation mnemonic with rendered operands."""
    parts = [MNEMONICS[opcode]]
    parts.extend(render_operand(w) for w in operands)
    return " ".join(parts)


class VMError(Exception):
    """Base class for fatal machine errors."""

    pass


# --- program images ---
class LoadFailure(VMError):
    """Raised when a program image cannot be read or does not fit into memory."""

    pass


def load_words(blob: bytes) -> list[int]:
    """Decode a raw image into 16-bit little-endian words.

    An odd trailing byte is dropped.
    """
    count = len(blob) // 2
    if len(blob) % 2:
        logging.warning("Program image has odd length %d; trailing byte ignored", len(blob))
    return list(struct.unpack(f"<{count}H", blob[: count * 2]))


def encode_words(words: Iterable[int]) -> bytes:
    """Encode words into a little-endian image (inverse of load_words)."""
    ws = [int(w) & WORD_MASK for w in words]
    return struct.pack(f"<{len(ws)}H", *ws)


def load_program(path: str | Path) -> list[int]:
    """Read and decode the program image at `path`.

    Raises LoadFailure if the file is missing, unreadable or too large.
    """
    p = Path(path)
    try:
        blob = p.read_bytes()
    except OSError as e:
        msg = f"Couldn't read program file {path}: {e}"
        raise LoadFailure(msg) from e
    words = load_words(blob)
    if len(words) > MEM_CELLS:
        msg = f"Program image {path} doesn't fit into memory ({len(words)} words > {MEM_CELLS})"
        raise LoadFailure(msg)
    logging.debug("Loaded %d words from %s", len(words), path)
    return words
