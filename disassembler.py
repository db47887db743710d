"""Linear disassembler producing a textual listing of a program image."""

from __future__ import annotations

from typing import Sequence

from isa import OPERAND_COUNT, Literal, OpCode, decode, is_opcode, mnemonic

_ESCAPES = {10: "\\n", 34: '\\"', 92: "\\\\"}


def escape_char(code: int) -> str:
    """Render one output byte inside a string literal."""
    if code in _ESCAPES:
        return _ESCAPES[code]
    if 32 <= code <= 126:
        return chr(code)
    return f"\\{code}"


class _OutString:
    """Consecutive literal `out` instructions folded into one string."""

    def __init__(self) -> None:
        self.addr: int | None = None
        self.chars: list[str] = []

    def add(self, addr: int, code: int) -> None:
        if self.addr is None:
            self.addr = addr
        self.chars.append(escape_char(code & 0xFF))

    def close(self, lines: list[str]) -> None:
        if self.addr is None:
            return
        lines.append(f'{self.addr}: out "{"".join(self.chars)}"')
        self.addr = None
        self.chars = []


def disassemble(words: Sequence[int]) -> list[str]:
    """Disassemble `words` in a single forward pass.

    Control flow is not followed: every word is decoded in sequence, so data
    mixed into code may come out as instructions. Words that are not opcodes
    are listed as `data`.
    """
    lines: list[str] = []
    text = _OutString()
    pc = 0
    n = len(words)
    while pc < n:
        word = words[pc]
        if not is_opcode(word):
            text.close(lines)
            lines.append(f"{pc}: data {word}")
            pc += 1
            continue

        opcode = OpCode(word)
        count = OPERAND_COUNT[opcode]
        if pc + count >= n:
            # operands run past the end of the image
            text.close(lines)
            lines.extend(f"{a}: data {words[a]}" for a in range(pc, n))
            break

        operands = list(words[pc + 1 : pc + 1 + count])
        if opcode == OpCode.OUT and isinstance(decode(operands[0]), Literal):
            text.add(pc, operands[0])
        else:
            text.close(lines)
            lines.append(f"{pc}: {mnemonic(opcode, operands)}")
        pc += 1 + count

    text.close(lines)
    return lines


def format_listing(words: Sequence[int]) -> str:
    """Return the full listing as text, one instruction per line."""
    lines = disassemble(words)
    if not lines:
        return ""
    return "\n".join(lines) + "\n"
