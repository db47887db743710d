"""Processor (Datapath + ControlUnit).

Provides VM execution, the operand resolver, logging initialization and
an optional state dump for post-mortem inspection.
"""

from __future__ import annotations

import io
import logging
import sys
from typing import IO, Any, TextIO

from input_buffer import DEFAULT_PROMPT, InputBuffer
from isa import (
    MEM_CELLS,
    OPERAND_COUNT,
    REGISTER_COUNT,
    VALUE_MODULUS,
    WORD_MASK,
    Literal,
    OpCode,
    RegisterRef,
    VMError,
    decode,
    is_opcode,
    mnemonic,
)

LOGFILE = "processor.log"


def init_logging(logfile: str | None = LOGFILE, debug: bool = False, console: bool = False) -> None:
    """Configure root logger to write to `logfile`.

    If debug=True set DEBUG level. If console=True also echo logs to stderr
    (stdout carries the program's own output).
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    lvl = logging.DEBUG if debug else logging.WARNING
    root.setLevel(lvl)

    if debug:
        file_fmt = "%(levelname)s %(name)s:%(filename)s:%(lineno)d %(message)s"
    else:
        file_fmt = "%(levelname)-5s %(message)s"

    if logfile:
        fh = logging.FileHandler(logfile, mode="w", encoding="utf-8")
        fh.setLevel(lvl)
        fh.setFormatter(logging.Formatter(file_fmt))
        root.addHandler(fh)

    if console:
        ch = logging.StreamHandler(sys.stderr)
        ch.setLevel(lvl)
        ch.setFormatter(logging.Formatter("%(levelname)5s %(message)s"))
        root.addHandler(ch)


# --- fatal errors ---
class InvalidOperand(VMError):
    """An operand word >= 32776 was used as a value or destination."""

    pass


class StackUnderflow(VMError):
    """`pop` executed with an empty stack."""

    pass


class UnknownOpcode(VMError):
    """Opcode word > 21 found where an instruction was expected."""

    pass


class MemoryFault(VMError):
    """Memory access outside 0..32767."""

    pass


class ArithmeticFault(VMError):
    """`mod` with a zero divisor."""

    pass


class Datapath:
    """Datapath (memory + registers + stack + I/O) for the VM."""

    memory: list[int]
    registers: list[int]
    stack: list[int]

    PC: int
    instr_pc: int  # address of the instruction being executed
    tick: int
    tick_limit: int | None
    trace: bool

    output: IO[bytes]
    input_buffer: InputBuffer

    def __init__(
        self,
        words: list[int],
        output: IO[bytes] | None = None,
        input_buffer: InputBuffer | None = None,
        tick_limit: int | None = None,
        trace: bool = False,
    ) -> None:
        """Initialize Datapath state: memory from `words`, zeroed registers, empty stack."""
        if len(words) > MEM_CELLS:
            err = f"Program doesn't fit into memory ({len(words)} words)"
            raise MemoryFault(err)
        self.memory = [0] * MEM_CELLS
        self.memory[0 : len(words)] = [int(w) & WORD_MASK for w in words]

        self.registers = [0] * REGISTER_COUNT
        self.stack = []
        self.PC = 0
        self.instr_pc = 0
        self.tick = 0
        self.tick_limit = tick_limit
        self.trace = bool(trace)

        self.output = output if output is not None else io.BytesIO()
        if input_buffer is None:
            input_buffer = InputBuffer(io.BytesIO(b""))
        self.input_buffer = input_buffer
        logging.debug("Datapath: %d program words loaded", len(words))

    # memory access, bounds-checked
    def read_word(self, addr: int) -> int:
        """Read a memory word. Raises MemoryFault out of range."""
        if not 0 <= addr < MEM_CELLS:
            err = f"read out of memory: address {addr} (pc {self.instr_pc})"
            raise MemoryFault(err)
        return self.memory[addr]

    def write_word(self, addr: int, value: int) -> None:
        """Write a memory word. Raises MemoryFault out of range."""
        if not 0 <= addr < MEM_CELLS:
            err = f"write out of memory: address {addr} (pc {self.instr_pc})"
            raise MemoryFault(err)
        self.memory[addr] = int(value) & WORD_MASK

    # --- operand resolver ---
    def read_value(self, word: int) -> int:
        """Resolve an operand word to its value."""
        v = decode(word)
        if isinstance(v, Literal):
            return v.value
        if isinstance(v, RegisterRef):
            return self.registers[v.index]
        err = f"value used is invalid: {v.word} (pc {self.instr_pc})"
        raise InvalidOperand(err)

    def write_destination(self, word: int, value: int) -> None:
        """Store `value` into the destination named by an operand word.

        A register operand stores into the register; a literal operand is
        taken as a memory address.
        """
        v = decode(word)
        if isinstance(v, RegisterRef):
            self.registers[v.index] = int(value) & WORD_MASK
            return
        if isinstance(v, Literal):
            logging.debug("write through literal destination -> MEM[%d] = %d", v.value, value)
            self.write_word(v.value, value)
            return
        err = f"destination is invalid: {v.word} (pc {self.instr_pc})"
        raise InvalidOperand(err)

    # --- stack ---
    def push(self, value: int) -> None:
        """Push a word onto the stack."""
        self.stack.append(int(value) & WORD_MASK)

    def pop(self) -> int:
        """Pop a word from the stack. Raises StackUnderflow when empty."""
        if not self.stack:
            err = f"pop but stack is empty (pc {self.instr_pc})"
            raise StackUnderflow(err)
        return self.stack.pop()

    # --- I/O ---
    def emit(self, value: int) -> None:
        """Write the low 8 bits of `value` to the output as one byte."""
        self.output.write(bytes([value & 0xFF]))


class ControlUnit:
    """Control unit implementing the FETCH-DECODE-EXEC loop for the Datapath."""

    dp: Datapath

    def __init__(self, dp: Datapath) -> None:
        """Create a ControlUnit bound to `dp`."""
        self.dp = dp

    def _log_step(self, pc: int, instr: str) -> None:
        dp = self.dp
        regs = " ".join(f"{r:5d}" for r in dp.registers)
        logging.debug(
            "TICK: %6d PC: %5d REGS: [%s] SP: %3d\tINSTR: %s",
            dp.tick,
            pc,
            regs,
            len(dp.stack),
            instr,
        )

    def fetch(self) -> tuple[OpCode, list[int]]:
        """Fetch opcode and operand words at PC."""
        dp = self.dp
        word = dp.read_word(dp.PC)
        if not is_opcode(word):
            err = f"unknown opcode {word} at pc {dp.PC}"
            raise UnknownOpcode(err)
        opcode = OpCode(word)
        operands = [dp.read_word(dp.PC + 1 + i) for i in range(OPERAND_COUNT[opcode])]
        return opcode, operands

    def step(self) -> str | None:
        """Execute one instruction. Returns the stop state, or None to continue."""
        dp = self.dp
        pc = dp.PC
        dp.instr_pc = pc
        opcode, operands = self.fetch()
        if dp.trace:
            self._log_step(pc, mnemonic(opcode, operands))
        dp.tick += 1
        dp.PC = pc + 1 + len(operands)
        return self.exec(opcode, operands)

    def run(self) -> tuple[int, str]:
        """Execute the datapath until halt, end of input or tick limit.

        Returns (ticks, state) where state is "halt", "ret", "eof" or "limit".
        """
        dp = self.dp
        logging.debug("ControlUnit: start at pc %d", dp.PC)
        state: str | None = None
        try:
            while state is None:
                if dp.tick_limit is not None and dp.tick >= dp.tick_limit:
                    state = "limit"
                    break
                state = self.step()
        except VMError as e:
            logging.error("%s: %s (tick %d)", type(e).__name__, e, dp.tick)
            raise
        finally:
            dp.output.flush()
        logging.debug("ControlUnit: stopped (%s) at pc %d after %d ticks", state, dp.PC, dp.tick)
        return dp.tick, state

    def exec(self, opcode: OpCode, ops: list[int]) -> str | None:  # noqa: C901
        """Execute a single decoded instruction (hardwired control unit)."""
        dp = self.dp
        rv = dp.read_value

        if opcode == OpCode.HALT:
            return "halt"
        if opcode == OpCode.SET:
            dp.write_destination(ops[0], rv(ops[1]))
            return None
        if opcode == OpCode.PUSH:
            dp.push(rv(ops[0]))
            return None
        if opcode == OpCode.POP:
            dp.write_destination(ops[0], dp.pop())
            return None
        if opcode == OpCode.EQ:
            dp.write_destination(ops[0], 1 if rv(ops[1]) == rv(ops[2]) else 0)
            return None
        if opcode == OpCode.GT:
            dp.write_destination(ops[0], 1 if rv(ops[1]) > rv(ops[2]) else 0)
            return None
        if opcode == OpCode.JMP:
            dp.PC = rv(ops[0])
            return None
        if opcode == OpCode.JT:
            if rv(ops[0]) != 0:
                dp.PC = rv(ops[1])
            return None
        if opcode == OpCode.JF:
            if rv(ops[0]) == 0:
                dp.PC = rv(ops[1])
            return None
        if opcode == OpCode.ADD:
            dp.write_destination(ops[0], (rv(ops[1]) + rv(ops[2])) % VALUE_MODULUS)
            return None
        if opcode == OpCode.MULT:
            dp.write_destination(ops[0], (rv(ops[1]) * rv(ops[2])) % VALUE_MODULUS)
            return None
        if opcode == OpCode.MOD:
            divisor = rv(ops[2])
            if divisor == 0:
                err = f"mod by zero (pc {dp.instr_pc})"
                raise ArithmeticFault(err)
            dp.write_destination(ops[0], rv(ops[1]) % divisor)
            return None
        if opcode == OpCode.AND:
            dp.write_destination(ops[0], rv(ops[1]) & rv(ops[2]))
            return None
        if opcode == OpCode.OR:
            dp.write_destination(ops[0], rv(ops[1]) | rv(ops[2]))
            return None
        if opcode == OpCode.NOT:
            dp.write_destination(ops[0], ~rv(ops[1]) & (VALUE_MODULUS - 1))
            return None
        if opcode == OpCode.RMEM:
            dp.write_destination(ops[0], dp.read_word(rv(ops[1])))
            return None
        if opcode == OpCode.WMEM:
            dp.write_word(rv(ops[0]), rv(ops[1]))
            return None
        if opcode == OpCode.CALL:
            target = rv(ops[0])
            dp.push(dp.PC)
            dp.PC = target
            return None
        if opcode == OpCode.RET:
            if not dp.stack:
                return "ret"
            dp.PC = dp.stack.pop()
            return None
        if opcode == OpCode.OUT:
            dp.emit(rv(ops[0]))
            return None
        if opcode == OpCode.IN:
            ch = dp.input_buffer.next_character()
            if ch is None:
                dp.output.write(b"\n")
                return "eof"
            dp.write_destination(ops[0], ch)
            return None
        # NOOP
        return None

    def dump_state(self, f: TextIO) -> None:
        """Write registers, stack and non-zero memory rows to `f`."""
        dp = self.dp
        f.write("=== STATE DUMP ===\n")
        f.write(f"pc: {dp.PC}  ticks: {dp.tick}\n")
        for i, r in enumerate(dp.registers):
            f.write(f"r{i}: {r}\n")
        f.write(f"stack ({len(dp.stack)}): {' '.join(str(v) for v in dp.stack)}\n")
        f.write("\n=== MEMORY (non-zero rows) ===\n")
        row = 8
        for base in range(0, MEM_CELLS, row):
            cells = dp.memory[base : base + row]
            if any(cells):
                f.write(f"{base:05d}: {' '.join(f'{c:04X}' for c in cells)}\n")
        f.write("\n=== END DUMP ===\n")


# ---------- Public API ----------
def make_datapath(
    words: list[int],
    stdin: Any = None,
    stdout: IO[bytes] | None = None,
    config: dict[str, Any] | None = None,
) -> Datapath:
    """Build a Datapath for `words` wired to the given streams and config."""
    cfg = dict(config) if config is not None else {}
    prompt = cfg.get("prompt")
    if prompt is None:
        prompt = DEFAULT_PROMPT
    out = stdout if stdout is not None else io.BytesIO()
    src = stdin if stdin is not None else io.BytesIO(b"")
    return Datapath(
        words,
        output=out,
        input_buffer=InputBuffer(src, prompt_out=out, prompt=prompt),
        tick_limit=cfg.get("tick_limit"),
        trace=bool(cfg.get("trace", False)),
    )


def run_words(
    words: list[int],
    stdin: Any = None,
    stdout: IO[bytes] | None = None,
    config: dict[str, Any] | None = None,
) -> tuple[int, str]:
    """Run VM on given words and config and return (ticks, state)."""
    dp = make_datapath(words, stdin=stdin, stdout=stdout, config=config)
    return ControlUnit(dp).run()
