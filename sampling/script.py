# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

"""
Sampling script compiler.

A script is a text file of commands, one per line, `#` starting a comment:

    run 48 30                   # 48 cycles, one every 30 minutes
    referenceSample 4 4 2
    getSpectrum ref
    on 1 2                      # odd cycles only
        filteredSample 10 2
        getSpectrum filt ref
    repeat 3
        unfilteredSample 5 2 .1 0
        getSpectrum unf ref

Indentation opens a block after `on` or `repeat` and a smaller indentation
closes it. The compiled form is a flat list of instructions in which block
openers carry the index to jump to when their body is skipped or finished,
each `repeat` is followed at the end of its body by a RepeatEnd that jumps
back to it, and the list always ends with a zero-length Pause.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sampling.exceptions import ScriptSyntaxError

MAX_DEPTH = 100


class Instruction:
    """Base of all compiled script instructions; `line` is the 1-based source line."""

    line: int = 0


@dataclass
class On(Instruction):
    step: int
    period: int
    next_step: int = -1

    def __str__(self):
        return f"on {self.step} {self.period} (next {self.next_step})"


@dataclass
class Announce(Instruction):
    text: str

    def __str__(self):
        return f"announce {self.text}"


@dataclass
class Repeat(Instruction):
    limit: int
    count: int = 0
    next_step: int = -1

    def __str__(self):
        return f"repeat {self.limit} (next {self.next_step})"


@dataclass
class RepeatEnd(Instruction):
    first_step: int

    def __str__(self):
        return f"repeatEnd (first {self.first_step})"


@dataclass
class Pause(Instruction):
    seconds: float

    def __str__(self):
        return f"pause {self.seconds:g}"


@dataclass
class ReferenceSample(Instruction):
    volume: float
    ref_rate: float
    sample_rate: float

    def __str__(self):
        return f"referenceSample {self.volume:g} {self.ref_rate:g} {self.sample_rate:g}"


@dataclass
class UnfilteredSample(Instruction):
    volume: float
    rate: float
    reagent1_frac: float = 0.0
    reagent2_frac: float = 0.0

    def __str__(self):
        return (f"unfilteredSample {self.volume:g} {self.rate:g} "
                f"{self.reagent1_frac:g} {self.reagent2_frac:g}")


@dataclass
class FilteredSample(Instruction):
    volume: float
    rate: float
    reagent1_frac: float = 0.0
    reagent2_frac: float = 0.0

    def __str__(self):
        return (f"filteredSample {self.volume:g} {self.rate:g} "
                f"{self.reagent1_frac:g} {self.reagent2_frac:g}")


@dataclass
class FilteredSampleAdaptive(Instruction):
    volume: float
    reagent1_frac: float = 0.0
    reagent2_frac: float = 0.0

    def __str__(self):
        return f"filteredSampleAdaptive {self.volume:g} {self.reagent1_frac:g} {self.reagent2_frac:g}"


@dataclass
class GetSpectrum(Instruction):
    label: str
    prereq1: str = ""
    prereq2: str = ""

    def __str__(self):
        return " ".join(w for w in ("getSpectrum", self.label, self.prereq1, self.prereq2) if w)


@dataclass
class GetDark(Instruction):
    label: str

    def __str__(self):
        return f"getDark {self.label}"


@dataclass
class CheckLights(Instruction):
    def __str__(self):
        return "checkLights"


@dataclass
class Lights(Instruction):
    config: int

    def __str__(self):
        return f"lights {self.config:03b}"


@dataclass
class OptimizeIntegrationTime(Instruction):
    volume: float
    ref_rate: float
    sample_rate: float

    def __str__(self):
        return f"optimizeIntegrationTime {self.volume:g} {self.ref_rate:g} {self.sample_rate:g}"


@dataclass
class RecordDepth(Instruction):
    def __str__(self):
        return "recordDepth"


@dataclass
class RecordLocation(Instruction):
    def __str__(self):
        return "recordLocation"


@dataclass
class CompiledScript:
    instructions: List[Instruction] = field(default_factory=list)
    max_cycle_count: int = 0
    inter_cycle_period: int = 0
    text: str = ""

    def __len__(self):
        return len(self.instructions)

    def __getitem__(self, i):
        return self.instructions[i]

    def reset_counters(self) -> None:
        for instr in self.instructions:
            if isinstance(instr, Repeat):
                instr.count = 0

    def listing(self) -> str:
        return "\n".join(f"{i:3d} {instr}" for i, instr in enumerate(self.instructions))


# -------------------------
# Argument parsing
# -------------------------
class _Args:
    """Positional arguments of one command with typed, range-checked access."""

    def __init__(self, words: List[str], line: int, max_args: int):
        self.cmd = words[0]
        self.words = words[1:]
        self.line = line
        if len(self.words) > max_args:
            self.fail(f"too many arguments for {self.cmd}")

    def fail(self, message: str):
        raise ScriptSyntaxError(self.line, message)

    def has(self, i: int) -> bool:
        return i < len(self.words)

    def integer(self, i: int, name: str, default: Optional[int] = None) -> int:
        if not self.has(i):
            if default is None:
                self.fail(f"{self.cmd}: missing {name}")
            return default
        try:
            return int(self.words[i])
        except ValueError:
            self.fail(f"{self.cmd}: {name} must be an integer, got '{self.words[i]}'")

    def number(self, i: int, name: str, default: Optional[float] = None) -> float:
        if not self.has(i):
            if default is None:
                self.fail(f"{self.cmd}: missing {name}")
            return default
        try:
            return float(self.words[i])
        except ValueError:
            self.fail(f"{self.cmd}: {name} must be a number, got '{self.words[i]}'")

    def word(self, i: int, name: str, default: Optional[str] = None) -> str:
        if not self.has(i):
            if default is None:
                self.fail(f"{self.cmd}: missing {name}")
            return default
        return self.words[i]

    def positive(self, value: float, name: str) -> float:
        if value <= 0:
            self.fail(f"{self.cmd}: {name} must be positive")
        return value

    def fractions(self, f1: float, f2: float) -> Tuple[float, float]:
        if not (0 <= f1 <= 1 and 0 <= f2 <= 1 and f1 + f2 <= 1):
            self.fail(f"{self.cmd}: reagent fractions must be in [0,1] and sum to at most 1")
        return f1, f2


def parse_instruction(words: List[str], raw: str, line: int, ref_rate: float) -> Instruction:
    """Build one instruction from the words of a script line."""
    cmd = words[0]
    if cmd == "announce":
        return Announce(raw.split("announce", 1)[1].strip())

    if cmd == "on":
        a = _Args(words, line, 2)
        step, period = a.integer(0, "step"), a.integer(1, "period")
        if not (1 <= step <= period):
            a.fail("on: requires 1 <= step <= period")
        return On(step, period)
    if cmd == "repeat":
        a = _Args(words, line, 1)
        limit = a.integer(0, "count")
        if limit < 1:
            a.fail("repeat: count must be at least 1")
        return Repeat(limit)
    if cmd == "pause":
        a = _Args(words, line, 1)
        seconds = a.number(0, "seconds")
        if seconds < 0:
            a.fail("pause: seconds must be non-negative")
        return Pause(seconds)
    if cmd == "referenceSample":
        a = _Args(words, line, 3)
        return ReferenceSample(a.positive(a.number(0, "volume", 2.0), "volume"),
                               a.positive(a.number(1, "reference rate", ref_rate), "reference rate"),
                               a.positive(a.number(2, "sample rate", 2.0), "sample rate"))
    if cmd in ("unfilteredSample", "filteredSample"):
        a = _Args(words, line, 4)
        volume = a.positive(a.number(0, "volume", 10.0), "volume")
        rate = a.number(1, "rate", 2.0)
        if rate == 0:
            a.fail(f"{cmd}: rate must be non-zero")
        f1, f2 = a.fractions(a.number(2, "reagent1 fraction", 0.0), a.number(3, "reagent2 fraction", 0.0))
        kind = UnfilteredSample if cmd == "unfilteredSample" else FilteredSample
        return kind(volume, rate, f1, f2)
    if cmd == "filteredSampleAdaptive":
        a = _Args(words, line, 3)
        volume = a.positive(a.number(0, "volume", 10.0), "volume")
        f1, f2 = a.fractions(a.number(1, "reagent1 fraction", 0.0), a.number(2, "reagent2 fraction", 0.0))
        return FilteredSampleAdaptive(volume, f1, f2)
    if cmd == "getSpectrum":
        a = _Args(words, line, 3)
        return GetSpectrum(a.word(0, "label"), a.word(1, "prereq1", ""), a.word(2, "prereq2", ""))
    if cmd == "getDark":
        a = _Args(words, line, 1)
        return GetDark(a.word(0, "label"))
    if cmd == "checkLights":
        _Args(words, line, 0)
        return CheckLights()
    if cmd == "lights":
        a = _Args(words, line, 1)
        bits = a.word(0, "configuration")
        if len(bits) != 3 or any(c not in "01" for c in bits):
            a.fail("lights: configuration must be three 0/1 characters, e.g. 101")
        return Lights(int(bits, 2))
    if cmd == "optimizeIntegrationTime":
        a = _Args(words, line, 3)
        return OptimizeIntegrationTime(a.positive(a.number(0, "volume", 2.0), "volume"),
                                       a.positive(a.number(1, "reference rate", 4.0), "reference rate"),
                                       a.positive(a.number(2, "sample rate", 2.0), "sample rate"))
    if cmd == "recordDepth":
        _Args(words, line, 0)
        return RecordDepth()
    if cmd == "recordLocation":
        _Args(words, line, 0)
        return RecordLocation()
    raise ScriptSyntaxError(line, f"unknown command '{cmd}'")


# -------------------------
# Block structure
# -------------------------
def _close_block(instructions: List[Instruction], opener_index: int) -> None:
    opener = instructions[opener_index]
    if isinstance(opener, On):
        opener.next_step = len(instructions)
    else:
        end = RepeatEnd(opener_index)
        end.line = opener.line
        instructions.append(end)
        opener.next_step = len(instructions)


def _is_opener(instr: Optional[Instruction]) -> bool:
    return isinstance(instr, (On, Repeat))


def compile_script(text: str, ref_rate: float = 5.0) -> CompiledScript:
    """
    Compile script text. Raises ScriptSyntaxError with the 1-based line
    number of the first error. `ref_rate` is the default reference pump
    rate for `referenceSample`.
    """
    script = CompiledScript(text=text)
    instructions = script.instructions
    # (enclosing indent column, opener index)
    stack: List[Tuple[int, int]] = []
    indent = 0
    seen_run = False

    for line_number, raw in enumerate(text.splitlines(), start=1):
        stripped = raw.split("#", 1)[0]
        words = stripped.split()
        if not words:
            continue
        if words[0] == "run":
            if instructions or seen_run:
                raise ScriptSyntaxError(line_number, "run must be the first command")
            a = _Args(words, line_number, 2)
            script.max_cycle_count = a.integer(0, "cycle count")
            script.inter_cycle_period = a.integer(1, "period")
            if script.max_cycle_count < 0 or script.inter_cycle_period < 0:
                a.fail("run: cycle count and period must be non-negative")
            seen_run = True
            continue

        instr = parse_instruction(words, stripped, line_number, ref_rate)
        instr.line = line_number
        column = len(stripped) - len(stripped.lstrip())
        previous = instructions[-1] if instructions else None

        if column > indent:
            if not _is_opener(previous):
                raise ScriptSyntaxError(line_number, "unexpected indentation")
            if len(stack) >= MAX_DEPTH:
                raise ScriptSyntaxError(line_number, "blocks nested too deeply")
            stack.append((indent, len(instructions) - 1))
            indent = column
        elif column < indent:
            if _is_opener(previous):
                raise ScriptSyntaxError(line_number, f"empty block after '{previous}'")
            # one block per dedent, back to exactly the enclosing column
            indent, opener_index = stack.pop()
            if column != indent:
                raise ScriptSyntaxError(line_number, "indentation does not match the enclosing block")
            _close_block(instructions, opener_index)
        elif _is_opener(previous):
            raise ScriptSyntaxError(line_number, f"empty block after '{previous}'")

        instructions.append(instr)

    if instructions and _is_opener(instructions[-1]):
        raise ScriptSyntaxError(instructions[-1].line, f"empty block after '{instructions[-1]}'")
    while stack:
        _, opener_index = stack.pop()
        _close_block(instructions, opener_index)

    sentinel = Pause(0.0)
    sentinel.line = 0
    instructions.append(sentinel)
    return script


def read_script_file(path, ref_rate: float = 5.0) -> CompiledScript:
    """Read and compile a script file. OSError propagates if it cannot be opened."""
    with open(path, "r", encoding="utf-8") as fh:
        text = fh.read()
    return compile_script(text, ref_rate)
