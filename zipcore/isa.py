from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Tuple

WORD_BYTES = 4
MASK32 = (1 << 32) - 1

# 寄存器编号
CC = 14
PC = 15
SP = 13


# ========== 操作码枚举 ==========
class Opcode(IntEnum):
    """完整指令字的 5 位操作码"""

    SUB = 0x00
    AND = 0x01
    ADD = 0x02
    OR = 0x03
    XOR = 0x04
    LSR = 0x05
    LSL = 0x06
    ASR = 0x07
    MPY = 0x08
    LDILO = 0x09
    MPYUHI = 0x0A
    MPYSHI = 0x0B
    BREV = 0x0C
    POPC = 0x0D
    ROL = 0x0E
    MOV = 0x0F
    CMP = 0x10
    TST = 0x11
    LW = 0x12
    SW = 0x13
    LH = 0x14
    SH = 0x15
    LB = 0x16
    SB = 0x17
    LDI = 0x18  # 0x18/0x19，操作码最低位属于 23 位立即数
    LDI_HI = 0x19
    FPADD = 0x1A
    FPMUL = 0x1B
    SPECIAL = 0x1C  # R 字段区分：NOOP/BREAK/LOCK
    SIM = 0x1D  # 保留，按非法指令处理
    DIVU = 0x1E
    DIVS = 0x1F


class Special(IntEnum):
    """SPECIAL 操作码下 R 字段的含义"""

    NOOP = 0
    BREAK = 1
    LOCK = 2


class Cond(IntEnum):
    """3 位条件码"""

    ALWAYS = 0
    Z = 1
    LT = 2  # N
    C = 3
    V = 4
    NZ = 5
    GE = 6  # ~N
    NC = 7


class HalfOpcode(IntEnum):
    """压缩半指令的 3 位操作码"""

    SUB = 0
    AND = 1
    ADD = 2
    CMP = 3
    LW = 4
    SW = 5
    LDI = 6
    MOV = 7


class AluOp(IntEnum):
    """ALU 单元的 4 位操作"""

    SUB = 0
    AND = 1
    ADD = 2
    OR = 3
    XOR = 4
    LSR = 5
    LSL = 6
    ASR = 7
    MPY = 8
    LDILO = 9
    MPYUHI = 10
    MPYSHI = 11
    BREV = 12
    POPC = 13
    ROL = 14
    MOV = 15


class MemOp(IntEnum):
    """访存单元的 3 位操作 {we, size}"""

    LW = 0b000
    LH = 0b001
    LB = 0b010
    SW = 0b100
    SH = 0b101
    SB = 0b110


def _check_range(value: int, bits: int, what: str) -> int:
    low = -(1 << (bits - 1))
    high = (1 << (bits - 1)) - 1
    if not low <= value <= high:
        raise ValueError(f"{what} {value} does not fit in {bits} signed bits")
    return value & ((1 << bits) - 1)


def _check_reg(reg: int) -> int:
    if not 0 <= reg < 16:
        raise ValueError(f"Register number out of range: {reg}")
    return reg


# ========== 编码函数 ==========


def encode(
    op: int, r: int = 0, *, b: Optional[int] = None, imm: int = 0, cond: int = Cond.ALWAYS
) -> int:
    """编码完整指令字：[30:27] R, [26:22] op, [21:19] cond, [18] REG, ..."""
    if op in (Opcode.LDI, Opcode.LDI_HI):
        raise ValueError("Use ldi() to encode load-immediate instructions")
    word = (_check_reg(r) << 27) | ((op & 0x1F) << 22) | ((cond & 0x7) << 19)
    if b is None:
        word |= _check_range(imm, 18, "Immediate")
    else:
        word |= (1 << 18) | (_check_reg(b) << 14) | _check_range(imm, 14, "Immediate")
    return word


def encode_mov(
    r: int,
    b: int,
    imm: int = 0,
    *,
    r_user: bool = False,
    b_user: bool = False,
    cond: int = Cond.ALWAYS,
) -> int:
    """MOV 允许监督模式访问用户寄存器：bit13 = 目的为用户，bit12 = 源为用户。"""
    return (
        (_check_reg(r) << 27)
        | (Opcode.MOV << 22)
        | ((cond & 0x7) << 19)
        | (1 << 18)
        | (_check_reg(b) << 14)
        | (int(r_user) << 13)
        | (int(b_user) << 12)
        | _check_range(imm, 12, "MOV offset")
    )


def ldi(r: int, imm: int) -> int:
    return (_check_reg(r) << 27) | (Opcode.LDI << 22) | _check_range(imm, 23, "LDI immediate")


def special(kind: int) -> int:
    return (int(kind) << 27) | (Opcode.SPECIAL << 22)


def noop() -> int:
    return special(Special.NOOP)


def brk() -> int:
    return special(Special.BREAK)


def lock() -> int:
    return special(Special.LOCK)


def encode_half(op: int, r: int, *, b: Optional[int] = None, imm: int = 0) -> int:
    """编码 15 位压缩半指令：[14:11] R, [10:8] op, [7] REG, ..."""
    half = (_check_reg(r) << 11) | ((op & 0x7) << 8)
    if op == HalfOpcode.LDI:
        if b is not None:
            raise ValueError("Compact LDI takes no register operand")
        return half | _check_range(imm, 8, "Compact LDI immediate")
    if b is None:
        return half | _check_range(imm, 7, "Compact immediate")
    return half | (1 << 7) | (_check_reg(b) << 3) | _check_range(imm, 3, "Compact offset")


def encode_cis(first: int, second: int) -> int:
    """两条半指令组成压缩字：bit31 置位，前半在 [30:16]，后半在 [14:0]。"""
    return (1 << 31) | ((first & 0x7FFF) << 16) | (second & 0x7FFF)


def sign_extend(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    if value & (1 << (bits - 1)):
        value -= 1 << bits
    return value


def to_signed_32(value: int) -> int:
    return sign_extend(value, 32)


# ========== 汇编器 ==========


@dataclass
class ProgramArtifact:
    words: List[int]
    base: int = 0
    labels: Dict[str, int] = field(default_factory=dict)

    def address_of(self, label: str) -> int:
        if label not in self.labels:
            raise ValueError(f"Undefined label '{label}'")
        return self.labels[label]


class ProgramBuilder:
    """带标签回填的小型汇编器，地址为字节地址。"""

    def __init__(self, base: int = 0):
        if base % WORD_BYTES:
            raise ValueError(f"Program base must be word aligned: {base:#x}")
        self.base = base
        self.instructions: List[int] = []
        self.labels: Dict[str, int] = {}
        self.patches: List[Tuple[str, int, int, str]] = []
        self._finalized = False

    def _assert_mutable(self) -> None:
        if self._finalized:
            raise RuntimeError("Program already finalized")

    @property
    def here(self) -> int:
        return self.base + WORD_BYTES * len(self.instructions)

    def label(self, name: str) -> None:
        self._assert_mutable()
        if name in self.labels:
            raise ValueError(f"Label '{name}' already defined")
        self.labels[name] = self.here

    def emit(self, word: int) -> None:
        self._assert_mutable()
        self.instructions.append(word & MASK32)

    def op(self, op: int, r: int = 0, *, b: Optional[int] = None, imm: int = 0, cond=Cond.ALWAYS):
        self.emit(encode(op, r, b=b, imm=imm, cond=cond))

    def ldi(self, r: int, imm: int) -> None:
        self.emit(ldi(r, imm))

    def load_const(self, r: int, value: int) -> None:
        """加载任意 32 位常数（一条或三条指令）。"""
        value &= MASK32
        signed = to_signed_32(value)
        if -(1 << 22) <= signed < (1 << 22):
            self.ldi(r, signed)
            return
        self.ldi(r, value >> 16)
        self.op(Opcode.LSL, r, imm=16)
        self.op(Opcode.LDILO, r, imm=value & 0xFFFF)

    def mov(self, r: int, b: int, imm: int = 0, **kwargs) -> None:
        self.emit(encode_mov(r, b, imm, **kwargs))

    def noop(self) -> None:
        self.emit(noop())

    def brk(self) -> None:
        self.emit(brk())

    def lock(self) -> None:
        self.emit(lock())

    def cis(self, first: int, second: int) -> None:
        self.emit(encode_cis(first, second))

    def branch(self, label: str, cond: int = Cond.ALWAYS) -> None:
        """PC 相对跳转：ADD.cond #offset, PC，偏移相对下一字地址。"""
        self._assert_mutable()
        self.patches.append(("branch", len(self.instructions), int(cond), label))
        self.instructions.append(noop())

    def jump(self, label: str) -> None:
        """绝对跳转：LDI target, PC。"""
        self._assert_mutable()
        self.patches.append(("jump", len(self.instructions), Cond.ALWAYS, label))
        self.instructions.append(noop())

    def finalize(self) -> None:
        if self._finalized:
            return
        for kind, idx, cond, label in self.patches:
            if label not in self.labels:
                raise ValueError(f"Undefined label '{label}'")
            target = self.labels[label]
            if kind == "branch":
                offset = target - (self.base + WORD_BYTES * (idx + 1))
                self.instructions[idx] = encode(Opcode.ADD, PC, imm=offset, cond=cond)
            else:
                self.instructions[idx] = ldi(PC, target)
        self._finalized = True

    def program(self) -> List[int]:
        self.finalize()
        return list(self.instructions)

    def artifact(self) -> ProgramArtifact:
        return ProgramArtifact(self.program(), self.base, dict(self.labels))

    def address_of(self, label: str) -> int:
        if label not in self.labels:
            raise ValueError(f"Undefined label '{label}'")
        return self.labels[label]
