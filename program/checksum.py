from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from zipcore.core.registers import CCBit
from zipcore.isa import CC, MASK32, PC, WORD_BYTES, Cond, Opcode, ProgramBuilder

SUPERVISOR_BASE = 0x000
USER_BASE = 0x100
DATA_BASE = 0x200


@dataclass
class ChecksumArtifact:
    """链接好的存储器镜像和用于核对的期望值"""

    image: List[int]
    data: List[int]
    result_addr: int
    expected_sum: int
    expected_xor: int
    supervisor: ProgramBuilder
    user: ProgramBuilder


def build_supervisor_program() -> ProgramBuilder:
    """设置 uPC 后释放到用户模式，用户 trap 回来后把结果搬到监督寄存器。"""
    b = ProgramBuilder(SUPERVISOR_BASE)
    b.ldi(0, USER_BASE)
    b.mov(PC, 0, r_user=True)
    b.ldi(CC, 1 << CCBit.GIE)

    b.label("resume")
    b.mov(1, 2, b_user=True)  # R1 = uR2 (和)
    b.mov(2, 4, b_user=True)  # R2 = uR4 (异或)
    b.mov(3, 6, b_user=True)  # R3 = uR6 (回读的和)
    b.mov(4, CC, b_user=True)  # R4 = uCC
    b.brk()
    return b


def build_user_program(count: int) -> ProgramBuilder:
    """对 DATA_BASE 开始的 count 个字求和与异或，结果写在数据之后。"""
    if count <= 0:
        raise ValueError(f"Checksum needs at least one word, got {count}")

    b = ProgramBuilder(USER_BASE)
    b.ldi(3, DATA_BASE)
    b.ldi(1, count)
    b.ldi(2, 0)
    b.ldi(4, 0)

    b.label("loop")
    b.op(Opcode.LW, 5, b=3)
    b.op(Opcode.ADD, 3, imm=WORD_BYTES)
    b.op(Opcode.ADD, 2, b=5)
    b.op(Opcode.XOR, 4, b=5)
    b.op(Opcode.SUB, 1, imm=1)
    b.branch("loop", cond=Cond.NZ)

    # R3 现在指向数据末尾
    b.op(Opcode.SW, 2, b=3)
    b.op(Opcode.SW, 4, b=3, imm=WORD_BYTES)
    b.op(Opcode.LW, 6, b=3)

    b.label("trap")
    b.ldi(CC, 0)
    b.brk()
    return b


def link_image(segments: Sequence[tuple[int, Sequence[int]]]) -> List[int]:
    image: List[int] = []
    for base, words in sorted(segments, key=lambda seg: seg[0]):
        index = base // WORD_BYTES
        if index < len(image):
            raise ValueError(f"Segment at {base:#x} overlaps the previous one")
        image.extend([0] * (index - len(image)))
        image.extend(word & MASK32 for word in words)
    return image


def build_checksum_program(data: Sequence[int]) -> ChecksumArtifact:
    data = [word & MASK32 for word in data]
    supervisor = build_supervisor_program()
    user = build_user_program(len(data))
    if user.here > DATA_BASE:
        raise ValueError("User program overruns the data segment")

    expected_sum = sum(data) & MASK32
    expected_xor = 0
    for word in data:
        expected_xor ^= word

    # 结果两字紧跟数据
    image = link_image(
        [
            (SUPERVISOR_BASE, supervisor.program()),
            (USER_BASE, user.program()),
            (DATA_BASE, data + [0, 0]),
        ]
    )
    return ChecksumArtifact(
        image=image,
        data=data,
        result_addr=DATA_BASE + WORD_BYTES * len(data),
        expected_sum=expected_sum,
        expected_xor=expected_xor,
        supervisor=supervisor,
        user=user,
    )


__all__ = ["ChecksumArtifact", "build_checksum_program", "USER_BASE", "DATA_BASE"]
