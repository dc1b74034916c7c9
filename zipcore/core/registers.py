from dataclasses import dataclass
from enum import Enum, IntEnum

from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out


# 寄存器编号 {user, num[3:0]}：15 为 PC，14 为 CC
PC_NUM = 15
CC_NUM = 14
USER_BIT = 0x10


class CCBit(IntEnum):
    """CC 寄存器位定义（每个模式一份）"""

    Z = 0
    C = 1
    N = 2
    V = 3
    SLEEP = 4
    GIE = 5
    STEP = 6
    BREAK = 7  # 监督模式为断点使能，用户模式为用户断点
    ILL = 8
    TRAP = 9
    BUSERR = 10
    DIVERR = 11
    FPUERR = 12
    PHASE = 13


class RegKind(Enum):
    GENERAL = "general"
    PC = "pc"
    CC = "cc"


@dataclass(frozen=True)
class RegisterRef:
    """Python 侧的寄存器引用，用于汇编器、调试工具和测试。"""

    kind: RegKind
    num: int
    user: bool = False

    @classmethod
    def general(cls, num, user=False):
        if not 0 <= num < CC_NUM:
            raise ValueError(f"general register number out of range: {num}")
        return cls(RegKind.GENERAL, num, user)

    @classmethod
    def pc(cls, user=False):
        return cls(RegKind.PC, PC_NUM, user)

    @classmethod
    def cc(cls, user=False):
        return cls(RegKind.CC, CC_NUM, user)

    @classmethod
    def from_id(cls, reg_id):
        if not 0 <= reg_id < 32:
            raise ValueError(f"register id out of range: {reg_id}")
        num = reg_id & 0xF
        user = bool(reg_id & USER_BIT)
        if num == PC_NUM:
            return cls.pc(user)
        if num == CC_NUM:
            return cls.cc(user)
        return cls.general(num, user)

    @property
    def id(self):
        return (USER_BIT if self.user else 0) | self.num

    def __str__(self):
        prefix = "u" if self.user else "s"
        if self.kind is RegKind.PC:
            return f"{prefix}PC"
        if self.kind is RegKind.CC:
            return f"{prefix}CC"
        return f"{prefix}R{self.num}"


# ========== 硬件辅助函数 ==========


def reg_is_pc(reg_id):
    return reg_id[:4] == PC_NUM


def reg_is_cc(reg_id):
    return reg_id[:4] == CC_NUM


def reg_is_special(reg_id):
    # 14、15 的高三位均为 0b111
    return reg_id[1:4] == 0b111


def reg_mode(reg_id):
    return reg_id[4]


def build_cc(flags, *, sleep, gie, step, brk, ill, trap, buserr, diverr, fpuerr, phase):
    """按 CCBit 布局拼出 32 位 CC 值。"""
    return Cat(
        flags[:4], sleep, gie, step, brk, ill, trap, buserr, diverr, fpuerr, phase, C(0, 18)
    )


class RegFile(wiring.Component):
    """通用寄存器文件（双读 + 调试读，单写）

    PC/CC 槽位不在此存储：写入这两个编号会被丢弃，读取值由核心合成。
    """

    # 操作数读端口
    rd_addr_a: In(5)
    rd_data_a: Out(32)
    rd_addr_b: In(5)
    rd_data_b: Out(32)

    # 调试读端口
    dbg_addr: In(5)
    dbg_data: Out(32)

    # 写端口
    wr_addr: In(5)
    wr_data: In(32)
    wr_en: In(1)

    def __init__(self, user_mode=True):
        self.user_mode = user_mode
        self.depth = 32 if user_mode else 16
        super().__init__()

    def _index(self, addr):
        # 无用户模式时忽略模式位
        return addr if self.user_mode else addr[:4]

    def elaborate(self, platform):
        m = Module()
        regs = Array(Signal(32, name=f"r{i}", init=0) for i in range(self.depth))

        write_ok = self.wr_en & ~reg_is_special(self.wr_addr)
        wr_index = self._index(self.wr_addr)

        # 写优先：同周期读写同一寄存器时返回写入值
        for addr, data in (
            (self.rd_addr_a, self.rd_data_a),
            (self.rd_addr_b, self.rd_data_b),
            (self.dbg_addr, self.dbg_data),
        ):
            rd_index = self._index(addr)
            with m.If(write_ok & (wr_index == rd_index)):
                m.d.comb += data.eq(self.wr_data)
            with m.Else():
                m.d.comb += data.eq(regs[rd_index])

        with m.If(write_ok):
            m.d.sync += regs[wr_index].eq(self.wr_data)

        return m
