from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out, Signature

from ..isa import Cond
from .registers import reg_is_cc, reg_is_pc, reg_is_special


class HazardSourceBus(Signature):
    """冒险检测共享源：广播各在途指令的写回意图。"""

    def __init__(self):
        super().__init__(
            {
                # 操作数读取级
                "op_valid": Out(1),
                "op_wR": Out(1),
                "op_R": Out(5),
                "op_wF": Out(1),
                # 执行级（ALU/除法/FPU）
                "ex_valid": Out(1),  # 含结果周期
                "ex_pending": Out(1),  # 已发出但结果尚未返回
                "ex_wR": Out(1),
                "ex_R": Out(5),
                "ex_wF": Out(1),
                # 访存
                "mem_rdbusy": Out(1),
                "mem_special": Out(1),  # 在途的读写入 PC/CC
                # CC 写入后的保持周期
                "cc_write_hold": Out(1),
            }
        )


class HazardDecodeBus(Signature):
    """冒险检测输入：译码级指令的操作数需求。"""

    def __init__(self):
        super().__init__(
            {
                "rA": Out(1),
                "A": Out(5),
                "rB": Out(1),
                "B": Out(5),
                "zero_imm": Out(1),
                "cond": Out(3),
                "pipe": Out(1),
            }
        )


class HazardUnit(wiring.Component):
    """
    冒险检测单元（组合逻辑）

    判断译码级指令能否进入操作数读取级：
    - A/B 读 CC 或 PC，而标志/特殊寄存器写入者在途
    - B 带非零立即数（读出后立即相加，无法再转发），而在途指令写 B，
      或有未完成的读（除非译码器标记为可流水的访存对）
    - 条件指令，而标志写入者在途
    """

    dcd: In(HazardDecodeBus())
    source: In(HazardSourceBus())

    stall_a: Out(1)
    stall_b: Out(1)
    stall_f: Out(1)
    stall: Out(1)
    cc_invalid: Out(1)  # 条件码当前不可用

    def __init__(self):
        super().__init__()

    def elaborate(self, platform):
        m = Module()

        src = self.source
        dcd = self.dcd

        op_special = src.op_wR & reg_is_special(src.op_R)
        ex_special = src.ex_wR & reg_is_special(src.ex_R)

        # 标志写入者（含写 CC/PC 的指令）在途
        flags_inflight = (
            (src.op_valid & (src.op_wF | op_special))
            | (src.ex_valid & (src.ex_wF | ex_special))
            | src.mem_special
        )
        m.d.comb += self.cc_invalid.eq(flags_inflight | src.cc_write_hold)

        def special_read(reg):
            return (reg_is_cc(reg) | reg_is_pc(reg)) & self.cc_invalid

        # 立即数相加后的 B 无法在操作数级再转发
        b_conflict = (
            (src.op_valid & src.op_wR & (src.op_R == dcd.B))
            | (src.ex_pending & src.ex_wR & (src.ex_R == dcd.B))
            | (src.mem_rdbusy & ~dcd.pipe)
        )

        m.d.comb += [
            self.stall_a.eq(dcd.rA & special_read(dcd.A)),
            self.stall_b.eq(dcd.rB & (special_read(dcd.B) | (~dcd.zero_imm & b_conflict))),
            self.stall_f.eq((dcd.cond != Cond.ALWAYS) & self.cc_invalid),
        ]
        m.d.comb += self.stall.eq(self.stall_a | self.stall_b | self.stall_f)

        return m


class ForwardingUnit(wiring.Component):
    """
    转发单元

    写回仲裁器本周期正在写入该操作数的寄存器时选择写回值，
    否则使用已捕获的值。PC/CC 不参与转发（由冒险检测保证）。
    """

    enable: In(1)  # 该操作数需要读寄存器
    src_reg: In(5)
    fallback: In(32)
    wr_en: In(1)
    wr_reg: In(5)
    wr_value: In(32)
    value: Out(32)

    def __init__(self):
        super().__init__()

    def elaborate(self, platform):
        m = Module()

        hit = (
            self.enable
            & self.wr_en
            & ~reg_is_special(self.src_reg)
            & (self.wr_reg == self.src_reg)
        )

        with m.If(hit):
            m.d.comb += self.value.eq(self.wr_value)
        with m.Else():
            m.d.comb += self.value.eq(self.fallback)

        return m
