from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In

from ..core.interfaces import ExecUnitSignature
from ..isa import AluOp


class ALU(wiring.Component):
    """
    参考 ALU

    普通运算一个周期后给出结果，乘法两个周期（期间 busy 为高）。
    标志位 {Z, C, N, V}：加减法给出进位/借位与溢出，移位给出最后移出的位。
    """

    core: In(ExecUnitSignature())

    def __init__(self, multiply=True):
        self.multiply = multiply
        super().__init__()

    def elaborate(self, platform):
        m = Module()

        a = self.core.a
        b = self.core.b
        op = self.core.op

        shift = b[:5]
        big_shift = b[5:].any()

        result = Signal(32)
        carry = Signal()
        overflow = Signal()

        with m.Switch(op):
            with m.Case(AluOp.SUB):
                diff = a - b
                m.d.comb += [
                    result.eq(diff),
                    carry.eq(diff[32]),  # 借位
                    overflow.eq((a[31] != b[31]) & (diff[31] != a[31])),
                ]
            with m.Case(AluOp.AND):
                m.d.comb += result.eq(a & b)
            with m.Case(AluOp.ADD):
                total = a + b
                m.d.comb += [
                    result.eq(total),
                    carry.eq(total[32]),
                    overflow.eq((a[31] == b[31]) & (total[31] != a[31])),
                ]
            with m.Case(AluOp.OR):
                m.d.comb += result.eq(a | b)
            with m.Case(AluOp.XOR):
                m.d.comb += result.eq(a ^ b)
            with m.Case(AluOp.LSR):
                m.d.comb += [
                    result.eq(Mux(big_shift, 0, a >> shift)),
                    carry.eq(~big_shift & (Cat(C(0, 1), a) >> shift)[0]),
                ]
            with m.Case(AluOp.LSL):
                m.d.comb += [
                    result.eq(Mux(big_shift, 0, a << shift)),
                    carry.eq(~big_shift & (Cat(a, C(0, 1)) << shift)[32]),
                ]
            with m.Case(AluOp.ASR):
                m.d.comb += [
                    result.eq(Mux(big_shift, a[31].replicate(32), a.as_signed() >> shift)),
                    carry.eq(Mux(big_shift, a[31], (Cat(C(0, 1), a).as_signed() >> shift)[0])),
                ]
            if self.multiply:
                with m.Case(AluOp.MPY):
                    m.d.comb += result.eq((a * b)[:32])
                with m.Case(AluOp.MPYUHI):
                    m.d.comb += result.eq((a * b)[32:64])
                with m.Case(AluOp.MPYSHI):
                    m.d.comb += result.eq((a.as_signed() * b.as_signed())[32:64])
            with m.Case(AluOp.LDILO):
                m.d.comb += result.eq(Cat(b[:16], a[16:32]))
            with m.Case(AluOp.BREV):
                m.d.comb += result.eq(Cat(*[b[31 - i] for i in range(32)]))
            with m.Case(AluOp.POPC):
                m.d.comb += result.eq(sum(b[i] for i in range(32)))
            with m.Case(AluOp.ROL):
                m.d.comb += result.eq((Cat(a, a) << shift)[32:64])
            with m.Case(AluOp.MOV):
                m.d.comb += result.eq(b)

        is_mpy = (op == AluOp.MPY) | (op == AluOp.MPYUHI) | (op == AluOp.MPYSHI)

        valid = Signal(init=0)
        mpy_pending = Signal(init=0)
        result_r = Signal(32)
        flags_r = Signal(4)

        with m.If(self.core.start):
            m.d.sync += [
                result_r.eq(result),
                flags_r.eq(Cat(result == 0, carry, result[31], overflow)),
            ]
            if self.multiply:
                m.d.sync += [
                    mpy_pending.eq(is_mpy),
                    valid.eq(~is_mpy),
                ]
            else:
                m.d.sync += valid.eq(1)
        with m.Elif(mpy_pending):
            # 乘法第二周期
            m.d.sync += [mpy_pending.eq(0), valid.eq(1)]
        with m.Else():
            m.d.sync += valid.eq(0)

        m.d.comb += [
            self.core.busy.eq(mpy_pending),
            self.core.valid.eq(valid),
            self.core.error.eq(0),
            self.core.result.eq(result_r),
            self.core.flags.eq(flags_r),
        ]

        return m
