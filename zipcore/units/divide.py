from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In

from ..core.interfaces import ExecUnitSignature


class Divider(wiring.Component):
    """
    参考除法器：固定延迟，op=0 无符号，op=1 有符号（向零截断）。
    除数为 0 时结果为 0，并在结果周期给出 error。
    """

    core: In(ExecUnitSignature())

    def __init__(self, latency=8):
        if latency < 1:
            raise ValueError(f"Divider latency must be at least one cycle: {latency}")
        self.latency = latency
        super().__init__()

    def elaborate(self, platform):
        m = Module()

        a = self.core.a
        b = self.core.b

        count = Signal(range(self.latency + 1), init=0)
        numerator = Signal(32)
        denominator = Signal(32)
        negate = Signal()
        by_zero = Signal()

        with m.If(self.core.start):
            sign_a = a[31] & self.core.op[0]
            sign_b = b[31] & self.core.op[0]
            m.d.sync += [
                count.eq(self.latency),
                numerator.eq(Mux(sign_a, -a, a)),
                denominator.eq(Mux(sign_b, -b, b)),
                negate.eq(sign_a ^ sign_b),
                by_zero.eq(b == 0),
            ]
        with m.Elif(count != 0):
            m.d.sync += count.eq(count - 1)

        quotient = Signal(32)
        result = Signal(32)
        m.d.comb += [
            quotient.eq(numerator // denominator),
            result.eq(Mux(negate, -quotient, quotient)),
        ]

        valid = count == 1
        m.d.comb += [
            self.core.busy.eq(count > 1),
            self.core.valid.eq(valid),
            self.core.error.eq(valid & by_zero),
            self.core.result.eq(Mux(by_zero, 0, result)),
            self.core.flags.eq(Cat(result == 0, C(0, 1), result[31], C(0, 1))),
        ]

        return m
