from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out


class StageControl(wiring.Component):
    """流水级 valid/ce/stall 控制

    stall = (上游有效 & 本级冒险) | (本级有效 & 下游暂停)
    ce    = 上游有效 & ~stall
    更新优先级：clear > ce > 下游接收(且无 hold) > 保持
    """

    upstream_valid: In(1)
    hazard: In(1)
    downstream_stall: In(1)
    downstream_ce: In(1)
    clear: In(1)
    hold: In(1)  # 本级仍有剩余工作（压缩指令后半）
    capture: In(1, init=1)  # 为 0 时 ce 只转移不占用本级

    valid: Out(1)
    ce: Out(1)
    stall: Out(1)

    def __init__(self):
        super().__init__()

    def elaborate(self, platform):
        m = Module()

        valid = Signal(init=0)
        m.d.comb += [
            self.valid.eq(valid),
            self.stall.eq((self.upstream_valid & self.hazard) | (valid & self.downstream_stall)),
            self.ce.eq(self.upstream_valid & ~self.stall),
        ]

        with m.If(self.clear):
            m.d.sync += valid.eq(0)
        with m.Elif(self.ce & self.capture):
            m.d.sync += valid.eq(1)
        with m.Elif(self.downstream_ce & ~self.hold):
            m.d.sync += valid.eq(0)

        return m
