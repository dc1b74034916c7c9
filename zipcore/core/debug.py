from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out

from .interfaces import DebugSignature


class DebugPort(wiring.Component):
    """
    调试/暂停接口

    - halted：halt 请求有效且执行侧排空后的下一周期拉高
    - step：暂停状态下放行，直到恰好一条指令发出
    - 写寄存器只在 halted 已经有效时生效，经写回仲裁器以最高优先级提交
    """

    bus: Out(DebugSignature())

    drained: In(1)  # 执行侧空闲、不在压缩指令中间、无 CC 保持
    issue: In(1)  # 本周期有指令发出
    read_value: In(32)  # 核心合成的寄存器读值
    breaking: In(1)
    bus_err: In(1)
    gie: In(1)
    sleep: In(1)
    fault_address: In(32)
    reset: In(1)

    halt_request: Out(1)  # 扣除单步放行后的有效暂停请求
    write_en: Out(1)

    def __init__(self):
        super().__init__()

    def elaborate(self, platform):
        m = Module()

        halted = Signal(init=0)
        stepping = Signal(init=0)

        with m.If(self.reset | self.issue):
            m.d.sync += stepping.eq(0)
        with m.Elif(self.bus.step & halted):
            m.d.sync += stepping.eq(1)

        m.d.comb += self.halt_request.eq(self.bus.halt & ~stepping & ~(self.bus.step & halted))

        with m.If(self.reset):
            m.d.sync += halted.eq(0)
        with m.Else():
            m.d.sync += halted.eq(self.halt_request & self.drained)

        m.d.comb += [
            self.bus.halted.eq(halted),
            self.bus.stalled.eq(~self.drained | self.halt_request),
            self.write_en.eq(self.bus.we & halted),
            self.bus.value.eq(self.read_value),
            self.bus.status.eq(Cat(self.sleep, self.gie, self.bus_err, self.breaking)),
            self.bus.fault_address.eq(self.fault_address),
        ]

        return m
