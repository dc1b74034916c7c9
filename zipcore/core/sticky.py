from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out


class StickyFlag(wiring.Component):
    """粘滞错误标志

    - set 优先于一切写入
    - 写 1 且当前值为 1 时清除（写回读到的值即可清除），写 0 永不清除
    - clear 为硬复位
    """

    set: In(1)
    write: In(1)
    write_value: In(1)
    clear: In(1)
    value: Out(1)

    def __init__(self):
        super().__init__()

    def elaborate(self, platform):
        m = Module()

        flag = Signal(init=0)
        m.d.comb += self.value.eq(flag)

        with m.If(self.clear):
            m.d.sync += flag.eq(0)
        with m.Elif(self.set):
            m.d.sync += flag.eq(1)
        with m.Elif(self.write & self.write_value & flag):
            m.d.sync += flag.eq(0)

        return m
