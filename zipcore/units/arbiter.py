from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out

from ..core.interfaces import BusSignature


class BusArbiter(wiring.Component):
    """
    取指/数据两主一从仲裁，数据端优先。

    总线锁有效时只授权数据端，取指请求一直等待。
    从设备为零等待（同周期应答），因此不需要跨周期保持所有权。
    """

    fetch: In(BusSignature())
    data: In(BusSignature())
    bus: Out(BusSignature())
    lock: In(1)

    fetch_grant: Out(1)
    data_grant: Out(1)

    def __init__(self):
        super().__init__()

    def elaborate(self, platform):
        m = Module()

        sel_data = self.lock | self.data.cyc
        owner = sel_data
        masters = [self.fetch, self.data]

        for name in ("cyc", "stb", "we", "addr", "data_w", "sel"):
            m.d.comb += getattr(self.bus, name).eq(
                Mux(owner, getattr(self.data, name), getattr(self.fetch, name))
            )

        for index, master in enumerate(masters):
            granted = owner == index
            m.d.comb += [
                master.ack.eq(granted & self.bus.ack),
                master.err.eq(granted & self.bus.err),
                master.data_r.eq(self.bus.data_r),
            ]

        m.d.comb += [
            self.fetch_grant.eq(~sel_data & self.fetch.cyc & self.fetch.stb),
            self.data_grant.eq(sel_data & self.data.cyc & self.data.stb),
        ]

        return m
