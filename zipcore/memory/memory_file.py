from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In
from amaranth.lib.memory import Memory

from ..core.interfaces import BusSignature


class BusMemory(wiring.Component):
    """
    总线从设备：字存储器，零等待（同周期应答）

    地址为字节地址，低两位忽略；超出容量的地址返回 err。
    写入按 sel 字节使能，sel[3] 对应 data[24:32]（大端下偏移 0 的字节）。
    """

    bus: In(BusSignature())

    def __init__(self, depth=1024, init=()):
        init = list(init)
        if len(init) > depth:
            raise ValueError(f"Program of {len(init)} words does not fit in {depth} words")
        self.depth = depth
        self.init = init

        super().__init__()

    def elaborate(self, platform):
        m = Module()
        m.submodules.mem = mem = Memory(shape=unsigned(32), depth=self.depth, init=self.init)

        # 写端口按字节使能
        wr_port = mem.write_port(domain="sync", granularity=8)
        # 组合读：应答周期即给出数据
        rd_port = mem.read_port(domain="comb")

        addr_width = len(wr_port.addr)
        index = self.bus.addr[2 : 2 + addr_width]
        in_range = self.bus.addr[2 + addr_width :] == 0
        request = self.bus.cyc & self.bus.stb

        m.d.comb += [
            wr_port.addr.eq(index),
            wr_port.data.eq(self.bus.data_w),
            wr_port.en.eq(Mux(request & self.bus.we & in_range, self.bus.sel, 0)),
            rd_port.addr.eq(index),
            self.bus.data_r.eq(rd_port.data),
            self.bus.ack.eq(request & in_range),
            self.bus.err.eq(request & ~in_range),
        ]

        return m
