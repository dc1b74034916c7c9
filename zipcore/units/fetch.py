from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out

from ..core.interfaces import BusSignature, FetchSignature


class FetchUnit(wiring.Component):
    """
    参考取指单元：单字缓冲

    cyc 在取指期间保持为高，只有缓冲空出（或本周期被核心取走）时才发出 stb，
    零等待总线下每周期可取一条。重定向时丢弃缓冲与本周期返回的数据。
    取指总线错误作为 illegal 交给核心，并停止取指直到下一次重定向。
    """

    core: In(FetchSignature())
    bus: Out(BusSignature())

    def __init__(self, reset_address=0):
        self.reset_address = reset_address
        super().__init__()

    def elaborate(self, platform):
        m = Module()

        fetching = Signal(init=1)
        pc_next = Signal(32, init=self.reset_address)
        valid = Signal(init=0)
        insn = Signal(32)
        pc = Signal(32)
        illegal = Signal()

        slot_free = ~valid | self.core.ready

        m.d.comb += [
            self.bus.cyc.eq(fetching),
            self.bus.stb.eq(fetching & slot_free),
            self.bus.we.eq(0),
            self.bus.addr.eq(Cat(C(0, 2), pc_next[2:])),
            self.bus.sel.eq(0b1111),
            self.bus.data_w.eq(0),
            self.core.valid.eq(valid),
            self.core.insn.eq(insn),
            self.core.pc.eq(pc),
            self.core.illegal.eq(illegal),
        ]

        with m.If(self.core.new_pc | self.core.clear_cache):
            m.d.sync += [
                valid.eq(0),
                fetching.eq(1),
                pc_next.eq(self.core.address),
            ]
        with m.Elif(self.bus.stb & (self.bus.ack | self.bus.err)):
            m.d.sync += [
                valid.eq(1),
                insn.eq(self.bus.data_r),
                pc.eq(pc_next),
                illegal.eq(self.bus.err),
                pc_next.eq(pc_next + 4),
            ]
            with m.If(self.bus.err):
                m.d.sync += fetching.eq(0)
        with m.Elif(self.core.ready):
            m.d.sync += valid.eq(0)

        return m
