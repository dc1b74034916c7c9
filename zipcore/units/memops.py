from amaranth import *
from amaranth.lib import data, wiring
from amaranth.lib.wiring import In, Out

from ..core.interfaces import BusSignature, MemUnitSignature


# op[1:0] 访问宽度
SIZE_WORD = 0
SIZE_HALF = 1
SIZE_BYTE = 2


# 一次总线请求
RequestLayout = data.StructLayout(
    {
        "we": 1,
        "size": 2,
        "addr": 32,
        "data": 32,
        "sel": 4,
        "reg": 5,
    }
)


class MemoryUnit(wiring.Component):
    """
    参考访存单元，大端字节序

    启动后下一周期起 busy；总线应答后的下一周期给出 valid（读）或 error。
    字/半字地址未对齐直接报总线错误。读出的半字和字节零扩展。

    pipelined=True 时带一级请求队列：前一个请求仍在总线上时可以再接收一个，
    队列满时 pipe_stalled 为高。请求按发出顺序完成。
    """

    core: In(MemUnitSignature())
    bus: Out(BusSignature())

    def __init__(self, pipelined=False):
        self.pipelined = pipelined
        super().__init__()

    def elaborate(self, platform):
        m = Module()

        active = Signal(init=0)
        current = Signal(RequestLayout)
        queued = Signal(init=0)
        pending = Signal(RequestLayout)

        valid = Signal(init=0)
        error = Signal(init=0)
        result = Signal(32)
        wreg = Signal(5)

        start_size = self.core.op[:2]
        offset = self.core.addr[:2]
        misaligned = ((start_size == SIZE_WORD) & (offset != 0)) | (
            (start_size == SIZE_HALF) & offset[0]
        )

        # 写数据复制到各字节通道，由 sel 选择
        incoming = Signal(RequestLayout)
        m.d.comb += [
            incoming.we.eq(self.core.op[2]),
            incoming.size.eq(start_size),
            incoming.addr.eq(self.core.addr),
            incoming.reg.eq(self.core.reg),
        ]
        with m.Switch(start_size):
            with m.Case(SIZE_WORD):
                m.d.comb += [incoming.data.eq(self.core.data), incoming.sel.eq(0b1111)]
            with m.Case(SIZE_HALF):
                m.d.comb += [
                    incoming.data.eq(Cat(self.core.data[:16], self.core.data[:16])),
                    incoming.sel.eq(Mux(offset[1], 0b0011, 0b1100)),
                ]
            with m.Default():
                m.d.comb += [
                    incoming.data.eq(self.core.data[:8].replicate(4)),
                    incoming.sel.eq(Array([C(0b1000, 4), C(0b0100, 4), C(0b0010, 4), C(0b0001, 4)])[offset]),
                ]

        accept = self.core.start & ~misaligned
        done = active & (self.bus.ack | self.bus.err)

        m.d.sync += [
            valid.eq(done & ~current.we & ~self.bus.err),
            error.eq((self.core.start & misaligned) | (done & self.bus.err)),
        ]

        # 结果在完成时锁存，下一请求可以同时开始
        with m.If(done):
            m.d.sync += wreg.eq(current.reg)
            word = self.bus.data_r
            with m.Switch(current.size):
                with m.Case(SIZE_WORD):
                    m.d.sync += result.eq(word)
                with m.Case(SIZE_HALF):
                    m.d.sync += result.eq(Mux(current.addr[1], word[:16], word[16:32]))
                with m.Default():
                    m.d.sync += result.eq(
                        Array([word[24:32], word[16:24], word[8:16], word[:8]])[current.addr[:2]]
                    )

        if self.pipelined:
            with m.If(done):
                with m.If(queued):
                    m.d.sync += [current.eq(pending), queued.eq(0)]
                with m.Elif(accept):
                    m.d.sync += current.eq(incoming)
                with m.Else():
                    m.d.sync += active.eq(0)
            with m.Elif(accept):
                with m.If(active):
                    m.d.sync += [pending.eq(incoming), queued.eq(1)]
                with m.Else():
                    m.d.sync += [current.eq(incoming), active.eq(1)]
        else:
            with m.If(accept):
                m.d.sync += [current.eq(incoming), active.eq(1)]
            with m.Elif(done):
                m.d.sync += active.eq(0)

        m.d.comb += [
            self.bus.cyc.eq(active),
            self.bus.stb.eq(active),
            self.bus.we.eq(current.we),
            self.bus.addr.eq(Cat(C(0, 2), current.addr[2:])),
            self.bus.data_w.eq(current.data),
            self.bus.sel.eq(current.sel),
            self.core.busy.eq(active | queued),
            self.core.rdbusy.eq((active & ~current.we) | (queued & ~pending.we)),
            self.core.pipe_stalled.eq(queued if self.pipelined else active),
            self.core.valid.eq(valid),
            self.core.error.eq(error),
            self.core.result.eq(result),
            self.core.wreg.eq(wreg),
        ]

        return m
