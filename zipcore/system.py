from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out, connect, flipped

from .config import CoreConfig
from .core.core import ZipCore
from .core.interfaces import DebugSignature
from .memory.memory_file import BusMemory
from .units.alu import ALU
from .units.arbiter import BusArbiter
from .units.decoder import Decoder
from .units.divide import Divider
from .units.fetch import FetchUnit
from .units.memops import MemoryUnit


class ZipSystem(wiring.Component):
    """
    核心 + 参考协作单元 + 存储器，供仿真与命令行工具使用。

    没有参考 FPU：config.fpu=True 时必须通过 fpu 传入一个带
    `core: In(ExecUnitSignature())` 端口的组件。
    """

    reset: In(1)
    interrupt: In(1)
    dbg: Out(DebugSignature())

    def __init__(self, program=(), config=None, *, divide_latency=8, fpu=None):
        self.config = config if config is not None else CoreConfig()
        self.config.validate()
        if self.config.fpu and fpu is None:
            raise ValueError("config.fpu is set but no FPU component was given")
        if fpu is not None and not self.config.fpu:
            raise ValueError("An FPU component was given but config.fpu is not set")

        self.core = ZipCore(self.config)
        self.decoder = Decoder(self.config)
        self.alu = ALU(multiply=self.config.multiply)
        self.divider = Divider(latency=divide_latency) if self.config.divide else None
        self.fpu = fpu
        self.fetch_unit = FetchUnit(reset_address=self.config.reset_address)
        self.mem_unit = MemoryUnit(pipelined=self.config.pipelined_memory)
        self.arbiter = BusArbiter()
        self.memory = BusMemory(depth=self.config.memory_depth, init=program)

        super().__init__()

    def elaborate(self, platform):
        m = Module()

        m.submodules.core = core = self.core
        m.submodules.decoder = self.decoder
        m.submodules.alu = self.alu
        m.submodules.fetch = self.fetch_unit
        m.submodules.mem_unit = self.mem_unit
        m.submodules.arbiter = arbiter = self.arbiter
        m.submodules.memory = self.memory

        connect(m, core.decoder, self.decoder.bus)
        connect(m, core.alu, self.alu.core)
        connect(m, core.fetch, self.fetch_unit.core)
        connect(m, core.mem, self.mem_unit.core)
        if self.divider is not None:
            m.submodules.divider = self.divider
            connect(m, core.div, self.divider.core)
        # 未接入的执行单元输入保持为 0
        if self.fpu is not None:
            m.submodules.fpu = self.fpu
            connect(m, core.fpu, self.fpu.core)

        connect(m, self.fetch_unit.bus, arbiter.fetch)
        connect(m, self.mem_unit.bus, arbiter.data)
        connect(m, arbiter.bus, self.memory.bus)
        m.d.comb += arbiter.lock.eq(core.mem.lock)

        connect(m, flipped(self.dbg), core.dbg)
        m.d.comb += [
            core.reset.eq(self.reset),
            core.interrupt.eq(self.interrupt),
        ]

        return m
