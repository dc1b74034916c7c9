from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out


class BusLockController(wiring.Component):
    """
    原子总线锁

    LOCK 发出后进入 PRIMING；其后第一条指令发出进入 ARMED；
    第二条指令发出且访存单元空闲后回到 IDLE。流水线清空立即释放。
    active 期间总线只授权给数据端。
    """

    lock_issue: In(1)  # 本周期发出 LOCK 指令
    issue: In(1)  # 本周期有指令发出（ALU 侧或访存侧）
    mem_busy: In(1)
    clear: In(1)

    active: Out(1)
    armed: Out(1)

    def __init__(self):
        super().__init__()

    def elaborate(self, platform):
        m = Module()

        # ARMED 状态下尚未发出的受保护指令数
        remaining = Signal(init=0)

        with m.FSM(init="IDLE"):
            with m.State("IDLE"):
                with m.If(self.lock_issue & ~self.clear):
                    m.next = "PRIMING"

            with m.State("PRIMING"):
                m.d.comb += self.active.eq(1)
                with m.If(self.clear):
                    m.next = "IDLE"
                with m.Elif(self.issue):
                    m.d.sync += remaining.eq(1)
                    m.next = "ARMED"

            with m.State("ARMED"):
                m.d.comb += [self.active.eq(1), self.armed.eq(1)]
                with m.If(self.clear):
                    m.d.sync += remaining.eq(0)
                    m.next = "IDLE"
                with m.Elif(remaining & self.issue):
                    m.d.sync += remaining.eq(0)
                with m.Elif(~remaining & ~self.mem_busy):
                    m.next = "IDLE"

        return m
