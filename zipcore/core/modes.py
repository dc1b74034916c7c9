from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out

from .registers import CCBit, build_cc
from .sticky import StickyFlag


class ModeController(wiring.Component):
    """
    模式与中断控制器

    维护 GIE（1 = 用户模式）、挂起中断、单步、睡眠、每个模式的标志位
    与粘滞错误标志，以及核心断点状态 breaking。

    - 用户 -> 监督（switch）：挂起中断/单步且执行侧已排空、不在压缩指令
      中间、未持有总线锁；或用户断点、非法指令、除法/FPU/总线错误退休；
      或用户写自身 CC 且 GIE=0（trap）
    - 监督 -> 用户（release）：中断线无效时写监督 CC 且 GIE=1
    - 监督模式下的错误与断点置位 breaking，只有调试端口能解除；
      监督错误标志仍置位时（调试端口写 1 清除之前）breaking 保持
    """

    reset: In(1)
    interrupt: In(1)

    # 流水线状态
    idle: In(1)  # 执行侧已排空
    mid_cis: In(1)
    lock_active: In(1)
    issue_step: In(1)  # 本周期发出一条完整指令（非压缩前半）

    # 执行级退休事件
    ex_retire: In(1)
    ex_user: In(1)
    ex_illegal: In(1)
    ex_fetch_fault: In(1)  # 非法来自取指总线错误
    ex_brk: In(1)
    div_error: In(1)
    fpu_error: In(1)

    # 访存错误
    mem_error: In(1)
    mem_user: In(1)

    # 写回
    write_cc: In(1)
    write_pc: In(1)
    target_user: In(1)
    writer_user: In(1)
    from_debug: In(1)
    value: In(32)
    flags_ce: In(1)
    flags: In(4)
    flags_user: In(1)

    gie: Out(1)
    switch: Out(1)
    release: Out(1)
    int_block: Out(1)  # 等待执行侧排空后切换，停止发出新指令
    sleep: Out(1)
    breaking: Out(1)
    step: Out(1)
    break_en: Out(1)
    bus_err: Out(1)
    uflags: Out(4)
    sflags: Out(4)
    ucc: Out(32)
    scc: Out(32)

    def __init__(self, user_mode=True):
        self.user_mode = user_mode
        super().__init__()

    def elaborate(self, platform):
        m = Module()

        gie = Signal(init=0)
        pending = Signal(init=0)
        step_pending = Signal(init=0)
        sleep = Signal(init=0)
        ustep = Signal(init=0)
        break_en = Signal(init=0)
        trap = Signal(init=0)
        ubreak = Signal(init=0)
        breaking = Signal(init=0)
        uflags = Signal(4, init=0)
        sflags = Signal(4, init=0)

        value = self.value
        # 其他模式（监督对用户）或调试端口的写入
        write_ucc = self.write_cc & self.target_user
        write_scc = self.write_cc & ~self.target_user
        ucc_by_other = write_ucc & (self.from_debug | ~self.writer_user)
        scc_by_debug = write_scc & self.from_debug

        # ========== 模式切换 ==========
        ex_user_retire = self.ex_retire & self.ex_user
        ex_super_retire = self.ex_retire & ~self.ex_user
        fault = self.ex_illegal | self.div_error | self.fpu_error

        user_fault = (
            (ex_user_retire & (fault | (self.ex_brk & ~break_en)))
            | (self.mem_error & self.mem_user)
        )
        trap_write = write_ucc & self.writer_user & ~self.from_debug & ~value[CCBit.GIE]
        async_switch = (pending | step_pending) & ~self.mid_cis & ~self.lock_active & self.idle

        if self.user_mode:
            m.d.comb += [
                self.switch.eq(gie & (user_fault | trap_write | async_switch)),
                self.release.eq(~gie & ~self.interrupt & write_scc & value[CCBit.GIE]),
                self.int_block.eq(
                    gie & (pending | step_pending) & ~self.mid_cis & ~self.lock_active
                ),
            ]

        with m.If(self.reset | self.switch):
            m.d.sync += gie.eq(0)
        with m.Elif(self.release):
            m.d.sync += gie.eq(1)

        # 挂起中断只在用户模式下锁存
        with m.If(self.reset | self.switch | ~gie):
            m.d.sync += pending.eq(0)
        with m.Elif(self.interrupt):
            m.d.sync += pending.eq(1)

        with m.If(self.reset | self.switch | ~gie):
            m.d.sync += step_pending.eq(0)
        with m.Elif(ustep & self.issue_step):
            m.d.sync += step_pending.eq(1)

        # ========== 状态位 ==========
        with m.If(self.reset | self.interrupt):
            m.d.sync += sleep.eq(0)
        # 用户 trap（GIE=0）同时写 SLEEP 不生效，否则监督模式会被停住
        with m.Elif(self.write_cc & (self.target_user == gie) & (~gie | value[CCBit.GIE])):
            m.d.sync += sleep.eq(value[CCBit.SLEEP])

        with m.If(self.reset):
            m.d.sync += ustep.eq(0)
        with m.Elif(ucc_by_other):
            m.d.sync += ustep.eq(value[CCBit.STEP])

        with m.If(self.reset):
            m.d.sync += break_en.eq(0)
        with m.Elif(write_scc & (self.from_debug | ~self.writer_user)):
            m.d.sync += break_en.eq(value[CCBit.BREAK])

        with m.If(self.reset | self.release):
            m.d.sync += trap.eq(0)
        with m.Elif(gie & trap_write):
            m.d.sync += trap.eq(1)

        with m.If(self.reset | self.release):
            m.d.sync += ubreak.eq(0)
        with m.Elif(ex_user_retire & self.ex_brk & ~break_en):
            m.d.sync += ubreak.eq(1)

        super_fault = (ex_super_retire & fault) | (self.mem_error & ~self.mem_user)
        break_halt = self.ex_retire & self.ex_brk & (~self.ex_user | break_en)
        with m.If(self.reset):
            m.d.sync += breaking.eq(0)
        with m.Elif(super_fault | break_halt):
            m.d.sync += breaking.eq(1)
        with m.Elif((scc_by_debug | (self.write_pc & ~self.target_user & self.from_debug))):
            m.d.sync += breaking.eq(0)

        # ========== 标志位 ==========
        with m.If(self.reset):
            m.d.sync += uflags.eq(0)
        with m.Elif(write_ucc):
            m.d.sync += uflags.eq(value[:4])
        with m.Elif(self.flags_ce & self.flags_user):
            m.d.sync += uflags.eq(self.flags)

        with m.If(self.reset):
            m.d.sync += sflags.eq(0)
        with m.Elif(write_scc):
            m.d.sync += sflags.eq(value[:4])
        with m.Elif(self.flags_ce & ~self.flags_user):
            m.d.sync += sflags.eq(self.flags)

        # ========== 粘滞错误标志 ==========
        fetch_fault = self.ex_illegal & self.ex_fetch_fault
        sticky = {}
        for mode, retire, write, mem_err in (
            ("u", ex_user_retire, ucc_by_other, self.mem_error & self.mem_user),
            ("s", ex_super_retire, scc_by_debug, self.mem_error & ~self.mem_user),
        ):
            sets = {
                CCBit.ILL: retire & self.ex_illegal & ~self.ex_fetch_fault,
                CCBit.BUSERR: (retire & fetch_fault) | mem_err,
                CCBit.DIVERR: retire & self.div_error,
                CCBit.FPUERR: retire & self.fpu_error,
            }
            for bit, set_ in sets.items():
                flag = StickyFlag()
                m.submodules[f"{mode}_{bit.name.lower()}"] = flag
                m.d.comb += [
                    flag.set.eq(set_),
                    flag.write.eq(write),
                    flag.write_value.eq(value[bit]),
                    flag.clear.eq(self.reset),
                ]
                sticky[mode, bit] = flag.value

        # 监督模式的错误标志未清除前保持 breaking
        super_latched = Cat(*(latch for (mode, _), latch in sticky.items() if mode == "s")).any()

        m.d.comb += [
            self.gie.eq(gie),
            self.sleep.eq(sleep),
            self.breaking.eq(breaking | super_latched),
            self.step.eq(ustep),
            self.break_en.eq(break_en),
            self.bus_err.eq(sticky["u", CCBit.BUSERR] | sticky["s", CCBit.BUSERR]),
            self.uflags.eq(uflags),
            self.sflags.eq(sflags),
            self.ucc.eq(
                build_cc(
                    uflags,
                    sleep=sleep,
                    gie=C(1, 1),
                    step=ustep,
                    brk=ubreak,
                    ill=sticky["u", CCBit.ILL],
                    trap=trap,
                    buserr=sticky["u", CCBit.BUSERR],
                    diverr=sticky["u", CCBit.DIVERR],
                    fpuerr=sticky["u", CCBit.FPUERR],
                    phase=self.mid_cis & gie,
                )
            ),
            self.scc.eq(
                build_cc(
                    sflags,
                    sleep=sleep,
                    gie=C(0, 1),
                    step=C(0, 1),
                    brk=break_en,
                    ill=sticky["s", CCBit.ILL],
                    trap=C(0, 1),
                    buserr=sticky["s", CCBit.BUSERR],
                    diverr=sticky["s", CCBit.DIVERR],
                    fpuerr=sticky["s", CCBit.FPUERR],
                    phase=self.mid_cis & ~gie,
                )
            ),
        ]

        return m
