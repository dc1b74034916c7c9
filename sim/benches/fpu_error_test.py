"""
浮点单元错误测试

核心本身不含 FPU，这里接入一个按操作码给出固定结果的替身：
FPADD 返回 a+b，FPMUL 在结果周期报错。

测试场景：
1. 用户模式 FPU 错误：不写回，切回监督模式，uCC 的 FPUERR 置位，uPC 停在出错指令
2. 监督模式 FPU 错误：进入 breaking，sCC 的 FPUERR 置位
3. 配置打开 fpu 但没有接入 FPU 时拒绝构建
"""

from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In

from zipcore.config import CoreConfig
from zipcore.core.interfaces import ExecUnitSignature
from zipcore.core.registers import CCBit
from zipcore.isa import CC, PC, Opcode, ProgramBuilder
from zipcore.system import ZipSystem
from sim.test_utils import (
    SimulationSpec,
    SimulationTest,
    debug_read,
    expect_registers,
    halt_core,
    link,
    pulse_reset,
    run_tests_cli,
    trace_until_break,
)


USER_BASE = 0x100
GIE = 1 << CCBit.GIE
FPMUL_OP = Opcode.FPMUL & 0xF


class ScriptedFPU(wiring.Component):
    """固定延迟的 FPU 替身"""

    core: In(ExecUnitSignature())

    def __init__(self, latency=3):
        self.latency = latency
        super().__init__()

    def elaborate(self, platform):
        m = Module()

        count = Signal(range(self.latency + 1), init=0)
        result = Signal(32)
        fails = Signal()

        with m.If(self.core.start):
            m.d.sync += [
                count.eq(self.latency),
                result.eq(self.core.a + self.core.b),
                fails.eq(self.core.op == FPMUL_OP),
            ]
        with m.Elif(count != 0):
            m.d.sync += count.eq(count - 1)

        valid = count == 1
        m.d.comb += [
            self.core.busy.eq(count > 1),
            self.core.valid.eq(valid),
            self.core.error.eq(valid & fails),
            self.core.result.eq(result),
            self.core.flags.eq(Cat(result == 0, C(0, 1), result[31], C(0, 1))),
        ]

        return m


def fpu_system(image):
    return ZipSystem(image, CoreConfig(fpu=True), fpu=ScriptedFPU())


def cc_bit(value, bit):
    return (value >> bit) & 1


def build_user_fpu_error_spec() -> SimulationSpec:
    sup = ProgramBuilder(0)
    sup.ldi(0, USER_BASE)
    sup.mov(PC, 0, r_user=True)
    sup.ldi(CC, GIE)
    sup.mov(4, CC, b_user=True)
    sup.mov(5, PC, b_user=True)
    sup.brk()

    user = ProgramBuilder(USER_BASE)
    user.ldi(1, 5)
    user.ldi(2, 7)
    user.op(Opcode.FPADD, 1, b=2)  # uR1 = 12
    user.label("fault")
    user.op(Opcode.FPMUL, 1, b=2)
    user.ldi(3, 3)

    dut = fpu_system(link((0, sup.program()), (USER_BASE, user.program())))

    async def bench(ctx):
        await pulse_reset(ctx, dut)
        await trace_until_break(ctx, dut, limit=300)
        await halt_core(ctx, dut)
        ucc = debug_read(ctx, dut, 4)
        scc = debug_read(ctx, dut, CC)
        print(f"uCC = 0x{ucc:08X}, sCC = 0x{scc:08X}")
        assert cc_bit(ucc, CCBit.FPUERR) == 1
        assert cc_bit(ucc, CCBit.DIVERR) == 0
        assert cc_bit(ucc, CCBit.ILL) == 0
        assert cc_bit(scc, CCBit.FPUERR) == 0, "用户错误不影响监督标志"
        assert ctx.get(dut.core.gie) == 0
        # 出错的操作不写回，uPC 停在它上面
        expect_registers(ctx, dut, {5: user.address_of("fault"), 0x11: 12, 0x13: 0})

    return SimulationSpec(dut=dut, bench=bench, vcd_path="user_fpu_error.vcd")


def build_supervisor_fpu_error_spec() -> SimulationSpec:
    b = ProgramBuilder(0)
    b.ldi(1, 2)
    b.ldi(2, 3)
    b.op(Opcode.FPADD, 1, b=2)  # R1 = 5
    b.label("fault")
    b.op(Opcode.FPMUL, 1, b=2)
    b.ldi(3, 3)
    b.brk()

    dut = fpu_system(b.program())

    async def bench(ctx):
        try:
            ZipSystem(b.program(), CoreConfig(fpu=True))
        except ValueError as exc:
            print(f"未接入 FPU: {exc}")
        else:
            raise AssertionError("fpu=True without an FPU component should be rejected")

        await pulse_reset(ctx, dut)
        commits, _ = await trace_until_break(ctx, dut, limit=200)
        assert [reg for _, reg, _ in commits] == [1, 2, 1]
        await halt_core(ctx, dut)
        scc = debug_read(ctx, dut, CC)
        print(f"sCC = 0x{scc:08X}")
        assert ctx.get(dut.core.breaking) == 1
        assert cc_bit(scc, CCBit.FPUERR) == 1
        assert (ctx.get(dut.dbg.status) >> 3) & 1, "状态应显示 break"
        expect_registers(ctx, dut, {1: 5, 3: 0, PC: b.address_of("fault")})

    return SimulationSpec(dut=dut, bench=bench, vcd_path="super_fpu_error.vcd")


def get_tests() -> list[SimulationTest]:
    return [
        SimulationTest(
            key="user_fpu_error",
            name="User FPU Error",
            description="用户 FPU 出错：不写回，切回监督模式并置位 uCC 的 FPUERR。",
            build=build_user_fpu_error_spec,
            tags=("modes", "system", "fpu"),
        ),
        SimulationTest(
            key="supervisor_fpu_error",
            name="Supervisor FPU Error",
            description="监督模式 FPU 出错进入 breaking；未接入 FPU 时拒绝构建。",
            build=build_supervisor_fpu_error_spec,
            tags=("modes", "system", "fpu"),
        ),
    ]


def main() -> int:
    return run_tests_cli(get_tests())


if __name__ == "__main__":
    raise SystemExit(main())
