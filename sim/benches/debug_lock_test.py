"""
总线锁、调试单步与构建配置测试

测试场景：
1. LOCK + 读 + 写：锁有效期间取指从未获得总线，之后正常继续
2. 调试单步：暂停状态下每次 step 恰好执行一条指令
3. 睡眠：写 sCC.SLEEP 后停止发出，中断唤醒
4. 无用户模式：写 GIE 不生效，MOV 的用户位被忽略
"""

from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from zipcore.config import CoreConfig
from zipcore.core.registers import CCBit
from zipcore.isa import CC, Opcode, ProgramBuilder
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
    run_until,
    trace_until_break,
)


DATA = 0x200


def build_lock_spec() -> SimulationSpec:
    b = ProgramBuilder()
    b.ldi(3, DATA)
    b.ldi(4, 0x77)
    b.noop()
    b.noop()
    b.lock()
    b.op(Opcode.LW, 1, b=3)  # R1 = 旧值
    b.op(Opcode.SW, 4, b=3)  # 写入新值
    b.op(Opcode.LW, 5, b=3)
    b.brk()

    dut = ZipSystem(link((0, b.program()), (DATA, [0x1111])))
    core = dut.core

    async def bench(ctx):
        await pulse_reset(ctx, dut)
        _, samples = await trace_until_break(
            ctx,
            dut,
            limit=150,
            watch={
                "active": core.buslock.active,
                "armed": core.buslock.armed,
                "fetch": dut.arbiter.fetch_grant,
                "data": dut.arbiter.data_grant,
            },
        )
        locked = [i for i, active in enumerate(samples["active"]) if active]
        print(f"锁有效周期: {locked}")
        assert locked, "LOCK 应当使锁生效"
        assert any(samples["armed"])
        assert not any(samples["fetch"][i] for i in locked), "锁有效期间取指不得获得总线"
        assert sum(samples["data"][i] for i in locked) == 2, "锁内恰好两次数据访问"
        assert locked == list(range(locked[0], locked[-1] + 1)), "锁应当连续有效"

        await halt_core(ctx, dut)
        expect_registers(ctx, dut, {1: 0x1111, 5: 0x77})

    return SimulationSpec(dut=dut, bench=bench, vcd_path="lock.vcd")


def build_debug_step_spec() -> SimulationSpec:
    b = ProgramBuilder()
    for _ in range(40):
        b.op(Opcode.ADD, 1, imm=1)
    b.brk()
    dut = ZipSystem(b.program())
    core = dut.core

    async def bench(ctx):
        await pulse_reset(ctx, dut)
        for _ in range(12):
            await ctx.tick()
        await halt_core(ctx, dut)
        value = debug_read(ctx, dut, 1)
        print(f"暂停时 R1 = {value}")

        for step in range(1, 4):
            ctx.set(dut.dbg.step, 1)
            await ctx.tick()
            ctx.set(dut.dbg.step, 0)
            issued = 0
            for _ in range(20):
                if ctx.get(dut.dbg.halted):
                    break
                issued += ctx.get(core.issue)
                await ctx.tick()
            else:
                raise AssertionError("单步后没有重新暂停")
            assert issued <= 1
            now = debug_read(ctx, dut, 1)
            print(f"第 {step} 步后 R1 = {now}")
            assert now == value + step

        for _ in range(5):
            await ctx.tick()
        assert debug_read(ctx, dut, 1) == value + 3, "暂停期间不得继续执行"

    return SimulationSpec(dut=dut, bench=bench, vcd_path="debug_step.vcd")


def build_sleep_spec() -> SimulationSpec:
    b = ProgramBuilder()
    b.ldi(CC, 1 << CCBit.SLEEP)
    b.ldi(1, 7)
    b.brk()
    dut = ZipSystem(b.program())

    async def bench(ctx):
        await pulse_reset(ctx, dut)
        await run_until(ctx, lambda: ctx.get(dut.dbg.status) & 1, limit=40, what="sleep")
        for _ in range(20):
            await ctx.tick()
        assert debug_read(ctx, dut, 1) == 0, "睡眠期间不得执行"
        assert ctx.get(dut.core.master_ce) == 0

        print("中断唤醒")
        ctx.set(dut.interrupt, 1)
        await ctx.tick()
        ctx.set(dut.interrupt, 0)
        assert ctx.get(dut.dbg.status) & 1 == 0
        await trace_until_break(ctx, dut, limit=40)
        await halt_core(ctx, dut)
        expect_registers(ctx, dut, {1: 7})

    return SimulationSpec(dut=dut, bench=bench, vcd_path="sleep.vcd")


def build_supervisor_only_spec() -> SimulationSpec:
    b = ProgramBuilder()
    b.ldi(CC, 1 << CCBit.GIE)
    b.ldi(1, 5)
    b.mov(2, 1, r_user=True)
    b.brk()
    dut = ZipSystem(b.program(), CoreConfig(user_mode=False))
    core = dut.core

    async def bench(ctx):
        await pulse_reset(ctx, dut)
        _, samples = await trace_until_break(ctx, dut, limit=80, watch={"gie": core.gie})
        assert not any(samples["gie"]), "无用户模式时不得进入用户模式"
        await halt_core(ctx, dut)
        expect_registers(ctx, dut, {1: 5, 2: 5, 0x12: 5})
        assert (debug_read(ctx, dut, CC) >> CCBit.GIE) & 1 == 0

    return SimulationSpec(dut=dut, bench=bench, vcd_path="supervisor_only.vcd")


def get_tests() -> list[SimulationTest]:
    return [
        SimulationTest(
            key="bus_lock_isolation",
            name="Locked Read-Modify-Write",
            description="LOCK 后的读写期间取指被挡在总线之外。",
            build=build_lock_spec,
            tags=("lock", "system", "memory"),
        ),
        SimulationTest(
            key="debug_step",
            name="Debug Single Step",
            description="暂停状态下 step 每次恰好放行一条指令。",
            build=build_debug_step_spec,
            tags=("debug", "system"),
        ),
        SimulationTest(
            key="sleep_wake",
            name="Sleep Until Interrupt",
            description="SLEEP 置位后停止发出，中断唤醒继续执行。",
            build=build_sleep_spec,
            tags=("modes", "system"),
        ),
        SimulationTest(
            key="supervisor_only",
            name="Build Without User Mode",
            description="无用户模式构建：GIE 写入无效，用户寄存器别名到监督寄存器。",
            build=build_supervisor_only_spec,
            tags=("config", "system"),
        ),
    ]


def main() -> int:
    return run_tests_cli(get_tests())


if __name__ == "__main__":
    raise SystemExit(main())
