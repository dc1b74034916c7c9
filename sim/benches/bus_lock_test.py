"""
原子总线锁测试

测试场景：
1. LOCK 发出 -> PRIMING -> 第一条受保护指令 -> ARMED
2. 第二条受保护指令发出后等待访存单元空闲再释放
3. 流水线清空立即释放
"""

from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from zipcore.core.buslock import BusLockController
from sim.test_utils import SimulationSpec, SimulationTest, run_tests_cli


def build_bus_lock_spec() -> SimulationSpec:
    dut = BusLockController()

    async def cycle(ctx, *, lock_issue=0, issue=0, mem_busy=0, clear=0):
        ctx.set(dut.lock_issue, lock_issue)
        ctx.set(dut.issue, issue)
        ctx.set(dut.mem_busy, mem_busy)
        ctx.set(dut.clear, clear)
        await ctx.tick()
        return ctx.get(dut.active), ctx.get(dut.armed)

    async def bench(ctx):
        assert ctx.get(dut.active) == 0

        print("测试1: 无指令时保持 IDLE")
        assert await cycle(ctx, issue=1, mem_busy=1) == (0, 0)

        print("测试2: 完整加锁序列")
        assert await cycle(ctx, lock_issue=1, issue=1) == (1, 0), "LOCK 后进入 PRIMING"
        assert await cycle(ctx) == (1, 0), "等待第一条受保护指令"
        assert await cycle(ctx, issue=1) == (1, 1), "第一条指令发出后 ARMED"
        assert await cycle(ctx, issue=0, mem_busy=1) == (1, 1)
        assert await cycle(ctx, issue=1, mem_busy=1) == (1, 1), "第二条指令发出"
        assert await cycle(ctx, mem_busy=1) == (1, 1), "访存未完成时保持"
        assert await cycle(ctx, mem_busy=0) == (0, 0), "访存完成后释放"

        print("测试3: PRIMING 中清空")
        assert await cycle(ctx, lock_issue=1, issue=1) == (1, 0)
        assert await cycle(ctx, issue=1, clear=1) == (0, 0)

        print("测试4: ARMED 中清空")
        assert await cycle(ctx, lock_issue=1, issue=1) == (1, 0)
        assert await cycle(ctx, issue=1) == (1, 1)
        assert await cycle(ctx, clear=1) == (0, 0)

        print("测试5: 清空周期内的 LOCK 不生效")
        assert await cycle(ctx, lock_issue=1, issue=1, clear=1) == (0, 0)

    return SimulationSpec(dut=dut, bench=bench, vcd_path="buslock.vcd")


def get_tests() -> list[SimulationTest]:
    return [
        SimulationTest(
            key="bus_lock",
            name="Atomic Bus Lock",
            description="LOCK 之后两条指令的总线占用状态机，及清空时的释放。",
            build=build_bus_lock_spec,
            tags=("lock", "unit"),
        ),
    ]


def main() -> int:
    return run_tests_cli(get_tests())


if __name__ == "__main__":
    raise SystemExit(main())
