"""
寄存器文件测试

测试场景：
1. 上电全零、写后读、同周期写读旁路
2. PC/CC 槽位写入被丢弃
3. 用户/监督寄存器相互独立；无用户模式时模式位被忽略
4. 随机压力（与 Python 模型对比）
5. RegisterRef 编号解析
"""

from pathlib import Path
import random
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from zipcore.core.registers import RegFile, RegisterRef, RegKind
from sim.test_utils import SimulationSpec, SimulationTest, run_tests_cli


async def write_reg(ctx, dut, reg_id, value):
    ctx.set(dut.wr_addr, reg_id)
    ctx.set(dut.wr_data, value)
    ctx.set(dut.wr_en, 1)
    await ctx.tick()
    ctx.set(dut.wr_en, 0)


def build_register_file_spec() -> SimulationSpec:
    dut = RegFile(user_mode=True)

    async def bench(ctx):
        print("测试1: 初始读取")
        for reg_id in range(32):
            ctx.set(dut.rd_addr_a, reg_id)
            assert ctx.get(dut.rd_data_a) == 0, f"寄存器 {reg_id:#04x} 初始值应为0"

        print("测试2: 写入后读取")
        await write_reg(ctx, dut, 0x03, 0x12345678)
        ctx.set(dut.rd_addr_a, 0x03)
        ctx.set(dut.rd_addr_b, 0x13)
        assert ctx.get(dut.rd_data_a) == 0x12345678
        assert ctx.get(dut.rd_data_b) == 0, "用户 r3 不应被监督 r3 的写入影响"

        print("测试3: 同周期写读旁路")
        ctx.set(dut.wr_addr, 0x13)
        ctx.set(dut.wr_data, 0xCAFEBABE)
        ctx.set(dut.wr_en, 1)
        assert ctx.get(dut.rd_data_b) == 0xCAFEBABE, "写优先旁路失败"
        ctx.set(dut.dbg_addr, 0x13)
        assert ctx.get(dut.dbg_data) == 0xCAFEBABE, "调试读端口旁路失败"
        await ctx.tick()
        ctx.set(dut.wr_en, 0)
        assert ctx.get(dut.rd_data_b) == 0xCAFEBABE

        print("测试4: PC/CC 槽位不存储")
        for reg_id in (0x0E, 0x0F, 0x1E, 0x1F):
            ctx.set(dut.wr_addr, reg_id)
            ctx.set(dut.wr_data, 0xFFFFFFFF)
            ctx.set(dut.wr_en, 1)
            ctx.set(dut.rd_addr_a, reg_id)
            assert ctx.get(dut.rd_data_a) == 0, f"{reg_id:#04x} 不应旁路"
            await ctx.tick()
            ctx.set(dut.wr_en, 0)
            assert ctx.get(dut.rd_data_a) == 0, f"{reg_id:#04x} 不应被写入"

        print("测试5: 随机压力")
        model = {reg_id: 0 for reg_id in range(32)}
        model[0x03] = 0x12345678
        model[0x13] = 0xCAFEBABE
        rng = random.Random(7)
        for _ in range(300):
            reg_id = rng.choice([r for r in range(32) if r & 0xF not in (14, 15)])
            value = rng.getrandbits(32)
            await write_reg(ctx, dut, reg_id, value)
            model[reg_id] = value
            reg = rng.randrange(32)
            ctx.set(dut.rd_addr_a, reg)
            expected = 0 if reg & 0xF in (14, 15) else model[reg]
            assert ctx.get(dut.rd_data_a) == expected, f"寄存器 {reg:#04x} 读值不一致"
        print("  ✓ 300 次随机写读一致")

    return SimulationSpec(dut=dut, bench=bench, vcd_path="regfile.vcd")


def build_supervisor_only_spec() -> SimulationSpec:
    dut = RegFile(user_mode=False)

    async def bench(ctx):
        print("无用户模式：模式位被忽略")
        assert dut.depth == 16
        await write_reg(ctx, dut, 0x15, 0xA5A5A5A5)
        ctx.set(dut.rd_addr_a, 0x05)
        ctx.set(dut.rd_addr_b, 0x15)
        assert ctx.get(dut.rd_data_a) == 0xA5A5A5A5
        assert ctx.get(dut.rd_data_b) == 0xA5A5A5A5

        print("RegisterRef 编号解析")
        assert RegisterRef.general(3).id == 0x03
        assert RegisterRef.general(3, user=True).id == 0x13
        assert RegisterRef.pc(user=True).id == 0x1F
        assert RegisterRef.cc().id == 0x0E
        assert RegisterRef.from_id(0x1E).kind is RegKind.CC
        assert RegisterRef.from_id(0x0F) == RegisterRef.pc()
        assert str(RegisterRef.from_id(0x12)) == "uR2"
        for bad in (lambda: RegisterRef.general(14), lambda: RegisterRef.from_id(32)):
            try:
                bad()
            except ValueError:
                pass
            else:
                raise AssertionError("超出范围的寄存器应当报错")

    return SimulationSpec(dut=dut, bench=bench)


def get_tests() -> list[SimulationTest]:
    return [
        SimulationTest(
            key="regfile",
            name="Register File",
            description="双读口+调试读口、写优先旁路、PC/CC 槽位保护和随机压力测试。",
            build=build_register_file_spec,
            tags=("regfile", "unit"),
        ),
        SimulationTest(
            key="regfile_supervisor_only",
            name="Register File Without User Mode",
            description="无用户模式时忽略模式位；RegisterRef 编号解析。",
            build=build_supervisor_only_spec,
            tags=("regfile", "unit"),
        ),
    ]


def main() -> int:
    return run_tests_cli(get_tests())


if __name__ == "__main__":
    raise SystemExit(main())
