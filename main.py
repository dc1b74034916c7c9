#!/usr/bin/env python3

import argparse
import random
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from amaranth.sim import Simulator

from program.checksum import ChecksumArtifact, build_checksum_program
from zipcore.config import CoreConfig
from zipcore.core.registers import CCBit
from zipcore.system import ZipSystem

DEFAULT_MAX_CYCLES = 4000
DEFAULT_WORDS = 16
PROJECT_ROOT = Path(__file__).resolve().parent
ANALYSIS_DIR = PROJECT_ROOT / "build" / "analysis"


@dataclass
class RunTrace:
    cycles: int = 0
    samples: List[Tuple[int, int]] = field(default_factory=list)  # (cycle, retired)
    switches: List[Tuple[int, int]] = field(default_factory=list)  # (cycle, gie after)
    redirects: int = 0
    registers: dict = field(default_factory=dict)


def format_word(value: int) -> str:
    return f"0x{value & 0xFFFFFFFF:08X}"


def debug_read(ctx, dut: ZipSystem, reg: int) -> int:
    ctx.set(dut.dbg.reg, reg)
    return ctx.get(dut.dbg.value)


def run_checksum(
    artifact: ChecksumArtifact, config: CoreConfig, max_cycles: int, vcd_path: Optional[str]
) -> RunTrace:
    dut = ZipSystem(artifact.image, config)
    core = dut.core
    trace = RunTrace()

    async def bench(ctx):
        ctx.set(dut.reset, 1)
        await ctx.tick()
        ctx.set(dut.reset, 0)

        retired = 0
        gie = 0
        for cycle in range(max_cycles):
            if ctx.get(core.breaking):
                break
            if ctx.get(core.writeback.reg_ce):
                retired += 1
            if ctx.get(core.new_pc):
                trace.redirects += 1
            now_gie = ctx.get(core.gie)
            if now_gie != gie:
                trace.switches.append((cycle, now_gie))
                gie = now_gie
            trace.samples.append((cycle, retired))
            await ctx.tick()
        else:
            raise RuntimeError(f"Program did not reach its break within {max_cycles} cycles")

        trace.cycles = len(trace.samples)

        ctx.set(dut.dbg.halt, 1)
        for _ in range(200):
            if ctx.get(dut.dbg.halted):
                break
            await ctx.tick()
        else:
            raise RuntimeError("Core did not acknowledge the debug halt")

        for reg in (1, 2, 3, 4, 0x0E, 0x0F):
            trace.registers[reg] = debug_read(ctx, dut, reg)

    sim = Simulator(dut)
    sim.add_clock(1e-6)
    sim.add_testbench(bench)

    if vcd_path:
        with sim.write_vcd(vcd_path):
            sim.run()
    else:
        sim.run()

    return trace


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Run the supervisor/user checksum program on the ZipCore reference system"
    )
    parser.add_argument("--max-cycles", type=int, default=DEFAULT_MAX_CYCLES, help="Maximum cycles to simulate")
    parser.add_argument("--vcd", type=str, default=None, help="Optional path for waveform dump")
    parser.add_argument("--words", type=int, default=DEFAULT_WORDS, help="Number of data words to checksum")
    parser.add_argument("--seed", type=int, default=1, help="Seed for the random data block")
    parser.add_argument("--no-pipelined-memory", action="store_true", help="Issue one memory op at a time")
    parser.add_argument("--no-early-branching", action="store_true", help="Resolve all branches in writeback")
    parser.add_argument("--no-analysis", action="store_true", help="Skip the SVG analysis output")
    args = parser.parse_args(argv)

    rng = random.Random(args.seed)
    data = [rng.getrandbits(32) for _ in range(args.words)]

    try:
        artifact = build_checksum_program(data)
        config = CoreConfig(
            pipelined_memory=not args.no_pipelined_memory,
            early_branching=not args.no_early_branching,
        ).validate()
        trace = run_checksum(artifact, config, args.max_cycles, args.vcd)
    except (RuntimeError, ValueError) as exc:
        print(f"[ERROR] {exc}")
        return 1

    retired = trace.samples[-1][1] if trace.samples else 0
    print(f"Reached break after {trace.cycles} cycles, {retired} register writes retired.")
    print(f"PC redirects: {trace.redirects}, mode switches: {len(trace.switches)}")

    regs = trace.registers
    ucc = regs[4]
    print("\nSupervisor registers:")
    for reg, name in ((1, "sum"), (2, "xor"), (3, "sum readback"), (4, "uCC")):
        print(f"  R{reg} ({name:<12s}) = {format_word(regs[reg])}")
    print(f"  sCC = {format_word(regs[0x0E])}, sPC = {format_word(regs[0x0F])}")

    failures = []
    if regs[1] != artifact.expected_sum:
        failures.append(f"sum {format_word(regs[1])} != {format_word(artifact.expected_sum)}")
    if regs[2] != artifact.expected_xor:
        failures.append(f"xor {format_word(regs[2])} != {format_word(artifact.expected_xor)}")
    if regs[3] != artifact.expected_sum:
        failures.append(f"readback {format_word(regs[3])} != {format_word(artifact.expected_sum)}")
    if not (ucc >> CCBit.TRAP) & 1:
        failures.append("user CC does not show the trap")

    if failures:
        print("\nChecksum mismatch:")
        for line in failures:
            print(f"  {line}")
        return 1
    print("\nChecksum verified.")

    if not args.no_analysis:
        ANALYSIS_DIR.mkdir(parents=True, exist_ok=True)
        pipeline_path = ANALYSIS_DIR / "pipeline.svg"
        perf_path = ANALYSIS_DIR / "performance.svg"
        generate_pipeline_svg(pipeline_path)
        generate_performance_svg(perf_path, trace.samples, trace.switches)

        print(f"\n流水线结构图已生成: {pipeline_path}")
        print(f"性能分析图已生成: {perf_path}")

    return 0


def svg_header(width: int, height: int) -> List[str]:
    return [
        f"<svg xmlns='http://www.w3.org/2000/svg' width='{width}' height='{height}' viewBox='0 0 {width} {height}'>",
        "  <style>text{font-family:Consolas,Monaco,monospace;font-size:14px;}" "</style>",
    ]


def generate_pipeline_svg(path: Path) -> None:
    width, height = 900, 220
    stages = [
        ("PF", "预取 (Prefetch)"),
        ("DCD", "译码 (Decode)"),
        ("OP", "读操作数 (Operands)"),
        ("EX", "执行 (ALU/MEM/DIV)"),
        ("WB", "写回 (Writeback)"),
    ]
    margin = 60
    gap = 20
    box_width = (width - 2 * margin - gap * (len(stages) - 1)) / len(stages)
    box_height = 80
    y = (height - box_height) / 2

    parts = svg_header(width, height)
    for idx, (name, desc) in enumerate(stages):
        x = margin + idx * (box_width + gap)
        parts.append(
            f"  <rect x='{x:.1f}' y='{y:.1f}' width='{box_width:.1f}' height='{box_height}' "
            "rx='12' ry='12' fill='#E0F7FA' stroke='#00838F' stroke-width='2'/>"
        )
        parts.append(
            f"  <text x='{x + box_width / 2:.1f}' y='{y + 30:.1f}' text-anchor='middle' fill='#004D40' font-size='22'>{name}</text>"
        )
        parts.append(
            f"  <text x='{x + box_width / 2:.1f}' y='{y + 60:.1f}' text-anchor='middle' fill='#006064'>{desc}</text>"
        )
        if idx < len(stages) - 1:
            x2 = x + box_width + gap / 2
            parts.append(
                f"  <line x1='{x + box_width:.1f}' y1='{y + box_height / 2:.1f}' x2='{x2:.1f}' y2='{y + box_height / 2:.1f}' stroke='#006064' stroke-width='3' marker-end='url(#arrow)'/>"
            )

    parts.insert(2, "  <defs><marker id='arrow' markerWidth='10' markerHeight='10' refX='6' refY='3' orient='auto'><path d='M0,0 L0,6 L9,3 z' fill='#006064'/></marker></defs>")
    parts.append("</svg>")

    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(parts))


def generate_performance_svg(
    path: Path, samples: List[Tuple[int, int]], switches: List[Tuple[int, int]]
) -> None:
    if not samples:
        return

    width, height = 960, 360
    margin = 60
    max_cycle = max(c for c, _ in samples) or 1
    max_retired = max(r for _, r in samples) or 1

    def sx(cycle: int) -> float:
        return margin + (cycle / max_cycle) * (width - 2 * margin)

    def sy(value: int) -> float:
        return height - margin - (value / max_retired) * (height - 2 * margin)

    parts = svg_header(width, height)
    parts.append(
        f"  <line x1='{margin}' y1='{height - margin}' x2='{width - margin}' y2='{height - margin}' stroke='black' stroke-width='2'/>"
    )
    parts.append(
        f"  <line x1='{margin}' y1='{margin}' x2='{margin}' y2='{height - margin}' stroke='black' stroke-width='2'/>"
    )
    parts.append(
        f"  <text x='{width - margin}' y='{height - margin + 30}' text-anchor='end'>Cycles (0~{max_cycle})</text>"
    )
    parts.append(
        f"  <text x='{margin - 35}' y='{margin - 10}' text-anchor='start' transform='rotate(-90 {margin - 35},{margin - 10})'>Register Writes (0~{max_retired})</text>"
    )

    points = " ".join(f"{sx(c):.2f},{sy(r):.2f}" for c, r in samples)
    parts.append(
        f"  <polyline fill='none' stroke='#2E7D32' stroke-width='2.5' points='{points}'/>"
    )

    # 模式切换：橙色进入用户模式，蓝色回到监督模式
    for cycle, gie in switches:
        x = sx(cycle)
        color = "#FF6F00" if gie else "#0D47A1"
        label = "user" if gie else "supervisor"
        parts.append(
            f"  <line x1='{x:.2f}' y1='{margin}' x2='{x:.2f}' y2='{height - margin}' stroke='{color}' stroke-width='1.5' stroke-dasharray='4 4'/>"
        )
        parts.append(
            f"  <text x='{x + 3:.2f}' y='{margin + 15}' fill='{color}' font-size='12'>{label}@{cycle}</text>"
        )

    parts.append("</svg>")

    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(parts))


if __name__ == "__main__":
    sys.exit(main())
