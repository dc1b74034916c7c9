"""Run every ZipCore bench: an interactive menu by default, ``--batch`` for CI."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, List, Optional

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from sim.benches.bus_lock_test import get_tests as get_bus_lock_tests
from sim.benches.checksum_test import get_tests as get_checksum_tests
from sim.benches.core_scenarios_test import get_tests as get_scenario_tests
from sim.benches.debug_lock_test import get_tests as get_debug_lock_tests
from sim.benches.fpu_error_test import get_tests as get_fpu_tests
from sim.benches.hazard_unit_test import get_tests as get_hazard_tests
from sim.benches.memory_unit_test import get_tests as get_memory_unit_tests
from sim.benches.mode_controller_test import get_tests as get_mode_tests
from sim.benches.program_test import get_tests as get_program_tests
from sim.benches.register_file_test import get_tests as get_regfile_tests
from sim.benches.stage_control_test import get_tests as get_stage_tests
from sim.benches.user_mode_test import get_tests as get_user_mode_tests
from sim.benches.writeback_test import get_tests as get_writeback_tests
from sim.test_utils import SimulationTest, TestResult, print_result_log

console = Console()

# 状态 -> (图标, 颜色, 说明)
STATUS_STYLE = {
    "pending": ("○", "grey50", "待运行"),
    "passed": ("✔", "green", "通过"),
    "failed": ("✖", "red", "失败"),
}
HELP = "命令: 编号运行 | a=全部 | l编号查看日志 | r重置 | q退出"

Results = Dict[str, Optional[TestResult]]


def collect_tests() -> List[SimulationTest]:
    suites = [
        get_regfile_tests,
        get_stage_tests,
        get_hazard_tests,
        get_writeback_tests,
        get_bus_lock_tests,
        get_memory_unit_tests,
        get_mode_tests,
        get_scenario_tests,
        get_program_tests,
        get_user_mode_tests,
        get_fpu_tests,
        get_debug_lock_tests,
        get_checksum_tests,
    ]
    tests: List[SimulationTest] = []
    keys: set[str] = set()
    for suite in suites:
        for test in suite():
            if test.key in keys:
                raise ValueError(f"Duplicated test key detected: {test.key}")
            keys.add(test.key)
            tests.append(test)
    return tests


def select_tests(tests: List[SimulationTest], tags: List[str]) -> List[SimulationTest]:
    if not tags:
        return tests
    wanted = set(tags)
    return [test for test in tests if wanted.intersection(test.tags)]


def status_of(result: Optional[TestResult]) -> str:
    if result is None:
        return "pending"
    return "passed" if result.passed else "failed"


def build_table(tests: List[SimulationTest], results: Results) -> Table:
    table = Table(box=None, expand=True, header_style="bold grey70")
    table.add_column("#", width=3)
    table.add_column("状态", width=4)
    table.add_column("测试名称")
    table.add_column("说明")
    table.add_column("耗时", width=8, justify="right")
    table.add_column("标签", style="cyan")

    for idx, test in enumerate(tests, start=1):
        result = results[test.key]
        icon, color, label = STATUS_STYLE[status_of(result)]
        note = (result and result.first_error_line) or (test.description if result is None else label)
        table.add_row(
            str(idx),
            Text(icon, style=color),
            test.name,
            Text(note, style=color if result is not None and not result.passed else "white"),
            f"{result.duration:0.2f}s" if result else "-",
            ", ".join(test.tags),
        )
    return table


def print_summary(tests: List[SimulationTest], results: Results) -> int:
    counts = {status: 0 for status in STATUS_STYLE}
    for test in tests:
        counts[status_of(results[test.key])] += 1
    console.print(Panel(build_table(tests, results), title="ZipCore Simulation", border_style="grey50"))
    console.print(
        f"总计 {len(tests)} | 通过 {counts['passed']} | 失败 {counts['failed']} | 待运行 {counts['pending']}",
        style="bold red" if counts["failed"] else "bold green",
    )
    return counts["failed"]


def run_one(test: SimulationTest, results: Results) -> TestResult:
    with console.status(f"正在运行 {test.name} ..."):
        result = test.run()
    results[test.key] = result
    mark = "[green]✔[/]" if result.passed else "[red]✖[/]"
    console.print(f"{mark} {test.name} 用时 {result.duration:.2f}s {result.first_error_line}")
    return result


def run_batch(tests: List[SimulationTest]) -> int:
    """非交互模式：依次运行并打印汇总表，任一失败返回 1。"""
    results: Results = {test.key: None for test in tests}
    for idx, test in enumerate(tests, start=1):
        console.print(f"[grey70]({idx}/{len(tests)})[/]", end=" ")
        run_one(test, results)
    return 1 if print_summary(tests, results) else 0


def pick(tests: List[SimulationTest], text: str) -> Optional[SimulationTest]:
    if text.isdigit() and 1 <= int(text) <= len(tests):
        return tests[int(text) - 1]
    console.print("无效的编号。", style="yellow")
    return None


def interactive(tests: List[SimulationTest]) -> int:
    results: Results = {test.key: None for test in tests}
    print_summary(tests, results)
    while True:
        try:
            cmd = console.input(f"[grey70]{HELP}[/]\n[bold cyan]请输入指令 › [/]").strip().lower()
        except (EOFError, KeyboardInterrupt):
            console.print("\n已中断，退出。")
            return 0

        if cmd in {"q", "quit"}:
            return 0
        if cmd in {"a", "all"}:
            for test in tests:
                run_one(test, results)
        elif cmd in {"r", "reset"}:
            results = {test.key: None for test in tests}
        elif cmd.startswith("l"):
            test = pick(tests, cmd[1:])
            if test is not None:
                console.rule(f"日志 - {test.name}")
                if results[test.key] is None:
                    console.print("尚未运行该测试。")
                else:
                    print_result_log(console, results[test.key])
            continue
        elif cmd:
            test = pick(tests, cmd)
            if test is None:
                continue
            run_one(test, results)
        else:
            continue
        print_summary(tests, results)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="ZipCore simulation regression runner")
    parser.add_argument("--batch", action="store_true", help="运行全部测试后退出，不进入交互界面")
    parser.add_argument("--tag", action="append", default=[], help="只保留带该标签的测试（可重复）")
    args = parser.parse_args(argv)

    try:
        tests = select_tests(collect_tests(), args.tag)
    except ValueError as exc:
        console.print(exc, style="red")
        return 1
    if not tests:
        console.print(f"没有匹配标签 {args.tag} 的测试。", style="yellow")
        return 1
    if args.batch:
        return run_batch(tests)
    return interactive(tests)


if __name__ == "__main__":
    raise SystemExit(main())
