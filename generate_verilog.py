"""
将 Amaranth HDL 模块转换为 Verilog 文件

生成流水线控制核心 ZipCore（运算/取指/访存单元作为端口留在外部）
以及参考系统用的总线存储器 BusMemory。
"""

from pathlib import Path
import sys
import re
import argparse

# 添加项目根目录到 Python 路径
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from amaranth.back import verilog
from zipcore.config import CoreConfig
from zipcore.core.core import ZipCore
from zipcore.memory.memory_file import BusMemory


def process_verilog_paths(verilog_text: str, strip_paths: bool = False) -> str:
    """
    处理 Verilog 代码中的文件路径

    Args:
        verilog_text: 原始 Verilog 代码
        strip_paths: 如果为 True，移除所有路径注释；否则转换为相对路径

    Returns:
        处理后的 Verilog 代码
    """
    if strip_paths:
        # 移除所有包含 src = "..." 的注释行
        return re.sub(r'\(\* src = "[^"]*" \*\)\n', '', verilog_text)

    def replace_path(match):
        full_path = match.group(1)
        try:
            rel_path = Path(full_path).relative_to(PROJECT_ROOT)
            return f'(* src = "{rel_path}" *)'
        except ValueError:
            # 无法转换时保持原样（例如 amaranth 自身的源文件）
            return match.group(0)

    return re.sub(r'\(\* src = "([^"]*)" \*\)', replace_path, verilog_text)


def write_verilog(text: str, output_file: Path) -> Path:
    output_file.parent.mkdir(parents=True, exist_ok=True)
    with open(output_file, "w", encoding="utf-8") as f:
        f.write(text)
    return output_file


def generate_core_verilog(config: CoreConfig, output_dir="build/verilog", strip_paths=False):
    """生成控制核心的 Verilog 代码"""
    print("生成 ZipCore Verilog 代码...")
    core = ZipCore(config)
    verilog_text = verilog.convert(core, name="ZipCore")
    verilog_text = process_verilog_paths(verilog_text, strip_paths)

    output_file = write_verilog(verilog_text, Path(output_dir) / "zipcore.v")
    print(f"✓ ZipCore Verilog 已生成: {output_file}")
    return output_file


def generate_memory_verilog(output_dir="build/verilog", strip_paths=False, memory_depth=1024):
    """生成总线存储器的 Verilog 代码"""
    print(f"\n生成 BusMemory Verilog 代码 (深度: {memory_depth})...")
    memory = BusMemory(depth=memory_depth)
    verilog_text = verilog.convert(memory, name="BusMemory")
    verilog_text = process_verilog_paths(verilog_text, strip_paths)

    output_file = write_verilog(verilog_text, Path(output_dir) / "bus_memory.v")
    print(f"✓ BusMemory Verilog 已生成: {output_file}")
    return output_file


def main():
    parser = argparse.ArgumentParser(
        description="将 Amaranth HDL 模块转换为 Verilog 文件",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  # 默认：使用相对路径，全部特性开启
  python generate_verilog.py

  # 完全移除路径注释
  python generate_verilog.py --strip-paths

  # 不带用户模式和除法器的精简核心
  python generate_verilog.py --no-user-mode --no-divide

  # 指定输出目录
  python generate_verilog.py --output build/rtl
        """
    )

    parser.add_argument(
        "--strip-paths",
        action="store_true",
        help="完全移除 Verilog 代码中的源文件路径注释"
    )
    parser.add_argument(
        "-o", "--output",
        default="build/verilog",
        help="输出目录 (默认: build/verilog)"
    )
    parser.add_argument(
        "--memory-depth",
        type=int,
        default=1024,
        help="存储器深度（字数，默认: 1024）"
    )
    parser.add_argument("--reset-address", type=lambda s: int(s, 0), default=0, help="复位地址")
    parser.add_argument("--no-user-mode", action="store_true", help="不生成用户模式")
    parser.add_argument("--no-divide", action="store_true", help="除法指令按非法指令处理")
    parser.add_argument("--no-multiply", action="store_true", help="乘法指令按非法指令处理")
    parser.add_argument("--no-lock", action="store_true", help="LOCK 按非法指令处理")
    parser.add_argument("--no-cis", action="store_true", help="压缩指令按非法指令处理")
    parser.add_argument("--no-early-branching", action="store_true", help="关闭译码级早期分支")
    parser.add_argument("--no-pipelined-memory", action="store_true", help="访存不重叠发出")

    args = parser.parse_args()

    print("=" * 60)
    print("Amaranth HDL → Verilog 转换工具")
    print("=" * 60)

    if args.strip_paths:
        print("模式: 移除所有路径注释")
    else:
        print("模式: 使用相对路径")

    print(f"输出目录: {args.output}\n")

    try:
        config = CoreConfig(
            reset_address=args.reset_address,
            user_mode=not args.no_user_mode,
            multiply=not args.no_multiply,
            divide=not args.no_divide,
            pipelined_memory=not args.no_pipelined_memory,
            lock=not args.no_lock,
            cis=not args.no_cis,
            early_branching=not args.no_early_branching,
            memory_depth=args.memory_depth,
        ).validate()
        core_file = generate_core_verilog(config, args.output, args.strip_paths)
        memory_file = generate_memory_verilog(args.output, args.strip_paths, args.memory_depth)

        print("\n" + "=" * 60)
        print("✓ 所有 Verilog 文件生成完成!")
        print("=" * 60)
        print(f"\n生成的文件:")
        print(f"  1. {core_file}")
        print(f"  2. {memory_file}")

        return 0
    except ValueError as e:
        print(f"\n✗ 配置错误: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
