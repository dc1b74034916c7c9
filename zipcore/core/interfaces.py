from amaranth.lib.wiring import In, Out, Signature


# ========== 协作单元接口（均以核心视角定义方向） ==========


class DecoderSignature(Signature):
    """译码器接口：核心给出指令字与上下文，译码器组合返回字段。

    pipe 与上一条进入操作数读取级的指令比较，译码器在 ce 时记下该指令。
    """

    def __init__(self):
        super().__init__(
            {
                # 核心 -> 译码器
                "insn": Out(32),  # 译码寄存器中的指令字
                "pc": Out(32),  # 指令字地址
                "gie": Out(1),  # 当前模式（1 = 用户）
                "phase": Out(1),  # 压缩指令：0 = 前半，1 = 后半
                "fetch_illegal": Out(1),  # 取指返回总线错误
                "ce": Out(1),  # 本条指令进入操作数读取级
                # 译码器 -> 核心
                "illegal": In(1),
                "cis": In(1),  # 压缩双指令字
                "next_pc": In(32),  # 本条指令退休后的PC
                "R": In(5),  # 目的寄存器 {user, num}
                "A": In(5),  # 操作数A寄存器
                "B": In(5),  # 操作数B寄存器
                "rA": In(1),
                "rB": In(1),
                "wR": In(1),
                "wF": In(1),
                "imm": In(32),
                "zero_imm": In(1),
                "cond": In(3),
                "alu": In(1),
                "mem": In(1),
                "div": In(1),
                "fpu": In(1),
                "opn": In(4),
                "lock": In(1),
                "brk": In(1),
                "early_branch": In(1),
                "branch_pc": In(32),
                "pipe": In(1),  # 可与前一条访存指令流水发出
            }
        )


class ExecUnitSignature(Signature):
    """ALU、除法器、FPU 共用的执行单元接口。"""

    def __init__(self):
        super().__init__(
            {
                "start": Out(1),  # 单周期脉冲
                "op": Out(4),
                "a": Out(32),
                "b": Out(32),
                "busy": In(1),  # 启动后的下一周期起为高，结果周期拉低
                "valid": In(1),  # 结果有效（单周期）
                "error": In(1),  # 与 valid 同周期
                "result": In(32),
                "flags": In(4),  # Z C N V
            }
        )


class MemUnitSignature(Signature):
    """访存单元接口。"""

    def __init__(self):
        super().__init__(
            {
                "start": Out(1),
                "op": Out(3),  # {we, size}
                "addr": Out(32),
                "data": Out(32),
                "reg": Out(5),  # 读操作的目的寄存器
                "lock": Out(1),  # 原子锁占用总线
                "busy": In(1),
                "rdbusy": In(1),  # 有未完成的读
                "pipe_stalled": In(1),  # 无法再接收流水发出
                "valid": In(1),  # 读数据返回
                "error": In(1),  # 总线错误
                "result": In(32),
                "wreg": In(5),
            }
        )


class FetchSignature(Signature):
    """取指单元接口。"""

    def __init__(self):
        super().__init__(
            {
                "new_pc": Out(1),  # 重定向取指
                "address": Out(32),  # 重定向地址
                "ready": Out(1),  # 核心本周期接收指令
                "clear_cache": Out(1),
                "valid": In(1),
                "insn": In(32),
                "pc": In(32),
                "illegal": In(1),  # 取指总线错误
            }
        )


class DebugSignature(Signature):
    """调试接口（核心视角：输入为外部调试器驱动）。"""

    def __init__(self):
        super().__init__(
            {
                "halt": In(1),
                "step": In(1),
                "reg": In(5),
                "we": In(1),
                "data": In(32),
                "clear_cache": In(1),
                "halted": Out(1),
                "stalled": Out(1),
                "value": Out(32),
                "status": Out(4),  # {break, bus_err, gie, sleep}，bit0 = sleep
                "fault_address": Out(32),
            }
        )


class BusSignature(Signature):
    """参考总线（类 Wishbone classic，主设备视角），字节地址、大端字节序。"""

    def __init__(self):
        super().__init__(
            {
                "cyc": Out(1),
                "stb": Out(1),
                "we": Out(1),
                "addr": Out(32),
                "data_w": Out(32),
                "sel": Out(4),  # sel[3] 对应地址偏移 0 的字节（data[24:32]）
                "ack": In(1),
                "err": In(1),
                "data_r": In(32),
            }
        )
