from dataclasses import dataclass


@dataclass
class CoreConfig:
    """核心与参考系统的构建参数"""

    reset_address: int = 0
    user_mode: bool = True
    multiply: bool = True
    divide: bool = True
    fpu: bool = False  # 译码 FPADD/FPMUL，需要外接 FPU
    pipelined_memory: bool = True
    lock: bool = True
    cis: bool = True
    early_branching: bool = True
    memory_depth: int = 1024  # 字数

    def validate(self):
        if self.reset_address % 4:
            raise ValueError(f"reset_address must be word aligned: {self.reset_address:#x}")
        if not 0 <= self.reset_address < (1 << 32):
            raise ValueError(f"reset_address out of range: {self.reset_address:#x}")
        if self.memory_depth <= 0 or self.memory_depth & (self.memory_depth - 1):
            raise ValueError(f"memory_depth must be a power of two: {self.memory_depth}")
        return self
