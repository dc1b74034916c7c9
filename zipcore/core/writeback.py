from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out

from .registers import reg_is_cc, reg_is_pc, reg_mode


class WritebackArbiter(wiring.Component):
    """
    写回仲裁器（组合逻辑）

    优先级：调试端口 > 访存 > 执行（ALU/除法/FPU）。
    source 为独热码 {debug, mem, ex}，用于检查单写者约束；
    requests 为各来源的原始写请求。
    """

    # 当前模式（用于判断 own_mode）
    gie: In(1)

    # 调试端口
    dbg_we: In(1)
    dbg_reg: In(5)
    dbg_value: In(32)

    # 访存返回
    mem_valid: In(1)
    mem_reg: In(5)
    mem_value: In(32)

    # 执行级退休
    ex_valid: In(1)
    ex_wR: In(1)
    ex_wF: In(1)
    ex_reg: In(5)
    ex_value: In(32)
    ex_flags: In(4)
    ex_user: In(1)

    reg_ce: Out(1)
    reg_id: Out(5)
    value: Out(32)
    flags_ce: Out(1)
    flags: Out(4)
    flags_user: Out(1)
    write_pc: Out(1)
    write_cc: Out(1)
    own_mode: Out(1)
    from_debug: Out(1)
    source: Out(3)
    requests: Out(3)

    def __init__(self):
        super().__init__()

    def elaborate(self, platform):
        m = Module()

        ex_reg_write = self.ex_valid & self.ex_wR
        m.d.comb += self.requests.eq(Cat(self.dbg_we, self.mem_valid, ex_reg_write))

        with m.If(self.dbg_we):
            m.d.comb += [
                self.reg_ce.eq(1),
                self.reg_id.eq(self.dbg_reg),
                self.value.eq(self.dbg_value),
                self.from_debug.eq(1),
                self.source.eq(0b001),
            ]
        with m.Elif(self.mem_valid):
            m.d.comb += [
                self.reg_ce.eq(1),
                self.reg_id.eq(self.mem_reg),
                self.value.eq(self.mem_value),
                self.source.eq(0b010),
            ]
        with m.Elif(ex_reg_write):
            m.d.comb += [
                self.reg_ce.eq(1),
                self.reg_id.eq(self.ex_reg),
                self.value.eq(self.ex_value),
                self.source.eq(0b100),
            ]

        # 写 CC 的指令不再单独更新标志
        ex_selected = ~self.dbg_we & ~self.mem_valid & self.ex_valid
        m.d.comb += [
            self.flags_ce.eq(
                ex_selected & self.ex_wF & ~(self.ex_wR & reg_is_cc(self.ex_reg))
            ),
            self.flags.eq(self.ex_flags),
            self.flags_user.eq(self.ex_user),
        ]

        m.d.comb += [
            self.write_pc.eq(self.reg_ce & reg_is_pc(self.reg_id)),
            self.write_cc.eq(self.reg_ce & reg_is_cc(self.reg_id)),
            self.own_mode.eq(reg_mode(self.reg_id) == self.gie),
        ]

        return m
