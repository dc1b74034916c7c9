from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In

from ..config import CoreConfig
from ..core.interfaces import DecoderSignature
from ..isa import AluOp, Cond, HalfOpcode, MemOp, Opcode, Special


class Decoder(wiring.Component):
    """
    参考译码器（组合逻辑，访存流水判断记住上一条指令）

    完整指令字：[30:27] R, [26:22] op, [21:19] cond, [18] REG,
    REG=1 时 [17:14] B、[13:0] 立即数，否则 [17:0] 立即数。
    压缩字：bit31 置位，前半 [30:16]、后半 [14:0]，由 phase 选择。
    """

    bus: In(DecoderSignature())

    def __init__(self, config=None):
        self.config = config if config is not None else CoreConfig()
        super().__init__()

    def elaborate(self, platform):
        m = Module()
        cfg = self.config
        bus = self.bus

        word = bus.insn
        gie = bus.gie if cfg.user_mode else C(0, 1)

        R = Signal(4)
        B = Signal(4)
        r_user = Signal()
        b_user = Signal()
        imm = Signal(32)
        illegal = Signal()
        wR = Signal()
        wF = Signal()
        cis = Signal()

        m.d.comb += [
            r_user.eq(gie),
            b_user.eq(gie),
            bus.cond.eq(Cond.ALWAYS),
        ]

        with m.If(bus.fetch_illegal):
            m.d.comb += [illegal.eq(1), bus.alu.eq(1)]

        with m.Elif(word[31]):
            # ========== 压缩指令 ==========
            if cfg.cis:
                m.d.comb += cis.eq(1)
            else:
                m.d.comb += [illegal.eq(1), bus.alu.eq(1)]

            half = Mux(bus.phase, word[:15], word[16:31])
            hreg = half[7]
            m.d.comb += [
                R.eq(half[11:15]),
                B.eq(half[3:7]),
                imm.eq(Mux(hreg, half[:3].as_signed(), half[:7].as_signed())),
            ]

            with m.Switch(half[8:11]):
                with m.Case(HalfOpcode.SUB, HalfOpcode.AND, HalfOpcode.ADD):
                    m.d.comb += [
                        bus.alu.eq(1),
                        bus.opn.eq(Mux(half[8:11] == HalfOpcode.SUB, AluOp.SUB,
                                       Mux(half[8:11] == HalfOpcode.AND, AluOp.AND, AluOp.ADD))),
                        bus.rA.eq(1),
                        bus.rB.eq(hreg),
                        wR.eq(1),
                        wF.eq(1),
                    ]
                with m.Case(HalfOpcode.CMP):
                    m.d.comb += [
                        bus.alu.eq(1),
                        bus.opn.eq(AluOp.SUB),
                        bus.rA.eq(1),
                        bus.rB.eq(hreg),
                        wF.eq(1),
                    ]
                with m.Case(HalfOpcode.LW):
                    m.d.comb += [
                        bus.mem.eq(1),
                        bus.opn.eq(MemOp.LW),
                        bus.rB.eq(hreg),
                        wR.eq(1),
                    ]
                with m.Case(HalfOpcode.SW):
                    m.d.comb += [
                        bus.mem.eq(1),
                        bus.opn.eq(MemOp.SW),
                        bus.rA.eq(1),
                        bus.rB.eq(hreg),
                    ]
                with m.Case(HalfOpcode.LDI):
                    m.d.comb += [
                        bus.alu.eq(1),
                        bus.opn.eq(AluOp.MOV),
                        imm.eq(half[:8].as_signed()),
                        wR.eq(1),
                    ]
                with m.Case(HalfOpcode.MOV):
                    m.d.comb += [
                        bus.alu.eq(1),
                        bus.opn.eq(AluOp.MOV),
                        bus.rB.eq(hreg),
                        wR.eq(1),
                    ]

        with m.Else():
            # ========== 完整指令 ==========
            opcode = word[22:27]
            reg = word[18]
            m.d.comb += [
                R.eq(word[27:31]),
                B.eq(word[14:18]),
                bus.cond.eq(word[19:22]),
                imm.eq(Mux(reg, word[:14].as_signed(), word[:18].as_signed())),
            ]

            def alu_op(opn, *, read_a=True, write=True, flags=True):
                m.d.comb += [
                    bus.alu.eq(1),
                    bus.opn.eq(opn),
                    bus.rA.eq(int(read_a)),
                    bus.rB.eq(reg),
                    wR.eq(int(write)),
                    wF.eq(int(flags)),
                ]

            with m.Switch(opcode):
                with m.Case(Opcode.SUB, Opcode.AND, Opcode.ADD, Opcode.OR, Opcode.XOR,
                            Opcode.LSR, Opcode.LSL, Opcode.ASR, Opcode.ROL):
                    alu_op(opcode[:4])
                with m.Case(Opcode.MPY, Opcode.MPYUHI, Opcode.MPYSHI):
                    if cfg.multiply:
                        alu_op(opcode[:4])
                    else:
                        m.d.comb += [illegal.eq(1), bus.alu.eq(1)]
                with m.Case(Opcode.LDILO):
                    alu_op(AluOp.LDILO, flags=False)
                with m.Case(Opcode.BREV, Opcode.POPC):
                    alu_op(opcode[:4], read_a=False)
                with m.Case(Opcode.MOV):
                    alu_op(AluOp.MOV, read_a=False, flags=False)
                    with m.If(reg):
                        m.d.comb += imm.eq(word[:12].as_signed())
                        # 只有监督模式可以访问用户寄存器
                        if cfg.user_mode:
                            m.d.comb += [
                                r_user.eq(gie | word[13]),
                                b_user.eq(gie | word[12]),
                            ]
                with m.Case(Opcode.CMP):
                    alu_op(AluOp.SUB, write=False)
                with m.Case(Opcode.TST):
                    alu_op(AluOp.AND, write=False)
                with m.Case(Opcode.LW, Opcode.LH, Opcode.LB):
                    m.d.comb += [
                        bus.mem.eq(1),
                        bus.opn.eq(Mux(opcode == Opcode.LW, MemOp.LW,
                                       Mux(opcode == Opcode.LH, MemOp.LH, MemOp.LB))),
                        bus.rB.eq(reg),
                        wR.eq(1),
                    ]
                with m.Case(Opcode.SW, Opcode.SH, Opcode.SB):
                    m.d.comb += [
                        bus.mem.eq(1),
                        bus.opn.eq(Mux(opcode == Opcode.SW, MemOp.SW,
                                       Mux(opcode == Opcode.SH, MemOp.SH, MemOp.SB))),
                        bus.rA.eq(1),
                        bus.rB.eq(reg),
                    ]
                with m.Case(Opcode.LDI, Opcode.LDI_HI):
                    alu_op(AluOp.MOV, read_a=False, flags=False)
                    m.d.comb += [
                        bus.rB.eq(0),
                        bus.cond.eq(Cond.ALWAYS),
                        imm.eq(word[:23].as_signed()),
                    ]
                with m.Case(Opcode.FPADD, Opcode.FPMUL):
                    if cfg.fpu:
                        m.d.comb += [bus.fpu.eq(1), bus.opn.eq(opcode[:4]),
                                     bus.rA.eq(1), bus.rB.eq(reg), wR.eq(1), wF.eq(1)]
                    else:
                        m.d.comb += [illegal.eq(1), bus.alu.eq(1)]
                with m.Case(Opcode.SPECIAL):
                    m.d.comb += bus.alu.eq(1)
                    with m.Switch(word[27:31]):
                        with m.Case(Special.NOOP):
                            pass
                        with m.Case(Special.BREAK):
                            m.d.comb += bus.brk.eq(1)
                        with m.Case(Special.LOCK):
                            if cfg.lock:
                                m.d.comb += bus.lock.eq(1)
                            else:
                                m.d.comb += illegal.eq(1)
                        with m.Default():
                            m.d.comb += illegal.eq(1)
                with m.Case(Opcode.DIVU, Opcode.DIVS):
                    if cfg.divide:
                        m.d.comb += [
                            bus.div.eq(1),
                            bus.opn.eq(opcode[0]),
                            bus.rA.eq(1),
                            bus.rB.eq(reg),
                            wR.eq(1),
                            wF.eq(1),
                        ]
                    else:
                        m.d.comb += [illegal.eq(1), bus.alu.eq(1)]
                with m.Default():
                    m.d.comb += [illegal.eq(1), bus.alu.eq(1)]

        # 早期分支：无条件 ADD #imm,PC 或 LDI x,PC
        opcode = word[22:27]
        own_pc = (R == 15) & ~cis & ~illegal & ~bus.fetch_illegal & (bus.cond == Cond.ALWAYS)
        is_add_imm = (opcode == Opcode.ADD) & ~word[18]
        is_ldi = (opcode == Opcode.LDI) | (opcode == Opcode.LDI_HI)
        if cfg.early_branching:
            m.d.comb += bus.early_branch.eq(own_pc & (is_add_imm | is_ldi) & (r_user == gie))
        m.d.comb += bus.branch_pc.eq(Mux(is_ldi, imm, bus.pc + 4 + imm))

        # 写 PC/CC 的指令不更新标志
        writes_special = wR & (R[1:4] == 0b111)

        with m.If(illegal):
            m.d.comb += [
                bus.illegal.eq(1),
                bus.cis.eq(0),
                bus.rA.eq(0),
                bus.rB.eq(0),
                bus.wR.eq(0),
                bus.wF.eq(0),
                bus.mem.eq(0),
                bus.div.eq(0),
                bus.fpu.eq(0),
                bus.lock.eq(0),
                bus.brk.eq(0),
                bus.cond.eq(Cond.ALWAYS),
            ]
        with m.Elif(bus.early_branch):
            # 目标已在译码级算出，后续只作为不写回的空操作
            m.d.comb += [
                bus.cis.eq(0),
                bus.rA.eq(0),
                bus.rB.eq(0),
                bus.wR.eq(0),
                bus.wF.eq(0),
            ]
        with m.Else():
            m.d.comb += [
                bus.cis.eq(cis),
                bus.wR.eq(wR),
                bus.wF.eq(wF & ~writes_special),
            ]

        m.d.comb += [
            bus.R.eq(Cat(R, r_user)),
            bus.A.eq(Cat(R, r_user)),
            bus.B.eq(Cat(B, b_user)),
            bus.imm.eq(imm),
            bus.zero_imm.eq(imm == 0),
            bus.next_pc.eq(Mux(bus.cis & ~bus.phase, bus.pc, bus.pc + 4)),
        ]

        # 访存流水：与上一条同方向、同基址寄存器、偏移相同或加 4 的访存可以
        # 紧接着发出；读操作还要求上一条不写基址寄存器
        if cfg.pipelined_memory:
            last_mem = Signal(init=0)
            last_we = Signal()
            last_rB = Signal()
            last_B = Signal(5)
            last_R = Signal(5)
            last_imm = Signal(32)
            with m.If(bus.ce):
                m.d.sync += [
                    last_mem.eq(bus.mem),
                    last_we.eq(bus.opn[2]),
                    last_rB.eq(bus.rB),
                    last_B.eq(bus.B),
                    last_R.eq(bus.R),
                    last_imm.eq(bus.imm),
                ]
            m.d.comb += bus.pipe.eq(
                bus.mem
                & last_mem
                & (bus.opn[2] == last_we)
                & bus.rB
                & last_rB
                & (bus.B == last_B)
                & (last_we | (last_R != bus.B))
                & ((bus.imm == last_imm) | (bus.imm == (last_imm + 4)[:32]))
            )

        return m
