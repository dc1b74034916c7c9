from amaranth import *
from amaranth.lib import data, wiring
from amaranth.lib.wiring import In, Out, connect, flipped

from ..config import CoreConfig
from ..isa import Cond
from .buslock import BusLockController
from .debug import DebugPort
from .hazard import ForwardingUnit, HazardUnit
from .interfaces import (
    DebugSignature,
    DecoderSignature,
    ExecUnitSignature,
    FetchSignature,
    MemUnitSignature,
)
from .modes import ModeController
from .registers import RegFile, reg_is_cc, reg_is_pc, reg_is_special
from .sequencer import StageControl
from .writeback import WritebackArbiter


# ========== 流水线寄存器布局 ==========

# 译码寄存器：取指输出的指令字
DecodeLayout = data.StructLayout(
    {
        "insn": 32,
        "pc": 32,
        "phase": 1,
        "fetch_illegal": 1,
    }
)

# 操作数读取寄存器
OperandLayout = data.StructLayout(
    {
        "R": 5,
        "A": 5,
        "B": 5,
        "rA": 1,
        "rB": 1,
        "wR": 1,
        "wF": 1,
        "zero_imm": 1,
        "cond": 3,
        "alu": 1,
        "mem": 1,
        "div": 1,
        "fpu": 1,
        "opn": 4,
        "lock": 1,
        "brk": 1,
        "illegal": 1,
        "fetch_illegal": 1,
        "cis": 1,
        "phase": 1,
        "pipe": 1,
        "gie": 1,
        "pc": 32,  # 本条退休后的 PC
        "Av": 32,
        "Bv": 32,  # 已加上立即数
    }
)

# 执行侧（ALU/除法/FPU）记录
ExecuteLayout = data.StructLayout(
    {
        "R": 5,
        "wR": 1,
        "wF": 1,
        "pc": 32,
        "gie": 1,
        "illegal": 1,
        "fetch_illegal": 1,
        "brk": 1,
        "slow": 1,  # 除法或 FPU，可能报错
    }
)


def condition_met(cond, flags):
    """按 Cond 编码判断条件是否成立，flags 为 {Z, C, N, V}"""
    z, c, n, v = flags[0], flags[1], flags[2], flags[3]
    return Array([C(1, 1), z, n, c, v, ~z, ~n, ~c])[cond]


class ZipCore(wiring.Component):
    """
    流水线控制核心

    取指(协作单元) -> 译码寄存器 -> 操作数读取 -> 执行(ALU/除法/FPU 或访存) -> 写回
    核心只负责控制：寄存器文件、冒险与转发、模式与中断、总线锁、调试接口
    和写回仲裁。运算单元、取指、访存通过接口连接。
    """

    reset: In(1)
    interrupt: In(1)

    decoder: Out(DecoderSignature())
    fetch: Out(FetchSignature())
    alu: Out(ExecUnitSignature())
    div: Out(ExecUnitSignature())
    fpu: Out(ExecUnitSignature())
    mem: Out(MemUnitSignature())
    dbg: Out(DebugSignature())

    gie: Out(1)
    breaking: Out(1)

    def __init__(self, config=None):
        self.config = config if config is not None else CoreConfig()
        self.config.validate()

        self.regfile = RegFile(user_mode=self.config.user_mode)
        self.hazard = HazardUnit()
        self.fwd_a = ForwardingUnit()
        self.fwd_b = ForwardingUnit()
        self.dcd_stage = StageControl()
        self.op_stage = StageControl()
        self.ex_stage = StageControl()
        self.modes = ModeController(user_mode=self.config.user_mode)
        self.buslock = BusLockController()
        self.debug = DebugPort()
        self.writeback = WritebackArbiter()

        # 流水线寄存器
        self.dcd = Signal(DecodeLayout)
        self.op = Signal(OperandLayout)
        self.ex = Signal(ExecuteLayout)

        # 每个模式的 PC：指向下一条待执行的指令
        self.ipc = Signal(32, init=self.config.reset_address)
        self.upc = Signal(32, init=self.config.reset_address)

        # 可观测的控制信号
        self.master_ce = Signal()
        self.clear_pipeline = Signal()
        self.new_pc = Signal()
        self.mid_cis = Signal()
        self.cc_write_hold = Signal()
        self.issue = Signal()
        self.ex_retire = Signal()
        self.op_illegal = Signal()
        self.cond_ok = Signal()
        self.fault_address = Signal(32)

        super().__init__()

    def _user_of(self, reg_id):
        # 无用户模式时所有寄存器都属于监督模式
        if self.config.user_mode:
            return reg_id[4]
        return C(0, 1)

    def elaborate(self, platform):
        m = Module()
        cfg = self.config

        m.submodules.regfile = regfile = self.regfile
        m.submodules.hazard = hazard = self.hazard
        m.submodules.fwd_a = fwd_a = self.fwd_a
        m.submodules.fwd_b = fwd_b = self.fwd_b
        m.submodules.dcd_stage = dcd_stage = self.dcd_stage
        m.submodules.op_stage = op_stage = self.op_stage
        m.submodules.ex_stage = ex_stage = self.ex_stage
        m.submodules.modes = modes = self.modes
        m.submodules.buslock = buslock = self.buslock
        m.submodules.debug = debug = self.debug
        m.submodules.writeback = wb = self.writeback

        connect(m, flipped(self.dbg), debug.bus)

        dec = self.decoder
        dcd, op, ex = self.dcd, self.op, self.ex
        ipc, upc = self.ipc, self.upc
        gie = modes.gie
        clear = self.clear_pipeline
        master_ce = self.master_ce

        mid_cis = self.mid_cis
        cc_write_hold = self.cc_write_hold
        mem_gie = Signal(init=0)  # 在途访存所属模式
        mem_special = Signal(init=0)  # 在途读的目的是 PC/CC

        m.d.comb += [
            self.gie.eq(gie),
            self.breaking.eq(modes.breaking),
        ]

        # ========== 执行侧状态 ==========
        units_busy = self.alu.busy | self.div.busy | self.fpu.busy
        ex_done = Signal()
        unit_error = Signal()
        m.d.comb += [
            ex_done.eq(ex_stage.valid & (self.alu.valid | self.div.valid | self.fpu.valid)),
            unit_error.eq(
                (self.div.valid & self.div.error) | (self.fpu.valid & self.fpu.error)
            ),
            self.ex_retire.eq(ex_done),
        ]
        idle = ~ex_stage.valid & ~units_busy & ~self.mem.busy

        # ========== 主时钟使能 ==========
        m.d.comb += master_ce.eq(
            ~(debug.halt_request & ~mid_cis) & ~cc_write_hold & ~modes.sleep & ~modes.breaking
        )

        # ========== 写回仲裁 ==========
        m.d.comb += [
            wb.gie.eq(gie),
            wb.dbg_we.eq(debug.write_en),
            wb.dbg_reg.eq(debug.bus.reg),
            wb.dbg_value.eq(debug.bus.data),
            wb.mem_valid.eq(self.mem.valid),
            wb.mem_reg.eq(self.mem.wreg),
            wb.mem_value.eq(self.mem.result),
            wb.ex_valid.eq(ex_done & ~unit_error),
            wb.ex_wR.eq(ex.wR),
            wb.ex_wF.eq(ex.wF),
            wb.ex_reg.eq(ex.R),
            wb.ex_value.eq(
                Mux(self.div.valid, self.div.result, Mux(self.fpu.valid, self.fpu.result, self.alu.result))
            ),
            wb.ex_flags.eq(
                Mux(self.div.valid, self.div.flags, Mux(self.fpu.valid, self.fpu.flags, self.alu.flags))
            ),
            wb.ex_user.eq(ex.gie),
        ]
        m.d.comb += [
            regfile.wr_en.eq(wb.reg_ce),
            regfile.wr_addr.eq(wb.reg_id),
            regfile.wr_data.eq(wb.value),
        ]

        target_user = self._user_of(wb.reg_id)
        m.d.comb += self.new_pc.eq(wb.write_pc & (target_user == gie))

        with m.If(self.reset):
            m.d.sync += cc_write_hold.eq(0)
        with m.Else():
            m.d.sync += cc_write_hold.eq(wb.write_cc)

        # ========== 模式控制 ==========
        m.d.comb += [
            modes.reset.eq(self.reset),
            modes.interrupt.eq(self.interrupt),
            modes.idle.eq(idle),
            modes.mid_cis.eq(mid_cis),
            modes.lock_active.eq(buslock.active),
            modes.issue_step.eq(self.issue & ~(op.cis & ~op.phase)),
            modes.ex_retire.eq(ex_done),
            modes.ex_user.eq(ex.gie),
            modes.ex_illegal.eq(ex.illegal),
            modes.ex_fetch_fault.eq(ex.fetch_illegal),
            modes.ex_brk.eq(ex.brk),
            modes.div_error.eq(ex_stage.valid & self.div.valid & self.div.error),
            modes.fpu_error.eq(ex_stage.valid & self.fpu.valid & self.fpu.error),
            modes.mem_error.eq(self.mem.error),
            modes.mem_user.eq(mem_gie),
            modes.write_cc.eq(wb.write_cc),
            modes.write_pc.eq(wb.write_pc),
            modes.target_user.eq(target_user),
            modes.writer_user.eq(Mux(wb.source[1], mem_gie, ex.gie)),
            modes.from_debug.eq(wb.from_debug),
            modes.value.eq(wb.value),
            modes.flags_ce.eq(wb.flags_ce),
            modes.flags.eq(wb.flags),
            modes.flags_user.eq(wb.flags_user),
        ]

        # ========== 流水线清空与取指地址 ==========
        early_taken = Signal()
        m.d.comb += clear.eq(
            self.reset
            | self.new_pc
            | modes.switch
            | modes.release
            | debug.write_en
            | debug.bus.clear_cache
        )

        m.d.comb += [
            self.fetch.new_pc.eq(clear | early_taken),
            self.fetch.clear_cache.eq(debug.bus.clear_cache),
            self.fetch.ready.eq(dcd_stage.ce),
        ]
        with m.If(self.reset):
            m.d.comb += self.fetch.address.eq(cfg.reset_address)
        with m.Elif(self.new_pc):
            m.d.comb += self.fetch.address.eq(wb.value)
        with m.Elif(modes.switch):
            m.d.comb += self.fetch.address.eq(ipc)
        with m.Elif(modes.release):
            m.d.comb += self.fetch.address.eq(upc)
        with m.Elif(early_taken):
            m.d.comb += self.fetch.address.eq(dec.branch_pc)
        with m.Else():
            m.d.comb += self.fetch.address.eq(Mux(gie, upc, ipc))

        # ========== 译码级 ==========
        m.d.comb += [
            dec.insn.eq(dcd.insn),
            dec.pc.eq(dcd.pc),
            dec.gie.eq(gie),
            dec.phase.eq(dcd.phase),
            dec.fetch_illegal.eq(dcd.fetch_illegal),
            dec.ce.eq(op_stage.ce),
        ]

        first_half = dec.cis & ~dcd.phase
        m.d.comb += early_taken.eq(op_stage.ce & dec.early_branch)

        # 译码器比较的上一条访存被清空后，不能再与之流水
        dcd_pipe = Signal()
        if cfg.pipelined_memory:
            pipe_chain = Signal(init=0)
            with m.If(clear):
                m.d.sync += pipe_chain.eq(0)
            with m.Elif(op_stage.ce):
                m.d.sync += pipe_chain.eq(dec.mem)
            m.d.comb += dcd_pipe.eq(dec.pipe & pipe_chain)

        m.d.comb += [
            dcd_stage.upstream_valid.eq(self.fetch.valid),
            dcd_stage.hazard.eq(clear | ~master_ce | (dcd_stage.valid & first_half) | early_taken),
            dcd_stage.downstream_stall.eq(op_stage.stall),
            dcd_stage.downstream_ce.eq(op_stage.ce),
            dcd_stage.clear.eq(clear),
            dcd_stage.hold.eq(first_half),
        ]

        with m.If(dcd_stage.ce):
            m.d.sync += [
                dcd.insn.eq(self.fetch.insn),
                dcd.pc.eq(self.fetch.pc),
                dcd.phase.eq(0),
                dcd.fetch_illegal.eq(self.fetch.illegal),
            ]
        with m.Elif(op_stage.ce & first_half):
            m.d.sync += dcd.phase.eq(1)

        # 译码级读操作数：PC/CC 由核心合成
        m.d.comb += [
            regfile.rd_addr_a.eq(dec.A),
            regfile.rd_addr_b.eq(dec.B),
        ]

        def operand(reg_id, regfile_data):
            value = Signal(32)
            user = self._user_of(reg_id)
            with m.If(reg_is_pc(reg_id)):
                # 读本模式 PC 得到下一字地址
                m.d.comb += value.eq(Mux(user == gie, dcd.pc + 4, Mux(user, upc, ipc)))
            with m.Elif(reg_is_cc(reg_id)):
                m.d.comb += value.eq(Mux(user, modes.ucc, modes.scc))
            with m.Else():
                m.d.comb += value.eq(regfile_data)
            return value

        a_value = operand(dec.A, regfile.rd_data_a)
        b_value = operand(dec.B, regfile.rd_data_b)

        # ========== 冒险检测 ==========
        m.d.comb += [
            hazard.dcd.rA.eq(dec.rA),
            hazard.dcd.A.eq(dec.A),
            hazard.dcd.rB.eq(dec.rB),
            hazard.dcd.B.eq(dec.B),
            hazard.dcd.zero_imm.eq(dec.zero_imm),
            hazard.dcd.cond.eq(dec.cond),
            hazard.dcd.pipe.eq(dcd_pipe),
            hazard.source.op_valid.eq(op_stage.valid),
            hazard.source.op_wR.eq(op.wR),
            hazard.source.op_R.eq(op.R),
            hazard.source.op_wF.eq(op.wF),
            hazard.source.ex_valid.eq(ex_stage.valid),
            hazard.source.ex_pending.eq(ex_stage.valid & ~ex_done),
            hazard.source.ex_wR.eq(ex.wR),
            hazard.source.ex_R.eq(ex.R),
            hazard.source.ex_wF.eq(ex.wF),
            hazard.source.mem_rdbusy.eq(self.mem.rdbusy),
            hazard.source.mem_special.eq(mem_special & self.mem.rdbusy),
            hazard.source.cc_write_hold.eq(cc_write_hold),
        ]

        # ========== 操作数读取级 ==========
        m.d.comb += [
            op_stage.upstream_valid.eq(dcd_stage.valid),
            op_stage.hazard.eq(clear | ~master_ce | hazard.stall),
            op_stage.downstream_stall.eq(ex_stage.stall),
            op_stage.downstream_ce.eq(ex_stage.ce),
            op_stage.clear.eq(clear),
        ]

        # 等待期间跟踪写回，保持操作数最新
        m.d.comb += [
            fwd_a.enable.eq(op_stage.valid & op.rA),
            fwd_a.src_reg.eq(op.A),
            fwd_a.fallback.eq(op.Av),
            fwd_b.enable.eq(op_stage.valid & op.rB & op.zero_imm),
            fwd_b.src_reg.eq(op.B),
            fwd_b.fallback.eq(op.Bv),
        ]
        for fwd in (fwd_a, fwd_b):
            m.d.comb += [
                fwd.wr_en.eq(wb.reg_ce),
                fwd.wr_reg.eq(wb.reg_id),
                fwd.wr_value.eq(wb.value),
            ]

        with m.If(op_stage.ce):
            m.d.sync += [
                op.R.eq(dec.R),
                op.A.eq(dec.A),
                op.B.eq(dec.B),
                op.rA.eq(dec.rA),
                op.rB.eq(dec.rB),
                op.wR.eq(dec.wR),
                op.wF.eq(dec.wF),
                op.zero_imm.eq(dec.zero_imm),
                op.cond.eq(dec.cond),
                op.alu.eq(dec.alu),
                op.mem.eq(dec.mem),
                op.div.eq(dec.div),
                op.fpu.eq(dec.fpu),
                op.opn.eq(dec.opn),
                op.lock.eq(dec.lock),
                op.brk.eq(dec.brk),
                op.illegal.eq(dec.illegal),
                op.fetch_illegal.eq(dcd.fetch_illegal),
                op.cis.eq(dec.cis),
                op.phase.eq(dcd.phase),
                op.pipe.eq(dcd_pipe),
                op.gie.eq(gie),
                op.pc.eq(Mux(dec.early_branch, dec.branch_pc, dec.next_pc)),
                op.Av.eq(a_value),
                op.Bv.eq(Mux(dec.rB, b_value, 0) + dec.imm),
            ]
        with m.Elif(op_stage.valid):
            m.d.sync += [
                op.Av.eq(fwd_a.value),
                op.Bv.eq(fwd_b.value),
            ]

        # ========== 发出 ==========
        flags = Mux(op.gie, modes.uflags, modes.sflags)
        cond_ok = self.cond_ok
        m.d.comb += [
            cond_ok.eq(condition_met(op.cond, flags)),
            self.op_illegal.eq(op_stage.valid & op.illegal),
        ]

        live = cond_ok & ~op.illegal
        op_is_mem = op.mem & live
        op_is_div = op.div & live
        op_is_fpu = op.fpu & live

        adf_ready = (
            ~units_busy
            & ~self.mem.rdbusy
            # 断点和非法指令等待访存排空，保证故障精确
            & ~((op.illegal | op.brk) & self.mem.busy)
        )
        if cfg.pipelined_memory:
            mem_pipe_ok = op.pipe & ~self.mem.pipe_stalled & ~mem_special
        else:
            mem_pipe_ok = C(0, 1)
        mem_ready = ~units_busy & (~self.mem.busy | mem_pipe_ok)

        # 执行侧已有指令时：可能出错、写特殊寄存器或与当前指令相关则等待其退休后
        ex_block = ex_stage.valid & (
            ex.illegal
            | ex.brk
            | ex.slow
            | (ex.wR & reg_is_special(ex.R))
            | (ex.wR & ((op.rA & (ex.R == op.A)) | (op.rB & (ex.R == op.B))))
        )
        special_inflight = mem_special & self.mem.rdbusy
        if cfg.lock:
            lock_wait = op.lock & ~(dcd_stage.valid & self.fetch.valid)
        else:
            lock_wait = C(0, 1)

        # 访存报错的周期不发出，监督模式下随后进入 breaking
        issue_block = (
            clear
            | ~master_ce
            | modes.int_block
            | ex_block
            | special_inflight
            | lock_wait
            | self.mem.error
        )
        m.d.comb += [
            ex_stage.upstream_valid.eq(op_stage.valid),
            ex_stage.hazard.eq(issue_block | Mux(op_is_mem, ~mem_ready, ~adf_ready)),
            ex_stage.downstream_stall.eq(0),
            ex_stage.downstream_ce.eq(ex_done),
            ex_stage.clear.eq(clear),
            ex_stage.capture.eq(~op_is_mem),
        ]

        adf_ce = Signal()
        mem_ce = Signal()
        m.d.comb += [
            self.issue.eq(ex_stage.ce),
            adf_ce.eq(ex_stage.ce & ~op_is_mem),
            mem_ce.eq(ex_stage.ce & op_is_mem),
        ]

        with m.If(self.reset | clear):
            m.d.sync += mid_cis.eq(0)
        with m.Elif(self.issue):
            m.d.sync += mid_cis.eq(op.cis & ~op.phase)

        # 执行单元
        for unit in (self.alu, self.div, self.fpu):
            m.d.comb += [
                unit.op.eq(op.opn),
                unit.a.eq(fwd_a.value),
                unit.b.eq(fwd_b.value),
            ]
        m.d.comb += [
            self.alu.start.eq(adf_ce & ~op_is_div & ~op_is_fpu),
            self.div.start.eq(adf_ce & op_is_div),
            self.fpu.start.eq(adf_ce & op_is_fpu),
        ]

        with m.If(adf_ce):
            m.d.sync += [
                ex.R.eq(op.R),
                ex.wR.eq(op.wR & live),
                ex.wF.eq(op.wF & live),
                ex.pc.eq(op.pc),
                ex.gie.eq(op.gie),
                ex.illegal.eq(op.illegal),
                ex.fetch_illegal.eq(op.fetch_illegal),
                ex.brk.eq(op.brk & live),
                ex.slow.eq(op_is_div | op_is_fpu),
            ]

        # 访存单元
        m.d.comb += [
            self.mem.start.eq(mem_ce),
            self.mem.op.eq(op.opn[:3]),
            self.mem.addr.eq(fwd_b.value),
            self.mem.data.eq(fwd_a.value),
            self.mem.reg.eq(op.R),
            self.mem.lock.eq(buslock.active),
        ]
        with m.If(mem_ce):
            m.d.sync += [
                mem_gie.eq(op.gie),
                mem_special.eq(~op.opn[2] & reg_is_special(op.R)),
                self.fault_address.eq(fwd_b.value),
            ]

        # ========== 总线锁 ==========
        m.d.comb += [
            buslock.lock_issue.eq(adf_ce & op.lock & live if cfg.lock else 0),
            buslock.issue.eq(self.issue),
            buslock.mem_busy.eq(self.mem.busy),
            buslock.clear.eq(clear),
        ]

        # ========== PC 更新 ==========
        # 执行侧退休时前进；出错时停在出错指令；访存在发出时前进
        ex_advance = ex_done & ~ex.illegal & ~ex.brk & ~unit_error
        with m.If(self.reset):
            m.d.sync += [
                ipc.eq(cfg.reset_address),
                upc.eq(cfg.reset_address),
            ]
        with m.Else():
            with m.If(wb.write_pc & ~target_user):
                m.d.sync += ipc.eq(wb.value)
            with m.Elif(mem_ce & ~op.gie):
                m.d.sync += ipc.eq(op.pc)
            with m.Elif(ex_advance & ~ex.gie):
                m.d.sync += ipc.eq(ex.pc)

            if cfg.user_mode:
                with m.If(wb.write_pc & target_user):
                    m.d.sync += upc.eq(wb.value)
                with m.Elif(mem_ce & op.gie):
                    m.d.sync += upc.eq(op.pc)
                with m.Elif(ex_advance & ex.gie):
                    m.d.sync += upc.eq(ex.pc)

        # ========== 调试接口 ==========
        dbg_reg = debug.bus.reg
        m.d.comb += regfile.dbg_addr.eq(dbg_reg)
        dbg_value = Signal(32)
        dbg_user = self._user_of(dbg_reg)
        with m.If(reg_is_pc(dbg_reg)):
            m.d.comb += dbg_value.eq(Mux(dbg_user, upc, ipc))
        with m.Elif(reg_is_cc(dbg_reg)):
            m.d.comb += dbg_value.eq(Mux(dbg_user, modes.ucc, modes.scc))
        with m.Else():
            m.d.comb += dbg_value.eq(regfile.dbg_data)

        m.d.comb += [
            debug.reset.eq(self.reset),
            debug.drained.eq(idle & ~mid_cis & ~cc_write_hold),
            debug.issue.eq(self.issue),
            debug.read_value.eq(dbg_value),
            debug.breaking.eq(modes.breaking),
            debug.bus_err.eq(modes.bus_err),
            debug.gie.eq(gie),
            debug.sleep.eq(modes.sleep),
            debug.fault_address.eq(self.fault_address),
        ]

        return m
