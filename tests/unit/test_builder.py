"""Tests for CallTreeBuilder — trace addresses, subtraces, elision, sequencing."""

import random

import pytest

from parity_tracer.builder import BuilderPhase, CallNestingError, CallTreeBuilder
from parity_tracer.hexutil import address_from_int
from parity_tracer.opcodes import CallOpcode
from parity_tracer.precompiles import StaticPrecompileResolver
from parity_tracer.trace_types import ExecutionContext, TraceError

PRECOMPILE = address_from_int(0x01)
OTHER_PRECOMPILE = address_from_int(0x02)


def _addr(n: int) -> bytes:
    """Non-precompile address."""
    return address_from_int(0x1000 + n)


def _make_builder() -> CallTreeBuilder:
    return CallTreeBuilder(StaticPrecompileResolver([PRECOMPILE, OTHER_PRECOMPILE]))


def _make_context(**overrides) -> ExecutionContext:
    fields = dict(
        block_hash=b"\x11" * 32,
        block_number=15_000_000,
        transaction_hash=b"\x22" * 32,
        transaction_position=4,
    )
    fields.update(overrides)
    return ExecutionContext(**fields)


def _start(builder: CallTreeBuilder, to: bytes = None, create: bool = False):
    builder.start_execution(
        _make_context(), create, _addr(0), to or _addr(1), b"\xaa", 100_000, 0
    )


def _call(builder: CallTreeBuilder, to: bytes, op=CallOpcode.CALL, value=None):
    builder.enter(op, _addr(1), to, b"\x01\x02", 5_000, value)


def _ret(builder: CallTreeBuilder, output: bytes = b"", error=None):
    builder.exit(output, 1_000, error)


class _RecordingResolver(StaticPrecompileResolver):
    def __init__(self):
        super().__init__([PRECOMPILE])
        self.calls = []

    def resolve(self, block_number, block_time=0):
        self.calls.append((block_number, block_time))
        return super().resolve(block_number, block_time)


class TestScenarios:
    def test_root_only(self):
        builder = _make_builder()
        _start(builder)

        items = builder.finish_execution(b"\x01", 21_000)

        assert len(items) == 1
        assert items[0].trace_address == []
        assert items[0].subtraces == 0
        assert items[0].is_last_in_transaction is True
        assert items[0].sequence_index == 0

    def test_nested_chain(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))
        _call(builder, _addr(3))
        _ret(builder)
        _ret(builder)

        items = builder.finish_execution(b"", 50_000)

        assert [i.trace_address for i in items] == [[], [0], [0, 0]]
        assert items[0].subtraces == 1
        assert items[1].subtraces == 1
        assert items[2].subtraces == 0

    def test_precompile_then_sibling(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, PRECOMPILE)
        _ret(builder, b"\x00" * 32)
        _call(builder, _addr(3))
        _ret(builder)

        items = builder.finish_execution(b"", 50_000)

        assert len(items) == 2
        assert items[0].subtraces == 1
        assert items[1].action.to_address == _addr(3)
        assert items[1].trace_address == [0]

    def test_reverted_call_keeps_error_and_output(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))
        _ret(builder, b"\x08\xc3\x79\xa0", error=RuntimeError("execution reverted"))
        _call(builder, _addr(3))
        _ret(builder)

        items = builder.finish_execution(b"", 50_000)

        assert items[1].error == "execution reverted"
        assert items[1].result.output == b"\x08\xc3\x79\xa0"
        assert items[2].error is None
        assert items[2].trace_address == [1]
        assert items[0].subtraces == 2


class TestTraceAddresses:
    def test_siblings_numbered_in_open_order(self):
        builder = _make_builder()
        _start(builder)
        for n in range(3):
            _call(builder, _addr(10 + n))
            _ret(builder)

        items = builder.finish_execution(b"", 0)

        assert [i.trace_address for i in items[1:]] == [[0], [1], [2]]
        assert items[0].subtraces == 3

    def test_address_uses_parent_count_at_open_time(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))
        _ret(builder)
        _call(builder, _addr(3))
        _call(builder, _addr(4))
        _ret(builder)
        _call(builder, _addr(5))
        _ret(builder)
        _ret(builder)

        items = builder.finish_execution(b"", 0)

        assert [i.trace_address for i in items] == [[], [0], [1], [1, 0], [1, 1]]
        assert [i.subtraces for i in items] == [2, 0, 2, 0, 0]

    def test_records_in_open_order_not_close_order(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))
        _call(builder, _addr(3))
        _ret(builder)
        _ret(builder)

        items = builder.finish_execution(b"", 0)

        assert [i.action.to_address for i in items] == [_addr(1), _addr(2), _addr(3)]

    def test_random_trees_keep_children_contiguous(self):
        rng = random.Random(1234)
        for _ in range(50):
            items = _drive_random_tree(_make_builder(), rng, max_calls=40)

            addresses = [tuple(i.trace_address) for i in items]
            assert addresses[0] == ()
            assert addresses == sorted(addresses)
            assert len(set(addresses)) == len(addresses)
            by_address = {tuple(i.trace_address): i for i in items}
            for item in items:
                address = tuple(item.trace_address)
                children = [a[-1] for a in addresses if a[:-1] == address and a]
                assert children == list(range(item.subtraces))
                if address:
                    assert address[:-1] in by_address


def _drive_random_tree(builder, rng, max_calls):
    _start(builder)
    opened = 1
    depth = 1
    while True:
        can_open = opened < max_calls and depth < 6
        if can_open and rng.random() < 0.55:
            to = PRECOMPILE if rng.random() < 0.2 else _addr(rng.randrange(2, 50))
            _call(builder, to)
            opened += 1
            depth += 1
        elif depth > 1:
            _ret(builder)
            depth -= 1
        else:
            return builder.finish_execution(b"", 0)


class TestElision:
    def test_decrements_parent_not_previous_sibling(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))
        _ret(builder)
        _call(builder, PRECOMPILE)
        _ret(builder)

        items = builder.finish_execution(b"", 0)

        assert len(items) == 2
        assert items[0].subtraces == 1
        assert items[1].subtraces == 0

    def test_nested_precompile_decrements_its_own_parent(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))
        _call(builder, OTHER_PRECOMPILE)
        _ret(builder)
        _ret(builder)

        items = builder.finish_execution(b"", 0)

        assert [i.trace_address for i in items] == [[], [0]]
        assert items[0].subtraces == 1
        assert items[1].subtraces == 0

    def test_slot_is_reused_after_elision(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))
        _ret(builder)
        _call(builder, PRECOMPILE)
        _ret(builder)
        _call(builder, _addr(3))
        _ret(builder)

        items = builder.finish_execution(b"", 0)

        assert [i.trace_address for i in items] == [[], [0], [1]]
        assert items[0].subtraces == 2

    def test_earlier_sibling_addresses_untouched(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))
        _call(builder, _addr(3))
        _ret(builder)
        _ret(builder)
        _call(builder, PRECOMPILE)
        _ret(builder)

        items = builder.finish_execution(b"", 0)

        assert [i.trace_address for i in items] == [[], [0], [0, 0]]
        assert items[1].subtraces == 1

    def test_precompile_subtree_is_removed(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, PRECOMPILE)
        _call(builder, _addr(5))
        _ret(builder)
        _ret(builder)
        _call(builder, _addr(6))
        _ret(builder)

        items = builder.finish_execution(b"", 0)

        assert [i.action.to_address for i in items] == [_addr(1), _addr(6)]
        assert items[0].subtraces == 1
        assert items[1].trace_address == [0]

    def test_root_call_into_precompile_yields_empty_trace(self):
        builder = _make_builder()
        _start(builder, to=PRECOMPILE)

        assert builder.finish_execution(b"", 0) == []
        assert builder.phase is BuilderPhase.IDLE

    def test_elided_record_leaves_open_records(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, PRECOMPILE)
        _ret(builder)

        assert len(builder.records) == 1
        assert builder.records[0].subtraces == 0
        assert builder.depth == 1


class TestSequencing:
    def test_indices_gap_free_and_single_last_flag(self):
        builder = _make_builder()
        _start(builder)
        for n in range(4):
            _call(builder, _addr(n + 2))
            _call(builder, PRECOMPILE)
            _ret(builder)
            _ret(builder)

        items = builder.finish_execution(b"", 0)

        assert [i.sequence_index for i in items] == list(range(len(items)))
        assert [i.is_last_in_transaction for i in items] == [False] * 4 + [True]

    def test_finalized_items_are_immutable(self):
        builder = _make_builder()
        _start(builder)

        item = builder.finish_execution(b"", 0)[0]

        with pytest.raises(Exception):
            item.subtraces = 5


class TestRecordFields:
    def test_kind_and_call_type(self):
        builder = _make_builder()
        _start(builder, create=True)
        _call(builder, _addr(2), op=CallOpcode.DELEGATECALL)
        _ret(builder)
        _call(builder, _addr(3), op=CallOpcode.CREATE2)
        _ret(builder)
        _call(builder, _addr(4), op="SELFDESTRUCT")
        _ret(builder)
        _call(builder, _addr(5), op="INVALID")
        _ret(builder)

        items = builder.finish_execution(b"", 0)

        assert [(i.trace_type, i.action.call_type) for i in items] == [
            ("create", "create"),
            ("call", "delegatecall"),
            ("create", "create2"),
            ("suicide", "selfdestruct"),
            ("unknown", "invalid"),
        ]

    def test_input_and_output_are_copied(self):
        builder = _make_builder()
        _start(builder)
        buffer = bytearray(b"\x01\x02\x03")
        builder.enter(CallOpcode.CALL, _addr(1), _addr(2), buffer, 10, None)
        buffer[0] = 0xFF
        out = bytearray(b"\x09")
        builder.exit(out, 5)
        out[0] = 0x00

        record = builder.records[1]
        assert record.input == b"\x01\x02\x03"
        assert record.output == b"\x09"

    def test_value_encoding(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2), value=None)
        _ret(builder)
        _call(builder, _addr(3), value=0)
        _ret(builder)
        _call(builder, _addr(4), value=256)
        _ret(builder)

        values = [r.value for r in builder.records[1:]]
        assert values == [None, b"", b"\x01\x00"]

    def test_context_fields_copied(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))
        _ret(builder)

        items = builder.finish_execution(b"", 0)

        for item in items:
            assert item.block_hash == b"\x11" * 32
            assert item.block_number == 15_000_000
            assert item.transaction_hash == b"\x22" * 32
            assert item.transaction_position == 4

    def test_gas_and_gas_used(self):
        builder = _make_builder()
        _start(builder)
        builder.enter(CallOpcode.CALL, _addr(1), _addr(2), b"", 7_000, None)
        builder.exit(b"", 2_500)

        items = builder.finish_execution(b"", 42_000)

        assert items[0].action.gas == 100_000
        assert items[0].result.gas_used == 42_000
        assert items[1].action.gas == 7_000
        assert items[1].result.gas_used == 2_500

    def test_typed_error_is_kept(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))
        _ret(builder, error=TraceError(kind="OutOfGasError", message="out of gas"))

        record = builder.records[1]
        assert record.error == TraceError(kind="OutOfGasError", message="out of gas")

    def test_bad_address_does_not_touch_parent(self):
        builder = _make_builder()
        _start(builder)

        with pytest.raises(ValueError):
            builder.enter(CallOpcode.CALL, _addr(1), b"\x01", b"", 0, None)

        assert builder.records[0].subtraces == 0
        assert builder.depth == 1

    def test_bad_gas_used_leaves_call_open(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, PRECOMPILE)

        with pytest.raises(ValueError):
            builder.exit(b"", -1)

        assert builder.depth == 2
        assert builder.phase is BuilderPhase.STARTED
        builder.exit(b"", 5)
        items = builder.finish_execution(b"", 0)
        assert len(items) == 1
        assert items[0].subtraces == 0

    def test_bad_output_leaves_call_untouched(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))

        with pytest.raises(ValueError):
            builder.exit("0xzz", 5)

        assert builder.depth == 2
        assert builder.records[1].gas_used == 0

    def test_bad_root_gas_used_keeps_root_open(self):
        builder = _make_builder()
        _start(builder)

        with pytest.raises(ValueError):
            builder.finish_execution(b"", -1)

        assert builder.depth == 1
        assert len(builder.finish_execution(b"", 21_000)) == 1


class TestLifecycle:
    def test_bad_root_arguments_leave_builder_idle(self):
        builder = _make_builder()

        with pytest.raises(ValueError):
            builder.start_execution(
                _make_context(), False, _addr(0), b"\x01", b"", 0, None
            )

        assert builder.phase is BuilderPhase.IDLE
        assert builder.depth == 0
        with pytest.raises(CallNestingError):
            _call(builder, _addr(2))
        with pytest.raises(CallNestingError):
            builder.finish_execution(b"", 0)

    def test_bad_root_arguments_discard_previous_execution(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))

        with pytest.raises(TypeError):
            builder.start_execution(
                _make_context(), False, _addr(0), _addr(1), b"", 1.5, None
            )

        assert builder.phase is BuilderPhase.IDLE
        assert builder.records == ()

    def test_precompiles_resolved_for_block(self):
        resolver = _RecordingResolver()
        builder = CallTreeBuilder(resolver)

        builder.start_execution(
            _make_context(block_number=99, block_time=7),
            False,
            _addr(0),
            _addr(1),
            b"",
            0,
            None,
        )

        assert resolver.calls == [(99, 7)]
        assert builder.precompiles == frozenset({PRECOMPILE})

    def test_restart_discards_previous_execution(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))
        _call(builder, _addr(3))

        _start(builder, to=_addr(9))
        items = builder.finish_execution(b"", 0)

        assert len(items) == 1
        assert items[0].action.to_address == _addr(9)

    def test_missing_context_defaults_to_zero(self):
        builder = _make_builder()
        builder.start_execution(None, False, _addr(0), _addr(1), b"", 0, None)

        item = builder.finish_execution(b"", 0)[0]

        assert item.block_number == 0
        assert item.block_hash == bytes(32)

    def test_finish_resets_to_idle(self):
        builder = _make_builder()
        _start(builder)
        builder.finish_execution(b"", 0)

        assert builder.phase is BuilderPhase.IDLE
        assert builder.records == ()
        assert builder.depth == 0

    def test_abandon_drops_state(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))

        builder.abandon()

        assert builder.phase is BuilderPhase.IDLE
        assert builder.records == ()


class TestContractViolations:
    def test_enter_before_start(self):
        with pytest.raises(CallNestingError):
            _call(_make_builder(), _addr(2))

    def test_exit_before_start(self):
        with pytest.raises(CallNestingError):
            _ret(_make_builder())

    def test_finish_before_start(self):
        with pytest.raises(CallNestingError):
            _make_builder().finish_execution(b"", 0)

    def test_finish_with_open_child_fails(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))

        with pytest.raises(CallNestingError):
            builder.finish_execution(b"", 0)
        assert builder.phase is BuilderPhase.FAILED

    def test_exit_on_root_fails(self):
        builder = _make_builder()
        _start(builder)

        with pytest.raises(CallNestingError):
            _ret(builder)
        assert builder.phase is BuilderPhase.FAILED
        assert builder.records == ()

    def test_second_root_cannot_be_opened(self):
        builder = _make_builder()
        _start(builder)
        with pytest.raises(CallNestingError):
            _ret(builder)

        with pytest.raises(CallNestingError):
            _call(builder, _addr(2))
        with pytest.raises(CallNestingError):
            builder.finish_execution(b"", 0)

    def test_exit_after_child_closed_on_root_fails(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))
        _ret(builder)

        with pytest.raises(CallNestingError):
            _ret(builder)
        assert builder.phase is BuilderPhase.FAILED

    def test_failed_builder_rejects_operations(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))
        with pytest.raises(CallNestingError):
            builder.finish_execution(b"", 0)

        with pytest.raises(CallNestingError):
            _call(builder, _addr(3))
        with pytest.raises(CallNestingError):
            _ret(builder)

    def test_start_recovers_failed_builder(self):
        builder = _make_builder()
        _start(builder)
        _call(builder, _addr(2))
        with pytest.raises(CallNestingError):
            builder.finish_execution(b"", 0)

        _start(builder)
        items = builder.finish_execution(b"", 0)

        assert len(items) == 1
        assert builder.phase is BuilderPhase.IDLE
