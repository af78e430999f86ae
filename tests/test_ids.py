"""Tests for identifier allocation."""

from lectern.ids import ID_LENGTH, IdAllocator, new_id


def _fixed_entropy(value: int):
    return lambda n: value.to_bytes(n, "big")


def test_ids_are_fixed_length_base32():
    item_id = new_id()
    assert len(item_id) == ID_LENGTH
    assert set(item_id) <= set("0123456789ABCDEFGHJKMNPQRSTVWXYZ")


def test_ids_are_unique():
    allocator = IdAllocator()
    ids = [allocator.allocate() for _ in range(5000)]
    assert len(set(ids)) == len(ids)


def test_ids_sort_by_creation_time():
    clock = iter([1000.0, 1000.5, 2000.0])
    allocator = IdAllocator(clock=lambda: next(clock))
    first, second, third = (allocator.allocate() for _ in range(3))
    assert first < second < third


def test_same_millisecond_increments_random_part():
    allocator = IdAllocator(clock=lambda: 1234.567, entropy=_fixed_entropy(42))
    first = allocator.allocate()
    second = allocator.allocate()
    assert second > first
    # Same timestamp prefix (first 10 chars encode the 48-bit time).
    assert first[:10] == second[:10]


def test_clock_going_backwards_stays_monotonic():
    clock = iter([5000.0, 4000.0])
    allocator = IdAllocator(clock=lambda: next(clock))
    first = allocator.allocate()
    second = allocator.allocate()
    assert second > first


def test_random_overflow_rolls_to_next_millisecond():
    allocator = IdAllocator(clock=lambda: 1.0, entropy=_fixed_entropy((1 << 80) - 1))
    first = allocator.allocate()
    second = allocator.allocate()
    assert second > first
    assert first[:10] != second[:10]
