import pytest

from mosdns.lru import LRU

MISSING = object()


def must_get(q, *keys):
    for k in keys:
        assert q.get(k, MISSING) == k


def empty_get(q, *keys):
    for k in keys:
        assert q.get(k, MISSING) is MISSING


def must_pop_oldest(q, *keys):
    for k in keys:
        assert q.pop_oldest() == (k, k)


def add(q, *keys):
    for k in keys:
        q.add(k, k)


def test_add():
    q = LRU(4)
    add(q, 1, 1, 1, 1, 1, 1, 2, 3)
    assert len(q) == 3
    must_get(q, 1, 2, 3)


def test_add_overflow():
    q = LRU(2)
    add(q, 1, 2, 3, 4, 5)
    assert len(q) == 2
    must_get(q, 4, 5)
    empty_get(q, 1, 2, 3)


def test_pop():
    q = LRU(3)
    add(q, 1, 2, 3)
    must_pop_oldest(q, 1, 2, 3)
    assert len(q) == 0
    with pytest.raises(KeyError):
        q.pop_oldest()


def test_del():
    q = LRU(3)
    add(q, 1, 2, 3)
    q.delete(2)
    q.delete(9999)
    must_pop_oldest(q, 1, 3)


def test_clean():
    q = LRU(4)
    add(q, 1, 2, 3, 4)
    assert q.clean(lambda k, v: k in (1, 3)) == 2
    must_pop_oldest(q, 2, 4)


def test_lru_order():
    q = LRU(4)
    add(q, 1, 2, 3, 4)
    must_get(q, 2, 3)
    must_pop_oldest(q, 1, 4, 2, 3)


def test_invalid_size():
    with pytest.raises(ValueError):
        LRU(0)


def test_on_evict_called_on_overflow_delete_and_clean():
    evicted = []
    q = LRU(2, lambda k, v: evicted.append((k, v)))
    q.add("a", 1)
    q.add("b", 2)
    q.add("c", 3)
    assert evicted == [("a", 1)]
    q.delete("b")
    assert evicted == [("a", 1), ("b", 2)]
    q.clean(lambda k, v: True)
    assert evicted == [("a", 1), ("b", 2), ("c", 3)]


def test_flush():
    evicted = []
    q = LRU(4, lambda k, v: evicted.append(k))
    add(q, 1, 2)
    q.flush()
    assert len(q) == 0
    assert evicted == []
    empty_get(q, 1, 2)


def test_update_existing_key():
    q = LRU(2)
    q.add(1, "x")
    q.add(2, "y")
    q.add(1, "z")
    assert q.get(1) == "z"
    assert q.pop_oldest() == (2, "y")