"""Unit tests for the provenance index."""

import pytest

from provenance import DerivedRef, OriginalRef, ProvenanceError, ProvenanceIndex


def test_expand_nested_entries():
    index = ProvenanceIndex()
    index.node_refs = {0: OriginalRef(0), 1: OriginalRef(1)}
    index.edge_refs = {0: OriginalRef(2)}
    merged = index.add_new([0, 1], [0])
    assert merged == DerivedRef(0)
    index.node_refs[2] = merged
    index.edge_refs[1] = OriginalRef(3)
    outer = index.add_new([2], [1])
    assert index.sons[1] == [DerivedRef(0), OriginalRef(3)]
    assert index.expand([outer]) == {0, 1, 2, 3}


def test_shared_entries_are_expanded_once():
    index = ProvenanceIndex()
    shared = index.add_entry([OriginalRef(0), OriginalRef(1)])
    first = index.add_entry([shared, OriginalRef(2)])
    second = index.add_entry([shared, OriginalRef(3)])
    assert index.expand([first, second, OriginalRef(4)]) == {0, 1, 2, 3, 4}


def test_deep_chain_does_not_recurse():
    index = ProvenanceIndex()
    ref = OriginalRef(0)
    for position in range(1, 5000):
        ref = index.add_entry([ref, OriginalRef(position)])
    assert len(index.expand([ref])) == 5000


def test_forward_reference_is_rejected():
    index = ProvenanceIndex()
    with pytest.raises(ProvenanceError):
        index.add_entry([DerivedRef(0)])


def test_dangling_reference_is_rejected():
    index = ProvenanceIndex()
    with pytest.raises(ProvenanceError):
        index.expand([DerivedRef(3)])


def test_cycle_is_rejected():
    index = ProvenanceIndex()
    index.sons.append([DerivedRef(0)])
    with pytest.raises(ProvenanceError):
        index.expand([DerivedRef(0)])
