"""
Interdex Prefix Tree Tests
==========================
PrefixTreeMap: insert/lookup, splits, removal compaction, ordered iteration,
and structural verification after randomized workloads.
"""

import os
import random
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from indexing.prefix_key import LowercaseKey, TokenKey
from indexing.prefix_tree import Leaf, PrefixTreeMap, StructuralError, TrieNode


def K(text):
    return LowercaseKey(text)


def _shape(member):
    """Nested tuple describing the tree layout, for before/after comparison."""
    if isinstance(member, Leaf):
        return ("leaf", member.symbols, member.value)
    terminal = _shape(member.terminal) if member.terminal is not None else None
    children = tuple((s, _shape(c)) for s, c in sorted(member.children.items()))
    return ("node", member.prefix, terminal, children)


def _random_words(rng, n, max_len=6, alphabet="abcd"):
    return ["".join(rng.choice(alphabet) for _ in range(rng.randint(0, max_len)))
            for _ in range(n)]


@pytest.fixture
def tree():
    return PrefixTreeMap(LowercaseKey)


# ═══════════════════════════════════════════════════════════════════
# Basic operations
# ═══════════════════════════════════════════════════════════════════

class TestPutGet:

    def test_empty(self, tree):
        assert len(tree) == 0
        assert tree.get(K("a")) is None
        assert list(tree.items()) == []

    def test_insert_and_lookup(self, tree):
        tree.put(K("alpha"), 1)
        assert tree.get(K("alpha")) == 1
        assert K("alpha") in tree
        assert K("alp") not in tree
        assert K("alphas") not in tree

    def test_default_signals_absence(self, tree):
        sentinel = object()
        assert tree.get(K("missing"), sentinel) is sentinel

    def test_put_returns_previous_value(self, tree):
        assert tree.put(K("a"), 1) is None
        assert tree.put(K("a"), 2) == 1
        assert tree.get(K("a")) == 2
        assert len(tree) == 1

    def test_split_on_divergence(self, tree):
        tree.put(K("alpha"), 1)
        tree.put(K("alb"), 2)
        child = tree.root.children[0]
        assert isinstance(child, TrieNode)
        assert child.prefix == K("al").symbol_tuple()
        assert set(child.children) == {K("b").get(0), K("p").get(0)}

    def test_key_that_is_prefix_of_another(self, tree):
        tree.put(K("alpha"), 1)
        tree.put(K("al"), 2)
        tree.put(K("alphabet"), 3)
        assert tree.get(K("al")) == 2
        assert tree.get(K("alpha")) == 1
        assert tree.get(K("alphabet")) == 3
        assert tree.get(K("alph")) is None
        assert tree.verify_structure() == []

    def test_empty_key_is_root_terminal(self, tree):
        tree.put(K(""), 0)
        tree.put(K("a"), 1)
        assert tree.get(K("")) == 0
        assert tree.root.terminal is not None
        assert [str(k) for k in tree.keys()] == ["", "a"]

    def test_split_above_existing_internal_node(self, tree):
        for w in ["abcx", "abcy", "abz"]:
            tree.put(K(w), w)
        node = tree.root.children[0]
        assert node.prefix == K("ab").symbol_tuple()
        inner = node.children[K("c").get(0)]
        assert inner.prefix == K("abc").symbol_tuple()
        assert tree.verify_structure() == []

    def test_rejects_other_key_kind(self, tree):
        with pytest.raises(TypeError):
            tree.put(TokenKey("a"), 1)
        with pytest.raises(TypeError):
            tree.get("alpha")

    def test_rejects_non_key_type(self):
        with pytest.raises(TypeError):
            PrefixTreeMap(str)

    def test_stored_key_is_a_copy(self, tree):
        key = K("abc")
        tree.put(key, 1)
        key.set(0, 25)
        assert tree.get(K("abc")) == 1
        assert tree.get(K("zbc")) is None


# ═══════════════════════════════════════════════════════════════════
# Reference scenario
# ═══════════════════════════════════════════════════════════════════

class TestScenario:

    def test_alpha_alb_beta(self, tree):
        tree.put(K("alpha"), 1)
        tree.put(K("alb"), 2)
        tree.put(K("beta"), 3)

        assert [str(k) for k in tree.keys()] == ["alb", "alpha", "beta"]
        assert tree.get(K("alb")) == 2

        assert tree.remove(K("alpha")) == 1
        assert tree.get(K("alpha")) is None
        assert [str(k) for k in tree.keys()] == ["alb", "beta"]
        assert tree.verify_structure() == []


# ═══════════════════════════════════════════════════════════════════
# Removal
# ═══════════════════════════════════════════════════════════════════

class TestRemove:

    def test_remove_compacts_single_child_node(self, tree):
        tree.put(K("alpha"), 1)
        tree.put(K("alb"), 2)
        tree.remove(K("alpha"))
        # the "al" node had two members; now the leaf hangs off the root
        assert isinstance(tree.root.children[0], Leaf)
        assert tree.verify_structure() == []

    def test_remove_terminal_compacts(self, tree):
        tree.put(K("al"), 1)
        tree.put(K("alpha"), 2)
        assert tree.remove(K("al")) == 1
        assert isinstance(tree.root.children[0], Leaf)
        assert tree.get(K("alpha")) == 2

    def test_compaction_lifts_internal_child(self, tree):
        for w in ["abcx", "abcy", "abz"]:
            tree.put(K(w), w)
        tree.remove(K("abz"))
        node = tree.root.children[0]
        assert node.prefix == K("abc").symbol_tuple()
        assert tree.verify_structure() == []

    def test_compacted_node_is_detached(self, tree):
        tree.put(K("alpha"), 1)
        tree.put(K("alb"), 2)
        node = tree.root.children[0]
        tree.remove(K("alb"))
        assert node.detached

    def test_root_may_keep_one_child(self, tree):
        tree.put(K("a"), 1)
        tree.put(K("b"), 2)
        tree.remove(K("b"))
        assert tree.root.member_count == 1
        assert tree.verify_structure() == []

    def test_remove_everything(self, tree):
        words = ["a", "ab", "abc", "b", "ba"]
        for i, w in enumerate(words):
            tree.put(K(w), i)
        for w in words:
            tree.remove(K(w))
        assert len(tree) == 0
        assert tree.root.member_count == 0
        assert list(tree.items()) == []

    @pytest.mark.parametrize("absent", ["", "a", "al", "alp", "alphas", "alc", "zeta"])
    def test_remove_absent_is_noop(self, tree, absent):
        for w in ["alpha", "alb", "beta"]:
            tree.put(K(w), w)
        before = _shape(tree.root)
        assert tree.remove(K(absent)) is None
        assert _shape(tree.root) == before
        assert len(tree) == 3

    def test_remove_from_empty_tree(self, tree):
        assert tree.remove(K("x")) is None
        assert len(tree) == 0


# ═══════════════════════════════════════════════════════════════════
# Iteration
# ═══════════════════════════════════════════════════════════════════

class TestIteration:

    def test_items_sorted(self, tree):
        words = ["delta", "al", "alpha", "", "b", "alb", "beta"]
        for w in words:
            tree.put(K(w), w.upper())
        assert [(str(k), v) for k, v in tree.items()] == [
            (w, w.upper()) for w in sorted(words)
        ]
        assert list(tree.values()) == [w.upper() for w in sorted(words)]

    def test_iteration_is_lazy_and_restartable(self, tree):
        for w in ["a", "b", "c"]:
            tree.put(K(w), w)
        it = tree.items()
        first_key, _ = next(it)
        assert str(first_key) == "a"
        assert [str(k) for k in tree] == ["a", "b", "c"]
        assert [str(k) for k, _ in it] == ["b", "c"]

    def test_yielded_keys_are_copies(self, tree):
        tree.put(K("abc"), 1)
        key = next(tree.keys())
        key.set(0, 25)
        assert tree.get(K("abc")) == 1

    def test_token_keys_sorted_by_digest(self):
        tree = PrefixTreeMap(TokenKey)
        terms = [f"term{i}" for i in range(50)]
        for t in terms:
            tree.put(TokenKey(t), t)
        keys = [str(k) for k in tree.keys()]
        assert keys == sorted(str(TokenKey(t)) for t in terms)


# ═══════════════════════════════════════════════════════════════════
# Randomized workloads
# ═══════════════════════════════════════════════════════════════════

class TestRandomized:

    @pytest.mark.parametrize("seed", [1, 7, 42])
    def test_matches_dict_model(self, seed):
        rng = random.Random(seed)
        tree = PrefixTreeMap(LowercaseKey)
        model = {}
        for word in _random_words(rng, 400):
            if rng.random() < 0.35 and model:
                victim = rng.choice(sorted(model))
                assert tree.remove(K(victim)) == model.pop(victim)
            else:
                value = rng.randint(0, 10**6)
                assert tree.put(K(word), value) == model.get(word)
                model[word] = value

            assert len(tree) == len(model)

        keys = [str(k) for k in tree.keys()]
        assert keys == sorted(model)
        assert len(keys) == len(set(keys))
        for word, value in model.items():
            assert tree.get(K(word)) == value
        assert tree.verify_structure() == []

    def test_strictly_increasing_after_churn(self):
        rng = random.Random(99)
        tree = PrefixTreeMap(LowercaseKey)
        words = _random_words(rng, 300, max_len=8, alphabet="abc")
        for w in words:
            tree.put(K(w), None)
        for w in words[::3]:
            tree.remove(K(w))
        keys = list(tree.keys())
        assert all(a < b for a, b in zip(keys, keys[1:]))


# ═══════════════════════════════════════════════════════════════════
# Verification
# ═══════════════════════════════════════════════════════════════════

class TestVerifyStructure:

    def test_detects_single_member_node(self, tree):
        tree.put(K("alpha"), 1)
        tree.put(K("alb"), 2)
        node = tree.root.children[0]
        del node.children[K("b").get(0)]
        tree._size = 1
        issues = tree.verify_structure()
        assert any("1 member" in i for i in issues)

    def test_detects_misplaced_member(self, tree):
        tree.put(K("alpha"), 1)
        tree.put(K("beta"), 2)
        tree.root.children[K("c").get(0)] = tree.root.children.pop(K("b").get(0))
        assert any("misplaced" in i for i in tree.verify_structure())

    def test_sole_member_requires_one(self):
        node = TrieNode((0,))
        with pytest.raises(StructuralError):
            node.sole_member()
