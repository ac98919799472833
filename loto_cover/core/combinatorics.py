"""
Exact combinatorial primitives used by every other component.
"""
from itertools import islice


def binomial(n, k):
    """
    Exact binomial coefficient C(n, k).

    Multiplicative formula in integer arithmetic: after step i the running
    value equals C(n, i + 1), so every floor division is exact.
    """
    if k < 0 or n < 0 or k > n:
        return 0
    if k == 0 or k == n:
        return 1
    k = min(k, n - k)
    result = 1
    for i in range(k):
        result = result * (n - i) // (i + 1)
    return result


class KCombinations:
    """
    Lazy, restartable sequence of the k-subsets of `elements`.

    Subsets are tuples in ascending lexicographic order of element positions
    (ascending values when `elements` is sorted). Enumeration walks an index
    vector instead of recursing; every iteration is an independent traversal
    and the input is copied, never mutated.
    """

    def __init__(self, elements, k):
        self._elements = tuple(elements)
        self.k = k

    def __len__(self):
        return binomial(len(self._elements), self.k)

    def __iter__(self):
        pool = self._elements
        n = len(pool)
        k = self.k
        if k < 0 or k > n:
            return
        if k == 0:
            yield ()
            return

        indices = list(range(k))
        yield tuple(pool[i] for i in indices)

        while True:
            # Rightmost position that can still move right
            for i in reversed(range(k)):
                if indices[i] != i + n - k:
                    break
            else:
                return
            indices[i] += 1
            for j in range(i + 1, k):
                indices[j] = indices[j - 1] + 1
            yield tuple(pool[i] for i in indices)

    def __repr__(self):
        return f"KCombinations(n={len(self._elements)}, k={self.k}, count={len(self)})"


def k_combinations(elements, k):
    """All k-subsets of elements, lexicographic, as a restartable sequence"""
    return KCombinations(elements, k)


def subset_key(numbers):
    """Canonical integer key of a set of numbers (bitmask, order-free)"""
    key = 0
    for n in numbers:
        key |= 1 << n
    return key


def key_to_numbers(key):
    """Inverse of subset_key: ascending tuple of the numbers in the key"""
    numbers = []
    n = 0
    while key:
        if key & 1:
            numbers.append(n)
        key >>= 1
        n += 1
    return tuple(numbers)


def chunked(iterable, size):
    """Yield lists of at most `size` consecutive items"""
    iterator = iter(iterable)
    while True:
        batch = list(islice(iterator, size))
        if not batch:
            return
        yield batch
