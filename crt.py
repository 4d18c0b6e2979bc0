"""
Chinese Remainder combination of recovered residues.

A residue found with an x-only (Montgomery) probe is only known up to sign,
since k*u and -k*u are the same u.  So every constraint carries a small set of
candidates and the combiner carries all combinations through the merge.
"""
from itertools import combinations
from math import gcd, prod
from typing import Callable, FrozenSet, Iterable, NamedTuple

import pytest

from errors import NonCoprimeModuliError
from numtheory import crt_inductive


class ResidueConstraint(NamedTuple):
    modulus: int
    residues: FrozenSet[int]

    @staticmethod
    def exact(residue: int, modulus: int) -> 'ResidueConstraint':
        return ResidueConstraint(modulus, frozenset([residue % modulus]))

    @staticmethod
    def up_to_sign(residue: int, modulus: int) -> 'ResidueConstraint':
        return ResidueConstraint(
            modulus, frozenset([residue % modulus, -residue % modulus]))

    def admits(self, x: int) -> bool:
        return x % self.modulus in self.residues


class CombinedResidues(NamedTuple):
    modulus: int
    candidates: FrozenSet[int]

    def restrict(self, constraint: ResidueConstraint) -> 'CombinedResidues':
        """
        Drop candidates that disagree with a constraint on a divisor of the
        modulus
        """
        assert self.modulus % constraint.modulus == 0, \
            f'{constraint.modulus} does not divide {self.modulus}'
        return CombinedResidues(
            self.modulus,
            frozenset(c for c in self.candidates if constraint.admits(c)))


def check_coprime(moduli) -> None:
    for m1, m2 in combinations(moduli, 2):
        d = gcd(m1, m2)
        if d != 1:
            raise NonCoprimeModuliError(
                f'Moduli {m1} and {m2} share the factor {d}')


def combine_constraints(constraints: Iterable[ResidueConstraint]) -> CombinedResidues:
    """
    Merge the constraints two at a time.  The result holds every residue mod
    prod(moduli) consistent with some choice of candidate from each
    constraint.
    """
    constraints = list(constraints)
    check_coprime([c.modulus for c in constraints])

    modulus = 1
    candidates = frozenset([0])
    for constraint in constraints:
        candidates = frozenset(
            crt_inductive([(c, modulus), (r, constraint.modulus)])[0]
            for c in candidates
            for r in constraint.residues)
        modulus *= constraint.modulus

    return CombinedResidues(modulus, candidates)


def prune_candidates(combined: CombinedResidues,
                     check: Callable[[int], bool]) -> CombinedResidues:
    return CombinedResidues(
        combined.modulus,
        frozenset(c for c in combined.candidates if check(c)))


def test_combine_exact():
    constraints = [ResidueConstraint.exact(0, 3),
                   ResidueConstraint.exact(3, 4),
                   ResidueConstraint.exact(4, 5)]
    assert combine_constraints(constraints) == CombinedResidues(60, frozenset([39]))


def test_combine_consumes_generator_once():
    constraints = (ResidueConstraint.exact(x % q, q) for x, q in [(10, 7), (10, 11)])
    assert combine_constraints(constraints) == CombinedResidues(77, frozenset([10]))


def test_combine_empty():
    assert combine_constraints([]) == CombinedResidues(1, frozenset([0]))


def test_combine_signed():
    secret = 123456
    moduli = [11, 107, 197]
    constraints = [ResidueConstraint.up_to_sign(secret, q) for q in moduli]
    combined = combine_constraints(constraints)
    assert combined.modulus == prod(moduli)
    assert len(combined.candidates) == 8
    assert secret % combined.modulus in combined.candidates
    assert -secret % combined.modulus in combined.candidates

    # a query mod 11 * 107 cuts it down to +/- the secret mod 11 * 107 * 197
    narrowed = combined.restrict(ResidueConstraint.up_to_sign(secret, 11 * 107))
    assert len(narrowed.candidates) == 4
    narrowed = narrowed.restrict(ResidueConstraint.up_to_sign(secret, 11 * 197))
    assert narrowed.candidates == frozenset(
        [secret % combined.modulus, -secret % combined.modulus])


def test_combine_not_coprime():
    with pytest.raises(NonCoprimeModuliError):
        combine_constraints([ResidueConstraint.exact(1, 6),
                             ResidueConstraint.exact(1, 5),
                             ResidueConstraint.exact(1, 9)])


def test_prune_candidates():
    combined = CombinedResidues(15, frozenset([1, 4, 11, 14]))
    assert prune_candidates(combined, lambda c: c < 10).candidates == frozenset([1, 4])
