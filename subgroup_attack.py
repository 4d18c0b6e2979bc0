"""
Small subgroup confinement.

A victim that raises whatever element it is sent to its secret, without
checking the element belongs to the agreed group, leaks its secret modulo
the order of that element.  Send it elements of small prime or prime power
order q (from
the integers mod p, from a curve that differs only in b, or from the
quadratic twist of a Montgomery curve), brute force which power of the
element came back, and collect secret mod q for enough q to CRT the secret
back together.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from itertools import combinations
from math import prod
from random import randint
from typing import Callable, Dict, FrozenSet, List, NamedTuple, Optional, Sequence

import pytest

from crt import CombinedResidues, ResidueConstraint, combine_constraints
from elliptic_curve import MAX_TRIES, MontgomeryCurve, WeierstrassCurve, unchecked_point
from errors import PointOfOrderNotFoundError, ResidueNotFoundError
from groups import Group, GroupElement, MontgomeryGroup, MultiplicativeGroup, WeierstrassGroup
from numtheory import (
    crt_inductive,
    mod_exp,
    prime_factors,
    prime_power_factor,
    small_factors,
    small_prime_powers,
)
from params import (
    DH_SMOOTH_COFACTOR,
    INVALID_CURVES_128,
    MONTGOMERY_128,
    WEIERSTRASS_128,
    InvalidCurve,
)

logger = logging.getLogger(__name__)

Victim = Callable[[GroupElement], GroupElement]


class AttackConfig(NamedTuple):
    factor_bound: int = 2**16
    target: Optional[int] = None  # stop once prod(moduli) >= target
    max_tries: int = MAX_TRIES
    workers: int = 1
    skip: FrozenSet[int] = frozenset()


class Probe(NamedTuple):
    modulus: int
    element: GroupElement  # what gets sent to the victim
    group: Group  # the subgroup <element>, for brute forcing the answer
    signed: bool  # answers only identify the residue up to sign


class ProbeSource:
    """
    Where malicious elements of small order come from
    """
    skip: FrozenSet[int] = frozenset()

    def moduli(self, bound: int) -> List[int]:
        raise NotImplementedError

    def probe(self,
              q: int,
              max_tries: int = MAX_TRIES,
              factors: Optional[List[int]] = None) -> Probe:
        raise NotImplementedError


def find_element_of_order(r: int,
                          p: int,
                          max_tries: int = MAX_TRIES,
                          factors: Optional[List[int]] = None) -> int:
    """
    Element of order exactly r in the integers mod p.  factors are the
    primes of r; r / f must not already kill the candidate for any of them.
    """
    assert (p - 1) % r == 0, f'{r} does not divide p - 1'
    factors = factors or prime_factors(r)
    for _ in range(0, max_tries):
        h = mod_exp(randint(2, p - 1), (p - 1) // r, p)
        if any(mod_exp(h, r // f, p) == 1 for f in factors):
            continue

        assert mod_exp(h, r, p) == 1, f'Element h should have had order {r}'
        return h

    raise PointOfOrderNotFoundError(f'Unable to find element of order {r} mod {p}')


class MultiplicativeProbes(ProbeSource):
    """
    Elements of small order in Z_p^*, using the small factors of the
    cofactor j = (p - 1) / q
    """

    def __init__(self, p: int, j: int):
        self.prime = p
        self.j = j

    def moduli(self, bound: int) -> List[int]:
        return list(small_prime_powers(self.j, max_factor=bound))

    def probe(self, q, max_tries=MAX_TRIES, factors=None) -> Probe:
        h = find_element_of_order(q, self.prime, max_tries, factors)
        return Probe(q, h, MultiplicativeGroup(self.prime, h, q), False)


class InvalidCurveProbes(ProbeSource):
    """
    Points of small order on curves y^2 = x^3 + a*x + b' sharing p and a with
    the victim's curve.  The victim's addition never reads b, so it computes
    on the sibling curve without noticing.
    """

    def __init__(self, curve: WeierstrassCurve, invalid_curves: Sequence[InvalidCurve]):
        self.curve = curve
        self.siblings = [(curve.with_b(c.b), c.order) for c in invalid_curves]

    def moduli(self, bound: int) -> List[int]:
        # one power per prime, the largest any sibling offers
        found: Dict[int, int] = {}
        for _, order in self.siblings:
            for q in small_factors(order, max_factor=bound):
                e = prime_power_factor(order, q)
                while q ** e > bound:
                    e -= 1
                found[q] = max(found.get(q, 1), q ** e)
        return sorted(found.values())

    def probe(self, q, max_tries=MAX_TRIES, factors=None) -> Probe:
        """
        A sibling's group is not always cyclic (b = 210 has three points of
        order 2 and none of order 4), so a prime power order q^e falls back
        to q^(e-1) and below when no sibling has a point of that order.
        """
        factors = factors or prime_factors(q)
        candidates = [q]
        if len(factors) == 1:
            f = factors[0]
            while candidates[-1] > f:
                candidates.append(candidates[-1] // f)

        for r in candidates:
            for sibling, order in self.siblings:
                if order % r != 0:
                    continue
                try:
                    pt = sibling.find_point_of_order(r, order, max_tries, factors)
                except PointOfOrderNotFoundError:
                    logger.debug('No point of order %d on %s', r, sibling)
                    continue

                return Probe(r, unchecked_point(pt.x, pt.y),
                             WeierstrassGroup(sibling, pt, r), False)

        raise PointOfOrderNotFoundError(f'No sibling curve has a point of order {q}')


class TwistProbes(ProbeSource):
    """
    u coordinates on the quadratic twist of a Montgomery curve.  A ladder
    takes any u, and a u whose u^3 + A*u^2 + u is not a square lands on the
    twist, whose order may be smooth even when the curve's is not.
    """
    # u = 0 is both the identity and the order 2 point.  4 is fine: the
    # order 4 points have u = 1 and u = -1.
    skip = frozenset([2])

    def __init__(self, curve: MontgomeryCurve, twist_order: int):
        self.curve = curve
        self.twist_order = twist_order

    def moduli(self, bound: int) -> List[int]:
        return list(small_prime_powers(self.twist_order, max_factor=bound))

    def probe(self, q, max_tries=MAX_TRIES, factors=None) -> Probe:
        factors = factors or prime_factors(q)
        u = self.curve.find_twist_point_of_order(q, self.twist_order, max_tries, factors)
        return Probe(q, u, MontgomeryGroup(self.curve, u, q), True)


def recover_residue(probe: Probe, response: GroupElement) -> ResidueConstraint:
    """
    Find r in [0, q) with element^r = response
    """
    group, q = probe.group, probe.modulus
    if probe.signed:
        # x-only: r and q - r give the same answer, so half the range will do.
        # For even q, u = 0 is both r = 0 and r = q / 2, so keep looking.
        matches = set()
        for r, element in enumerate(group.multiples(probe.element, q // 2 + 1)):
            if element == response:
                matches.update([r, -r % q])
                if q % 2 == 1:
                    break
        if matches:
            return ResidueConstraint(q, frozenset(matches))
    else:
        for r, element in enumerate(group.multiples(probe.element, q)):
            if element == response:
                return ResidueConstraint.exact(r, q)

    raise ResidueNotFoundError(
        f'Could not find element^x = response in subgroup of order {q}')


class ResidueCollector:
    """
    Append-only list of constraints, safe to add to from several threads
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._constraints: List[ResidueConstraint] = []

    def append(self, constraint: ResidueConstraint) -> None:
        with self._lock:
            self._constraints.append(constraint)

    def moduli(self) -> List[int]:
        with self._lock:
            return [c.modulus for c in self._constraints]

    def product(self) -> int:
        return prod(self.moduli())

    def constraints(self) -> List[ResidueConstraint]:
        with self._lock:
            return sorted(self._constraints, key=lambda c: c.modulus)


class SubgroupConfinementAttack:
    def __init__(self,
                 victim: Victim,
                 victim_order: int,
                 source: ProbeSource,
                 config: AttackConfig = AttackConfig()):
        self.victim = victim
        self.victim_order = victim_order
        self.source = source
        self.config = config

    @property
    def target(self) -> int:
        return self.config.target or self.victim_order

    def probe_modulus(self, q: int) -> Optional[ResidueConstraint]:
        """
        One round trip: build an element of order q, have the victim raise it
        to its secret, recover secret mod q.  None when q has to be skipped.
        The constraint's modulus can be a smaller power of the same prime
        when no element of order q turned up.
        """
        start = time.time()
        try:
            probe = self.source.probe(q, self.config.max_tries)
            response = self.victim(probe.element)
            constraint = recover_residue(probe, response)
        except (PointOfOrderNotFoundError, ResidueNotFoundError) as err:
            logger.warning('Skipping modulus %d: %s', q, err)
            return None

        logger.info('Secret = %s mod %d (duration %.2fs)',
                    sorted(constraint.residues), constraint.modulus, time.time() - start)
        return constraint

    def moduli(self) -> List[int]:
        skip = self.config.skip | self.source.skip
        return [q for q in self.source.moduli(self.config.factor_bound)
                if q not in skip]

    def run(self) -> List[ResidueConstraint]:
        """
        Collect residues until the moduli multiply past the target (the whole
        secret, by default) or the small factors run out.
        """
        collector = ResidueCollector()
        moduli = self.moduli()
        workers = max(1, self.config.workers)

        if workers == 1:
            for q in moduli:
                if collector.product() >= self.target:
                    break
                constraint = self.probe_modulus(q)
                if constraint is not None:
                    collector.append(constraint)
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                for start in range(0, len(moduli), workers):
                    if collector.product() >= self.target:
                        break
                    batch = moduli[start:start + workers]
                    for constraint in executor.map(self.probe_modulus, batch):
                        if constraint is not None:
                            collector.append(constraint)

        constraints = collector.constraints()
        recovered = prod(c.modulus for c in constraints)
        if recovered >= self.victim_order:
            logger.info('Recovered the whole secret from %d residues', len(constraints))
        else:
            logger.info('Recovered secret mod %d (%d residues); %d bits remain',
                        recovered, len(constraints),
                        (self.victim_order // recovered).bit_length())

        return constraints

    def disambiguate(self, constraints: Sequence[ResidueConstraint]) -> CombinedResidues:
        """
        Signed residues leave 2^k combinations after CRT.  Query elements of
        order q1 * q2: the answer says whether the signs mod q1 and q2 agree,
        which halves the candidates.  Stops at the pair {c, -c}.
        """
        combined = combine_constraints(constraints)
        by_modulus: Dict[int, ResidueConstraint] = {c.modulus: c for c in constraints}
        pairs = sorted(combinations(sorted(by_modulus), 2), key=lambda pair: pair[0] * pair[1])

        for q1, q2 in pairs:
            if len(combined.candidates) <= 2:
                break

            q = q1 * q2
            options = {crt_inductive([(r1, q1), (r2, q2)])[0]
                       for r1 in by_modulus[q1].residues
                       for r2 in by_modulus[q2].residues}
            if len(options) <= 2:
                # residue 0 mod q1 or q2, no sign to fix
                continue

            try:
                probe = self.source.probe(q, self.config.max_tries,
                                          factors=prime_factors(q1) + prime_factors(q2))
            except PointOfOrderNotFoundError as err:
                logger.warning('Skipping pair (%d, %d): %s', q1, q2, err)
                continue

            response = self.victim(probe.element)
            matches = frozenset(c for c in options
                                if probe.group.scale(probe.element, c) == response)
            if not matches:
                logger.warning('Victim answer for order %d matched nothing', q)
                continue

            combined = combined.restrict(ResidueConstraint(q, matches))
            logger.info('Secret = +/-%d mod %d (now %d possibilities)',
                        min(matches), q, len(combined.candidates))

        return combined


def _victim(group: Group, secret: int) -> Victim:
    # raises whatever it is sent to its secret, no questions asked
    return lambda element: group.scale(element, secret)


def test_find_element_of_order():
    p = DH_SMOOTH_COFACTOR.p
    for q in small_factors(DH_SMOOTH_COFACTOR.j, max_factor=2**10):
        h = find_element_of_order(q, p)
        assert h != 1
        assert mod_exp(h, q, p) == 1

    with pytest.raises(PointOfOrderNotFoundError):
        # h^(11 / 1) = 1 for every candidate, so all of them are rejected
        find_element_of_order(11, 23, max_tries=5, factors=[1, 11])


def test_recover_residue_exact():
    group = MultiplicativeGroup(23, 2, 11)
    probe = Probe(11, 2, group, False)
    for x in range(0, 11):
        assert recover_residue(probe, pow(2, x, 23)) == ResidueConstraint.exact(x, 11)

    with pytest.raises(ResidueNotFoundError):
        # 5 generates all of Z_23^*
        recover_residue(probe, 5)


def test_recover_residue_signed():
    source = TwistProbes(MONTGOMERY_128.curve(), MONTGOMERY_128.twist_order())
    probe = source.probe(107)
    for x in [0, 1, 53, 54, 106, 1000]:
        constraint = recover_residue(probe, probe.group.scale(probe.element, x))
        assert constraint == ResidueConstraint.up_to_sign(x, 107)


def test_recover_residue_signed_modulus_four():
    source = TwistProbes(MONTGOMERY_128.curve(), MONTGOMERY_128.twist_order())
    probe = source.probe(4)
    assert probe.modulus == 4
    for x in range(0, 9):
        constraint = recover_residue(probe, probe.group.scale(probe.element, x))
        # u = 0 for both 0 and 2, u = 1 or -1 for both 1 and 3
        assert constraint == ResidueConstraint(4, frozenset([x % 2, x % 2 + 2]))


def test_moduli_are_prime_powers():
    params = DH_SMOOTH_COFACTOR
    multiplicative = MultiplicativeProbes(params.p, params.j)
    assert 9 in multiplicative.moduli(2**10)
    assert 3 not in multiplicative.moduli(2**10)
    assert multiplicative.moduli(8) == [2, 3, 5]

    invalid = InvalidCurveProbes(WEIERSTRASS_128.curve(), INVALID_CURVES_128)
    assert 4 in invalid.moduli(2**10)
    assert 2 not in invalid.moduli(2**10)

    twist = TwistProbes(MONTGOMERY_128.curve(), MONTGOMERY_128.twist_order())
    assert twist.moduli(2**24) == [4, 11, 107, 197, 1621, 105143, 405373, 2323367]


def test_element_of_prime_power_order():
    params = DH_SMOOTH_COFACTOR
    h = find_element_of_order(9, params.p)
    assert mod_exp(h, 9, params.p) == 1
    assert mod_exp(h, 3, params.p) != 1


def test_invalid_curve_modulus_four():
    group = WEIERSTRASS_128.group()
    secret = randint(1, group.order() - 1)
    source = InvalidCurveProbes(WEIERSTRASS_128.curve(), INVALID_CURVES_128)
    probe = source.probe(4)
    # b = 210 has no point of order 4, b = 727 does
    assert probe.modulus == 4
    assert probe.group.curve.b == 727
    constraint = recover_residue(probe, group.scale(probe.element, secret))
    assert constraint == ResidueConstraint.exact(secret, 4)


def test_invalid_curve_falls_back_to_smaller_power():
    curve = WEIERSTRASS_128.curve()
    siblings = [c for c in INVALID_CURVES_128 if c.b in (210, 504)]
    source = InvalidCurveProbes(curve, siblings)
    assert 4 in source.moduli(2**10)
    probe = source.probe(4, max_tries=10)
    assert probe.modulus == 2
    assert probe.group.curve.b == 504


def test_multiplicative_attack():
    params = DH_SMOOTH_COFACTOR
    secret = randint(1, params.q - 1)
    attack = SubgroupConfinementAttack(_victim(params.group(), secret),
                                       params.q,
                                       MultiplicativeProbes(params.p, params.j),
                                       AttackConfig(factor_bound=2**12))
    constraints = attack.run()
    assert constraints
    for constraint in constraints:
        assert len(constraint.residues) == 1
        assert constraint.admits(secret)


def test_run_stops_at_target():
    params = DH_SMOOTH_COFACTOR
    attack = SubgroupConfinementAttack(_victim(params.group(), 12345),
                                       params.q,
                                       MultiplicativeProbes(params.p, params.j),
                                       AttackConfig(target=2))
    constraints = attack.run()
    assert [c.modulus for c in constraints] == [2]
    assert constraints[0].admits(12345)


def test_invalid_curve_residues():
    group = WEIERSTRASS_128.group()
    secret = randint(1, group.order() - 1)
    source = InvalidCurveProbes(WEIERSTRASS_128.curve(), INVALID_CURVES_128)
    assert source.moduli(2**10) == sorted(set(source.moduli(2**10)))

    attack = SubgroupConfinementAttack(_victim(group, secret), group.order(), source,
                                       AttackConfig(factor_bound=2**10))
    constraints = attack.run()
    assert len(constraints) == len(attack.moduli())
    for constraint in constraints:
        assert constraint.admits(secret)


def test_invalid_curve_probe_is_off_curve():
    curve = WEIERSTRASS_128.curve()
    source = InvalidCurveProbes(curve, INVALID_CURVES_128)
    q = source.moduli(2**10)[-1]
    probe = source.probe(q)
    assert probe.element not in curve
    assert probe.group.is_identity(probe.group.scale(probe.element, q))


def test_parallel_run_matches_sequential():
    group = WEIERSTRASS_128.group()
    secret = randint(1, group.order() - 1)
    source = InvalidCurveProbes(WEIERSTRASS_128.curve(), INVALID_CURVES_128)
    config = AttackConfig(factor_bound=2**10)
    sequential = SubgroupConfinementAttack(_victim(group, secret), group.order(),
                                           source, config).run()
    parallel = SubgroupConfinementAttack(_victim(group, secret), group.order(),
                                         source, config._replace(workers=4)).run()
    assert sequential == parallel


def test_skipped_moduli():
    params = DH_SMOOTH_COFACTOR
    attack = SubgroupConfinementAttack(_victim(params.group(), 99),
                                       params.q,
                                       MultiplicativeProbes(params.p, params.j),
                                       AttackConfig(factor_bound=2**10, skip=frozenset([2])))
    assert 2 not in attack.moduli()


def test_unanswerable_modulus_is_skipped():
    params = DH_SMOOTH_COFACTOR
    # a victim that answers with garbage outside every small subgroup
    attack = SubgroupConfinementAttack(lambda element: 3,
                                       params.q,
                                       MultiplicativeProbes(params.p, params.j),
                                       AttackConfig(factor_bound=2**10))
    assert attack.probe_modulus(attack.moduli()[-1]) is None


def test_twist_attack_and_disambiguate():
    params = MONTGOMERY_128
    group = params.group()
    secret = randint(1, params.n - 1)
    source = TwistProbes(params.curve(), params.twist_order())
    attack = SubgroupConfinementAttack(_victim(group, secret), params.n, source,
                                       AttackConfig(factor_bound=2048))
    assert 2 not in attack.moduli()
    assert {4, 11, 107, 197, 1621} <= set(attack.moduli())

    constraints = attack.run()
    for constraint in constraints:
        assert constraint.admits(secret)
        assert constraint.admits(-secret)

    combined = attack.disambiguate(constraints)
    M = combined.modulus
    assert combined.candidates == frozenset([secret % M, -secret % M])


def test_residue_collector():
    collector = ResidueCollector()
    assert collector.product() == 1
    collector.append(ResidueConstraint.exact(3, 7))
    collector.append(ResidueConstraint.exact(1, 5))
    assert collector.product() == 35
    assert [c.modulus for c in collector.constraints()] == [5, 7]
