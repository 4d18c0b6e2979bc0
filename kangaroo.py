"""
Pollard's kangaroo (lambda) method for discrete logs known to lie in [a, b].

Two pseudorandom walks through the group, y := y * g^f(y).  The tame one
starts at g^b and its endpoint is remembered; the wild one starts at the
target.  Once the wild walk lands anywhere on the tame walk's path the two
move in lockstep, so it ends up on the remembered endpoint and the distances
travelled give the index.  O(sqrt(b - a)) time, constant space.
"""
import logging
import random
from math import isqrt
from typing import Dict, NamedTuple, Optional

import pytest

from errors import NoCollisionFoundError
from groups import Group, GroupElement, MultiplicativeGroup
from params import DH_KANGAROO, KANGAROO_Y_20, KANGAROO_Y_40, WEIERSTRASS_128

logger = logging.getLogger(__name__)

DEFAULT_CONSTANT = 4
DEFAULT_ATTEMPTS = 6


class KangarooRange(NamedTuple):
    low: int
    high: int

    @property
    def width(self) -> int:
        return self.high - self.low


class JumpFunction:
    """
    f(y) = 2^(y mod k), with y reduced to an integer by group.key.

    A non-zero seed mixes the seed into the index so retries take different
    walks.
    """

    def __init__(self, group: Group, k: int, seed: int = 0):
        assert k > 0
        self.group = group
        self.k = k
        self.seed = seed

    def __repr__(self):
        return f'JumpFunction(k={self.k}, seed={self.seed})'

    def index(self, element: GroupElement) -> int:
        key = self.group.key(element)
        if self.seed == 0:
            return key % self.k
        return hash((self.seed, key)) % self.k

    def __call__(self, element: GroupElement) -> int:
        return 2 ** self.index(element)

    def jump_sizes(self):
        return [2 ** i for i in range(0, self.k)]

    def mean(self) -> float:
        return sum(self.jump_sizes()) / self.k

    def iterations(self, constant: int = DEFAULT_CONSTANT) -> int:
        """
        Length of the tame run: the mean jump times a small constant
        """
        return int(constant * self.mean())


def default_jump_function(group: Group, width: int, seed: int = 0) -> JumpFunction:
    """
    Pick k so that the mean jump is about sqrt(width) / 2
    """
    target = max(1, isqrt(max(width, 1)) // 2)
    k = 1
    while (2 ** k - 1) // k < target:
        k += 1

    return JumpFunction(group, k, seed)


def kangaroo_attack(group: Group,
                    g: GroupElement,  # cyclic group generator
                    y: GroupElement,  # target, y = g^x
                    a: int,  # lower bound
                    b: int,  # upper bound
                    f: JumpFunction,
                    N: int,
                    ) -> int:
    """
    Return x in [a, b] with g^x = y, or raise NoCollisionFoundError
    """
    # only k distinct jumps, so only k powers of g are ever needed
    precomputed_powers: Dict[int, GroupElement] = {
        s: group.scale(g, s) for s in f.jump_sizes()}

    # "Tame Kangaroo"
    xT = 0
    yT = group.scale(g, b)
    for _ in range(0, N):
        jump = f(yT)
        xT += jump
        yT = group.combine(yT, precomputed_powers[jump])

    logger.debug('Tame kangaroo done: N=%d xT=%d', N, xT)

    # yT = g^(b + xT).  Now the wild kangaroo, starting from y.
    xW = 0
    yW = y
    if yW == yT:
        return b + xT

    iterations = 0
    while xW < b - a + xT:
        iterations += 1
        jump = f(yW)
        xW += jump
        yW = group.combine(yW, precomputed_powers[jump])

        if yW == yT:
            # Boom
            logger.debug('Wild kangaroo caught in %d iterations', iterations)
            return b + xT - xW

    raise NoCollisionFoundError(
        f'Kangaroo sequences did not intersect ({f}, N={N}, range [{a}, {b}])')


def solve_bounded_dlog(group: Group,
                       g: GroupElement,
                       y: GroupElement,
                       a: int,
                       b: int,
                       attempts: int = DEFAULT_ATTEMPTS,
                       constant: int = DEFAULT_CONSTANT,
                       k: Optional[int] = None,
                       ) -> int:
    """
    Kangaroo with retries: every failed attempt gets a fresh jump function
    seed and a longer tame run
    """
    seed = 0
    for attempt in range(0, attempts):
        if k is None:
            f = default_jump_function(group, b - a, seed)
        else:
            f = JumpFunction(group, k, seed)

        try:
            return kangaroo_attack(group, g, y, a, b, f, f.iterations(constant))
        except NoCollisionFoundError:
            logger.debug('Kangaroo attempt %d failed (%s)', attempt + 1, f)
            seed = random.getrandbits(64) or 1
            constant *= 2

    raise NoCollisionFoundError(
        f'No collision after {attempts} attempts in range [{a}, {b}]')


def kangaroo_from_residue(group: Group,
                          y: GroupElement,
                          n: int,
                          r: int,
                          upper: Optional[int] = None,
                          **kwargs) -> int:
    """
    Finish a secret x with y = g^x when x = n mod r is already known.

        x = n + m*r
        y' = y * g^-n = (g^r)^m

    and m is in [0, (order - 1) / r], small enough for the kangaroo.  Pass
    upper when x is known to be below something smaller than the order.
    """
    order = group.order()
    g = group.base
    g_ = group.scale(g, r)
    y_ = group.combine(y, group.invert(group.scale(g, n)))
    bounds = KangarooRange(0, (min(upper or order, order) - 1) // r)

    logger.info('Kangaroo over [%d, %d] for x = %d mod %d',
                bounds.low, bounds.high, n, r)
    m = solve_bounded_dlog(group, g_, y_, bounds.low, bounds.high, **kwargs)

    return (n + m * r) % order


def test_jump_function():
    group = MultiplicativeGroup(DH_KANGAROO.p, DH_KANGAROO.g, DH_KANGAROO.q)
    f = JumpFunction(group, 20)
    assert f(21) == 2
    assert f(40) == 1
    assert f.iterations() == 4 * (2 ** 20 - 1) // 20
    assert f(12345) in f.jump_sizes()
    assert JumpFunction(group, 20, seed=99)(12345) in f.jump_sizes()

    assert default_jump_function(group, 2 ** 20).k == 13


def test_kangaroo_y_20():
    group = DH_KANGAROO.group()
    f = JumpFunction(group, 20)
    # k = 13 for a 2^20 range, mean jump about 630
    x = solve_bounded_dlog(group, group.base, KANGAROO_Y_20, 0, 2 ** 20)
    assert x == 705485
    assert kangaroo_attack(group, group.base, group.scale(group.base, 2 ** 20),
                           0, 2 ** 20, f, 10) == 2 ** 20


@pytest.mark.slow
def test_kangaroo_y_40():
    group = DH_KANGAROO.group()
    # k = 24, a few million multiplications mod p
    x = solve_bounded_dlog(group, group.base, KANGAROO_Y_40, 0, 2 ** 40)
    assert x == 359579674340


def test_kangaroo_planted_exponents():
    random.seed(58)
    group = DH_KANGAROO.group()
    trials = 25
    for _ in range(trials):
        a = random.randrange(0, 2 ** 30)
        b = a + 2 ** 20
        x = random.randint(a, b)
        y = group.scale(group.base, x)
        assert solve_bounded_dlog(group, group.base, y, a, b) == x


def test_kangaroo_single_attempt_success_rate():
    random.seed(60)
    group = MultiplicativeGroup(DH_KANGAROO.p, DH_KANGAROO.g, DH_KANGAROO.q)
    width = 2 ** 16
    successes = 0
    trials = 40
    for _ in range(trials):
        x = random.randint(0, width)
        y = group.scale(group.base, x)
        f = default_jump_function(group, width, seed=random.getrandbits(32) or 1)
        try:
            assert kangaroo_attack(group, group.base, y, 0, width, f,
                                   f.iterations(8)) == x
            successes += 1
        except NoCollisionFoundError:
            pass

    assert successes >= trials * 0.8


def test_kangaroo_no_collision():
    group = DH_KANGAROO.group()
    f = JumpFunction(group, 4)
    y = group.scale(group.base, 2 ** 30)
    with pytest.raises(NoCollisionFoundError):
        kangaroo_attack(group, group.base, y, 0, 2 ** 10, f, 4)
    with pytest.raises(NoCollisionFoundError):
        solve_bounded_dlog(group, group.base, y, 0, 2 ** 10, attempts=2)


def test_kangaroo_from_residue_on_curve():
    random.seed(59)
    group = WEIERSTRASS_128.group()
    secret = random.randrange(1, group.order())
    y = group.scale(group.base, secret)
    # everything but about 2^16 of the secret is known
    r = group.order() // 2 ** 16 + 1
    assert kangaroo_from_residue(group, y, secret % r, r) == secret


def test_kangaroo_from_residue_upper():
    random.seed(5840)
    group = DH_KANGAROO.group()
    secret = random.randint(0, 2 ** 40)
    y = group.scale(group.base, secret)
    r = 2 ** 28
    assert kangaroo_from_residue(group, y, secret % r, r, upper=2 ** 40 + 1) == secret
