"""
The group interface everything else is written against.

Diffie-Hellman, the subgroup confinement attack and the kangaroo all only
need identity / combine / scale / order, so they work unchanged over the
multiplicative integers mod p, Weierstrass points and Montgomery u
coordinates.
"""
from typing import Any, Iterator

import pytest

from elliptic_curve import (
    EllipticCurveIdentity,
    MontgomeryCurve,
    WeierstrassCurve,
)
from numtheory import mod_divide, mod_exp, mod_inverse

GroupElement = Any


class Group:
    """
    Abstract cyclic group generated by `base` with `order()` elements
    """
    base: GroupElement

    def identity(self) -> GroupElement:
        raise NotImplementedError

    def combine(self, x: GroupElement, y: GroupElement) -> GroupElement:
        raise NotImplementedError

    def invert(self, x: GroupElement) -> GroupElement:
        raise NotImplementedError

    def order(self) -> int:
        raise NotImplementedError

    def key(self, x: GroupElement) -> int:
        """
        Integer digest of an element, for pseudorandom walks
        """
        raise NotImplementedError

    def contains(self, x: GroupElement) -> bool:
        raise NotImplementedError

    def is_identity(self, x: GroupElement) -> bool:
        return x == self.identity()

    def scale(self, x: GroupElement, k: int) -> GroupElement:
        """
        Combine x with itself k times (double-and-add)
        """
        if k < 0:
            return self.scale(self.invert(x), -k)

        result = self.identity()
        while k > 0:
            if k & 1:
                result = self.combine(result, x)
            x = self.combine(x, x)
            k >>= 1

        return result

    def multiples(self, x: GroupElement, count: int) -> Iterator[GroupElement]:
        """
        x^0, x^1, ..., x^(count - 1), one combine each
        """
        current = self.identity()
        for _ in range(0, count):
            yield current
            current = self.combine(current, x)


class MultiplicativeGroup(Group):
    """
    Subgroup of order q of the integers mod p, generated by g
    """

    def __init__(self, p: int, g: int, q: int):
        self.prime = p
        self.base = g % p
        self.q = q

    def __repr__(self):
        return f'MultiplicativeGroup(p={self.prime}, g={self.base}, q={self.q})'

    def identity(self) -> int:
        return 1

    def combine(self, x: int, y: int) -> int:
        return (x * y) % self.prime

    def invert(self, x: int) -> int:
        return mod_inverse(x, self.prime)

    def scale(self, x: int, k: int) -> int:
        return mod_exp(x, k, self.prime)

    def order(self) -> int:
        return self.q

    def key(self, x: int) -> int:
        return x

    def contains(self, x: int) -> bool:
        return 0 < x < self.prime and mod_exp(x, self.q, self.prime) == 1


class WeierstrassGroup(Group):
    def __init__(self, curve: WeierstrassCurve, base, n: int):
        self.curve = curve
        self.base = curve.point(*base)
        self.n = n

    def __repr__(self):
        return f'WeierstrassGroup({self.curve!r}, base={tuple(self.base)}, n={self.n})'

    def identity(self):
        return EllipticCurveIdentity

    def is_identity(self, x) -> bool:
        return x is EllipticCurveIdentity

    def combine(self, x, y):
        return self.curve.add_points(x, y)

    def invert(self, x):
        return self.curve.invert_point(x)

    def scale(self, x, k: int):
        return self.curve.scalar_mult(x, k)

    def order(self) -> int:
        return self.n

    def key(self, x) -> int:
        if x is EllipticCurveIdentity:
            return 0
        return x[0]

    def contains(self, x) -> bool:
        return x in self.curve


class MontgomeryGroup(Group):
    """
    x-only group over a Montgomery curve: elements are bare u coordinates and
    scaling is the ladder.

    u(P) and u(-P) are the same number, so there is no way to add two
    arbitrary u values; combine is not available.  The kangaroo and the
    exact residue search both need it, so they run on the Weierstrass group
    from key_recovery.weierstrass_view.  What does work here is scale, and
    multiples, which walks kP with differential additions.
    """

    def __init__(self, curve: MontgomeryCurve, base_u: int, n: int):
        self.curve = curve
        self.base = base_u % curve.prime
        self.n = n

    def __repr__(self):
        return f'MontgomeryGroup({self.curve!r}, base={self.base}, n={self.n})'

    def identity(self) -> int:
        return 0

    def combine(self, x: int, y: int) -> int:
        raise NotImplementedError(
            'u coordinates alone cannot be added; use the Weierstrass form')

    def invert(self, x: int) -> int:
        return x

    def scale(self, x: int, k: int) -> int:
        return self.curve.ladder(x, k)

    def multiples(self, x: int, count: int) -> Iterator[int]:
        # u((k+1)P) * u((k-1)P) = (u(kP) * u(P) - 1)^2 / (u(kP) - u(P))^2
        p = self.curve.prime
        x = x % p
        previous, current = 0, x
        for k in range(0, count):
            if k < 2:
                yield (previous, current)[k]
                continue

            if previous == 0 or current == 0 or current == x:
                # (0, 0) or the identity along the way
                previous, current = current, self.scale(x, k)
            else:
                previous, current = current, mod_divide(
                    (current * x - 1) ** 2, (current - x) ** 2 * previous, p)
            yield current

    def order(self) -> int:
        return self.n

    def key(self, x: int) -> int:
        return x

    def contains(self, x: int) -> bool:
        return self.curve.u_on_curve(x)


P = 233970423115425145524320034830162017933
BASE = (182, 85518893674295321206118380980485522083)
POINT_ORDER = 29246302889428143187362802287225875743


def test_multiplicative_group():
    group = MultiplicativeGroup(23, 2, 11)
    assert group.scale(2, 11) == 1
    assert group.combine(group.base, group.invert(group.base)) == 1
    assert group.contains(4)
    assert not group.contains(5)  # 5 is a generator of the whole group
    assert group.is_identity(group.scale(group.base, group.order()))
    assert Group.scale(group, 2, 7) == group.scale(2, 7)
    assert group.scale(2, -1) == 12


def test_weierstrass_group():
    group = WeierstrassGroup(WeierstrassCurve(P, -95051, 11279326), BASE, POINT_ORDER)
    assert group.is_identity(group.scale(group.base, group.order()))
    g5 = group.scale(group.base, 5)
    # the generic double-and-add agrees with the curve's own
    assert Group.scale(group, group.base, 5) == g5
    assert group.combine(g5, group.invert(g5)) is EllipticCurveIdentity
    assert group.key(g5) == g5.x
    assert group.key(group.identity()) == 0
    assert group.contains(g5)


def test_montgomery_group():
    group = MontgomeryGroup(MontgomeryCurve(P, 534, 1), 4, POINT_ORDER)
    assert group.scale(group.base, 1) == 4
    assert group.is_identity(group.scale(group.base, group.order()))
    assert group.contains(group.scale(group.base, 12345))
    with pytest.raises(NotImplementedError):
        group.combine(4, 4)


def test_multiples():
    group = MultiplicativeGroup(23, 2, 11)
    assert list(group.multiples(2, 12)) == [pow(2, k, 23) for k in range(0, 12)]

    m_group = MontgomeryGroup(MontgomeryCurve(P, 534, 1), 4, POINT_ORDER)
    assert list(m_group.multiples(4, 40)) == [m_group.scale(4, k) for k in range(0, 40)]

    # order 11 on the twist: the walk passes through the identity twice
    bogus_u = 76600469441198017145391791613091732004
    assert list(m_group.multiples(bogus_u, 25)) == [m_group.scale(bogus_u, k)
                                                    for k in range(0, 25)]
