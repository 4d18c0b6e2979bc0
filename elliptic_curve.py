import logging
from random import randrange
from typing import List, NamedTuple, Optional, Tuple, Union

import pytest

from errors import NotASquareError, PointNotOnCurveError, PointOfOrderNotFoundError
from numtheory import PrimeField, mod_divide, mod_inverse

logger = logging.getLogger(__name__)

MAX_TRIES = 50
MAX_SAMPLES = 5_000


class _Identity:
    """
    The point at infinity.  It has no coordinates; there is exactly one of it
    so comparisons are by identity.
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return 'Identity'

    def __reduce__(self):
        return (_Identity, ())


EllipticCurveIdentity = _Identity()


class AffinePoint(NamedTuple):
    x: int
    y: int


EllipticCurvePoint = Union[AffinePoint, _Identity]


def unchecked_point(x: int, y: int) -> AffinePoint:
    """
    Build a point WITHOUT checking it against any curve equation.

    Used to hand a victim coordinates from a sibling curve.  Legitimate flows
    go through WeierstrassCurve.point.
    """
    return AffinePoint(x, y)


class EllipticCurve:
    """
    Abstract class for typing
    """
    prime: int

    def __contains__(self, p1) -> bool:
        raise NotImplementedError

    def find_point_on_curve(self):
        raise NotImplementedError

    def is_identity(self, point) -> bool:
        raise NotImplementedError


class WeierstrassCurve(EllipticCurve):
    """
    Curve defined by y^2 = x^3 + a*x + b
    """

    def __init__(self, p: int, a: int, b: int):
        self.prime = p
        self.field = PrimeField(p)
        self.a = a % p
        self.b = b % p

    def __repr__(self):
        return f'WeierstrassCurve({self.prime}, {self.a}, {self.b})'

    def __str__(self):
        return (
            f'EllipticCurve y^2 = x^3 + {self.a}x + {self.b} '
            f'mod {self.prime}'
        )

    def __eq__(self, other):
        if not isinstance(other, WeierstrassCurve):
            return NotImplemented
        return (self.prime, self.a, self.b) == (other.prime, other.a, other.b)

    def __hash__(self):
        return hash((self.prime, self.a, self.b))

    def with_b(self, b: int) -> 'WeierstrassCurve':
        """
        Sibling curve: same field and a, different b.  Point addition never
        looks at b, so a victim that skips validation computes on it happily.
        """
        return WeierstrassCurve(self.prime, self.a, b)

    def rhs(self, x: int) -> int:
        return (x * x * x + self.a * x + self.b) % self.prime

    def on_curve(self, x: int, y: int) -> bool:
        return (y * y) % self.prime == self.rhs(x)

    def __contains__(self, p1) -> bool:
        if p1 is EllipticCurveIdentity:
            return True

        x, y = p1
        return self.on_curve(x, y)

    def point(self, x: int, y: int) -> AffinePoint:
        """
        Validating constructor
        """
        x, y = x % self.prime, y % self.prime
        if not self.on_curve(x, y):
            raise PointNotOnCurveError(f'({x}, {y}) is not on {self}')

        return AffinePoint(x, y)

    def is_identity(self, point: EllipticCurvePoint) -> bool:
        return point is EllipticCurveIdentity

    def invert_point(self, p1: EllipticCurvePoint) -> EllipticCurvePoint:
        """
        Return the inverse of the given elliptic curve point
        """
        if p1 is EllipticCurveIdentity:
            return p1

        return AffinePoint(p1[0], (self.prime - p1[1]) % self.prime)

    def add_points(self,
                   p1: EllipticCurvePoint,
                   p2: EllipticCurvePoint,
                   ) -> EllipticCurvePoint:
        if p1 is EllipticCurveIdentity:
            return p2

        if p2 is EllipticCurveIdentity:
            return p1

        if p1 == self.invert_point(p2):
            return EllipticCurveIdentity

        p = self.prime
        x1, y1 = p1
        x2, y2 = p2
        if p1 == p2:
            m = mod_divide(3 * x1 * x1 + self.a, 2 * y1, p)
        else:
            m = mod_divide(y2 - y1, x2 - x1, p)

        x3 = (m * m - x1 - x2) % p
        y3 = (m * (x1 - x3) - y1) % p

        return AffinePoint(x3, y3)

    def double_point(self, p1: EllipticCurvePoint) -> EllipticCurvePoint:
        return self.add_points(p1, p1)

    def scalar_mult(self,
                    p1: EllipticCurvePoint,
                    n: int) -> EllipticCurvePoint:
        """
        Return a point added to itself n times
        """
        if n < 0:
            return self.scalar_mult(self.invert_point(p1), -n)

        y = EllipticCurveIdentity
        if p1 is EllipticCurveIdentity:
            return y

        z = AffinePoint(*p1)
        while n > 0:
            if n % 2 == 1:
                y = self.add_points(z, y)
            n = n // 2
            if n > 0:
                z = self.double_point(z)

        return y

    def point_order_divides(self, p1: EllipticCurvePoint, n: int) -> bool:
        return self.is_identity(self.scalar_mult(p1, n))

    def find_point_on_curve(self) -> AffinePoint:
        for _ in range(0, MAX_SAMPLES):
            x = randrange(0, self.prime)
            try:
                y = self.field.sqrt(self.rhs(x))
            except NotASquareError:
                # about half of all x are like this
                continue

            return self.point(x, y)

        raise PointOfOrderNotFoundError(f'Unable to find point on {self}')

    def find_point_of_order(self,
                            r: int,
                            curve_order: int,
                            max_tries: int = MAX_TRIES,
                            factors: Optional[List[int]] = None,
                            ) -> AffinePoint:
        """
        Random point times curve_order / r.  Its order divides r, so for prime
        r it is either the identity (try again) or has order exactly r.  For
        a prime power or composite r pass its prime factors; the order is
        exact when no r / f multiple is the identity.
        """
        assert curve_order % r == 0, f'{r} does not divide {curve_order}'
        factors = factors or [r]
        for _ in range(0, max_tries):
            pt = self.find_point_on_curve()
            candidate_point = self.scalar_mult(pt, curve_order // r)
            if any(self.point_order_divides(candidate_point, r // f) for f in factors):
                logger.debug('Landed on a smaller order looking for order %d', r)
                continue

            assert self.point_order_divides(candidate_point, r), \
                f'Point did not have order {r}'
            return candidate_point

        raise PointOfOrderNotFoundError(
            f'Unable to find point of order {r} on curve {self}')


def cswap(n1: int, n2: int, bit: int) -> Tuple[int, int]:
    """
    Swap n1 and n2 when bit is 1, using a mask rather than a branch
    """
    mask = -(bit & 1)
    dummy = mask & (n1 ^ n2)
    return (n1 ^ dummy, n2 ^ dummy)


class MontgomeryCurve(EllipticCurve):
    """
    Curve defined by B*v^2 = u^3 + A*u^2 + u

    Points are usually handled as the bare u coordinate.  u = 0 stands for
    both the identity and the order 2 point (0, 0).
    """

    def __init__(self, p: int, a: int, b: int = 1):
        self.prime = p
        self.field = PrimeField(p)
        self.a = a % p
        self.b = b % p
        assert self.b != 0, 'B must be non-zero'

    def __repr__(self):
        return f'MontgomeryCurve({self.prime}, {self.a}, {self.b})'

    def __str__(self):
        return (
            f'MontgomeryCurve {self.b}v^2 = u^3 + {self.a}u^2 + u '
            f'mod {self.prime}'
        )

    def v_squared(self, u: int) -> int:
        p = self.prime
        rhs = (u * u * u + self.a * u * u + u) % p
        return mod_divide(rhs, self.b, p)

    def __contains__(self, p1) -> bool:
        # p1 is (u, v)
        u, v = p1
        p = self.prime

        return (self.b * v * v) % p == (u * u * u + self.a * u * u + u) % p

    def u_on_curve(self, u: int) -> bool:
        return self.field.is_square(self.v_squared(u))

    def u_on_twist(self, u: int) -> bool:
        """
        u values whose v^2 is a non-residue belong to the quadratic twist
        """
        return not self.field.is_square(self.v_squared(u))

    def lift_x(self, u: int) -> List[Tuple[int, int]]:
        """
        Both (u, v) points for a u on the curve, smaller v first
        """
        p = self.prime
        v = self.field.sqrt(self.v_squared(u))
        if v == 0:
            return [(u % p, 0)]

        return sorted([(u % p, v), (u % p, p - v)])

    def is_identity(self, point: int) -> bool:
        return point == 0

    def ladder(self, u: int, k: int) -> int:
        return montgomery_ladder(self, u, k)

    def point_order_divides(self, u: int, n: int) -> bool:
        """
        True when n * (u, v) is the identity.  Checked on the projective
        ladder output, where (0, 0) still has a non-zero w.
        """
        return montgomery_ladder_projective(self, u, n)[1] == 0

    def twist_order(self, curve_order: int) -> int:
        """
        Curve and twist together have 2p + 2 points
        """
        return 2 * self.prime + 2 - curve_order

    def find_point_on_curve(self) -> int:
        for _ in range(0, MAX_SAMPLES):
            u = randrange(1, self.prime)
            if self.u_on_curve(u):
                return u

        raise PointOfOrderNotFoundError(f'Unable to find point on {self}')

    def find_twist_point(self) -> int:
        for _ in range(0, MAX_SAMPLES):
            u = randrange(1, self.prime)
            if self.u_on_twist(u):
                return u

        raise PointOfOrderNotFoundError(f'Unable to find twist point of {self}')

    def find_point_of_order(self,
                            r: int,
                            curve_order: int,
                            max_tries: int = MAX_TRIES,
                            factors: Optional[List[int]] = None,
                            ) -> int:
        return self._u_of_order(self.find_point_on_curve, r, curve_order,
                                max_tries, factors)

    def find_twist_point_of_order(self,
                                  r: int,
                                  twist_order: int,
                                  max_tries: int = MAX_TRIES,
                                  factors: Optional[List[int]] = None,
                                  ) -> int:
        return self._u_of_order(self.find_twist_point, r, twist_order,
                                max_tries, factors)

    def _u_of_order(self, sample, r, order, max_tries, factors):
        assert order % r == 0, f'{r} does not divide {order}'
        factors = factors or [r]
        for _ in range(0, max_tries):
            u = self.ladder(sample(), order // r)
            if u == 0 or any(self.point_order_divides(u, r // f) for f in factors):
                logger.debug('Landed on a smaller order looking for order %d', r)
                continue

            assert self.point_order_divides(u, r), f'u did not have order {r}'
            return u

        raise PointOfOrderNotFoundError(
            f'Unable to find u of order {r} (group order {order}) for {self}')


def montgomery_ladder_projective(curve: MontgomeryCurve, u: int, k: int) -> Tuple[int, int]:
    """
    k * (u, v) as (U, W) with u = U / W, computed from u alone and branch
    free over a fixed number of bits.  W = 0 is the identity.
    """
    p = curve.prime
    a = curve.a
    u = u % p

    u2, w2 = (1, 0)
    u3, w3 = (u, 1)

    for i in reversed(range(0, max(p.bit_length(), k.bit_length()))):
        b = 1 & (k >> i)
        u2, u3 = cswap(u2, u3, b)
        w2, w3 = cswap(w2, w3, b)
        u3, w3 = (pow(u2 * u3 - w2 * w3, 2, p),
                  (u * pow(u2 * w3 - w2 * u3, 2, p)) % p)
        u2, w2 = (pow(u2 * u2 - w2 * w2, 2, p),
                  (4 * u2 * w2 * (u2 * u2 + a * u2 * w2 + w2 * w2)) % p)
        u2, u3 = cswap(u2, u3, b)
        w2, w3 = cswap(w2, w3, b)

    return u2, w2


def montgomery_ladder(curve: MontgomeryCurve, u: int, k: int) -> int:
    """
    u coordinate of k * (u, v).  The final w2^(p-2) is the inversion, and
    turns w2 = 0 (the identity) into 0.
    """
    p = curve.prime
    u2, w2 = montgomery_ladder_projective(curve, u, k)
    return (u2 * pow(w2, p - 2, p)) % p


class CurveIsomorphism:
    """
    Maps points between a Montgomery curve B*v^2 = u^3 + A*u^2 + u and the
    short Weierstrass curve it is birationally equivalent to:

        u = B*x - A/3,  v = B*y

    With B = 1 that is just a shift of the x coordinate.  Only defined for
    points that are actually on the source curve; nothing checks that.
    """

    def __init__(self,
                 montgomery: MontgomeryCurve,
                 weierstrass: WeierstrassCurve,
                 shift: int):
        assert montgomery.prime == weierstrass.prime
        self.montgomery = montgomery
        self.weierstrass = weierstrass
        self.shift = shift % montgomery.prime
        self.scale = montgomery.b

    @staticmethod
    def from_montgomery(curve: MontgomeryCurve) -> 'CurveIsomorphism':
        p, A, B = curve.prime, curve.a, curve.b
        a = mod_divide(3 - A * A, 3 * B * B, p)
        b = mod_divide(2 * A ** 3 - 9 * A, 27 * B ** 3, p)
        shift = mod_divide(A, 3, p)

        return CurveIsomorphism(curve, WeierstrassCurve(p, a, b), shift)

    def x_to_u(self, x: int) -> int:
        return (self.scale * x - self.shift) % self.weierstrass.prime

    def u_to_x(self, u: int) -> int:
        p = self.weierstrass.prime
        return ((u + self.shift) * mod_inverse(self.scale, p)) % p

    def to_montgomery(self, pt: EllipticCurvePoint):
        if pt is EllipticCurveIdentity:
            return pt

        x, y = pt
        return (self.x_to_u(x), (self.scale * y) % self.weierstrass.prime)

    def to_weierstrass(self, pt) -> EllipticCurvePoint:
        if pt is EllipticCurveIdentity:
            return pt

        u, v = pt
        p = self.weierstrass.prime
        return AffinePoint(self.u_to_x(u), mod_divide(v, self.scale, p))


P = 233970423115425145524320034830162017933
BASE = (182, 85518893674295321206118380980485522083)
POINT_ORDER = 29246302889428143187362802287225875743
GROUP_ORDER = 233970423115425145498902418297807005944


def test_cswap():
    assert (4, 5) == cswap(4, 5, 0)
    assert (5, 4) == cswap(4, 5, 1)
    assert (P - 1, 0) == cswap(0, P - 1, 1)


def test_identity_is_singleton():
    assert _Identity() is EllipticCurveIdentity
    assert EllipticCurveIdentity != (0, 1)


def test_weierstrass_contains():
    curve = WeierstrassCurve(P, -95051, 11279326)
    point = curve.point(*BASE)
    assert point in curve, 'Point was not on curve (somehow)'
    assert EllipticCurveIdentity in curve

    pt = curve.scalar_mult(point, POINT_ORDER)
    assert pt is EllipticCurveIdentity, 'Point did not have expected order'


def test_weierstrass_point_validation():
    curve = WeierstrassCurve(P, -95051, 11279326)
    with pytest.raises(PointNotOnCurveError):
        curve.point(182, 1)

    # unchecked_point is how the bogus points get in
    bogus = unchecked_point(182, 1)
    assert bogus not in curve


def test_weierstrass_group_laws():
    curve = WeierstrassCurve(P, -95051, 11279326)
    point = curve.point(*BASE)
    for k in [1, 2, 3, 1000, POINT_ORDER - 1]:
        pt = curve.scalar_mult(point, k)
        assert pt in curve
        assert curve.add_points(pt, curve.invert_point(pt)) is EllipticCurveIdentity
        assert curve.add_points(pt, EllipticCurveIdentity) == pt
        assert curve.add_points(EllipticCurveIdentity, pt) == pt

    assert curve.scalar_mult(point, 0) is EllipticCurveIdentity
    assert curve.scalar_mult(point, 2) == curve.double_point(point)
    assert curve.scalar_mult(point, -1) == curve.invert_point(point)
    assert curve.scalar_mult(point, POINT_ORDER - 1) == curve.invert_point(point)
    five = curve.add_points(curve.scalar_mult(point, 2),
                            curve.scalar_mult(point, 3))
    assert five == curve.scalar_mult(point, 5)


def test_weierstrass_find_point_of_order():
    curve = WeierstrassCurve(P, -95051, 11279326)
    pt = curve.find_point_of_order(2, GROUP_ORDER)
    assert pt.y == 0
    assert curve.double_point(pt) is EllipticCurveIdentity

    pt = curve.find_point_of_order(POINT_ORDER, GROUP_ORDER)
    assert curve.scalar_mult(pt, POINT_ORDER) is EllipticCurveIdentity


def test_sibling_curve_points():
    curve = WeierstrassCurve(P, -95051, 11279326)
    sibling = curve.with_b(210)
    order = 233970423115425145550826547352470124412
    pt = sibling.find_point_on_curve()
    assert pt in sibling
    assert pt not in curve
    # sibling arithmetic only needs a, so the victim's curve computes it too
    assert curve.scalar_mult(pt, order) is EllipticCurveIdentity


def test_montgomery_contains():
    curve = MontgomeryCurve(P, 534, 1)
    assert (4, 85518893674295321206118380980485522083) in curve
    assert curve.u_on_curve(4)


def test_montgomery_lift_x():
    curve = MontgomeryCurve(P, 534, 1)
    given_v = 85518893674295321206118380980485522083
    assert curve.lift_x(4) == [(4, given_v), (4, P - given_v)]


def test_montgomery_ladder():
    curve = MontgomeryCurve(P, 534, 1)

    assert montgomery_ladder(curve, 4, 1) == 4
    assert montgomery_ladder(curve, 4, 0) == 0
    assert montgomery_ladder(curve, 4, POINT_ORDER) == 0
    bogus_u = 76600469441198017145391791613091732004
    assert montgomery_ladder(curve, bogus_u, 11) == 0
    assert curve.u_on_twist(bogus_u)


def test_ladder_commutes():
    curve = MontgomeryCurve(P, 534, 1)
    a, b = 123456789, 987654321987654321
    assert curve.ladder(curve.ladder(4, a), b) == curve.ladder(curve.ladder(4, b), a)
    assert curve.ladder(4, a * b % POINT_ORDER) == curve.ladder(curve.ladder(4, a), b)


def test_twist_order():
    curve = MontgomeryCurve(P, 534, 1)
    twist_order = curve.twist_order(GROUP_ORDER)
    bogus_u = 76600469441198017145391791613091732004
    assert montgomery_ladder(curve, bogus_u, twist_order) == 0

    u = curve.find_twist_point_of_order(107, twist_order)
    assert curve.u_on_twist(u)
    assert montgomery_ladder(curve, u, 107) == 0


def test_point_order_divides():
    curve = WeierstrassCurve(P, -95051, 11279326)
    point = curve.point(*BASE)
    assert curve.point_order_divides(point, POINT_ORDER)
    assert curve.point_order_divides(point, 3 * POINT_ORDER)
    assert not curve.point_order_divides(point, POINT_ORDER - 1)
    assert curve.point_order_divides(EllipticCurveIdentity, 1)

    m_curve = MontgomeryCurve(P, 534, 1)
    assert m_curve.point_order_divides(4, POINT_ORDER)
    assert not m_curve.point_order_divides(4, 8)


def test_twist_point_of_order_four():
    curve = MontgomeryCurve(P, 534, 1)
    twist_order = curve.twist_order(GROUP_ORDER)
    u = curve.find_twist_point_of_order(4, twist_order, factors=[2])
    # twice an order 4 point is (0, 0): u = 0 without being the identity
    assert curve.ladder(u, 2) == 0
    assert not curve.point_order_divides(u, 2)
    assert curve.point_order_divides(u, 4)
    assert u in (1, P - 1)


def test_sibling_curve_without_point_of_order_four():
    # 4 divides the order of y^2 = x^3 - 95051x + 210, but its three points
    # of order 2 take up the whole 2-part
    sibling = WeierstrassCurve(P, -95051, 210)
    order = 233970423115425145550826547352470124412
    with pytest.raises(PointOfOrderNotFoundError):
        sibling.find_point_of_order(4, order, max_tries=10, factors=[2])

    other = WeierstrassCurve(P, -95051, 727)
    order = 233970423115425145545378039958152057148
    pt = other.find_point_of_order(4, order, factors=[2])
    assert not other.point_order_divides(pt, 2)
    assert other.point_order_divides(pt, 4)


def test_isomorphism():
    curve = MontgomeryCurve(P, 534, 1)
    iso = CurveIsomorphism.from_montgomery(curve)
    assert iso.shift == 178
    assert iso.weierstrass == WeierstrassCurve(P, -95051, 11279326)

    m_point = (4, 85518893674295321206118380980485522083)
    assert iso.to_weierstrass(m_point) == BASE
    assert iso.to_montgomery(BASE) == m_point
    assert iso.to_weierstrass(EllipticCurveIdentity) is EllipticCurveIdentity

    w_curve = iso.weierstrass
    for _ in range(5):
        pt = w_curve.find_point_on_curve()
        assert iso.to_montgomery(pt) in curve
        assert iso.to_weierstrass(iso.to_montgomery(pt)) == pt


@pytest.mark.parametrize('k', [0, 1, 2, 7, 8, 2**64 + 13, POINT_ORDER - 1, POINT_ORDER])
def test_ladder_matches_weierstrass(k):
    curve = MontgomeryCurve(P, 534, 1)
    iso = CurveIsomorphism.from_montgomery(curve)
    w_pt = iso.weierstrass.scalar_mult(BASE, k)
    u = curve.ladder(4, k)
    if w_pt is EllipticCurveIdentity:
        assert u == 0
    else:
        assert iso.u_to_x(u) == w_pt.x


def test_isomorphism_with_b():
    # B != 1 goes through the scaled map
    p = 101
    curve = MontgomeryCurve(p, 3, 5)
    iso = CurveIsomorphism.from_montgomery(curve)
    for u in range(1, p):
        if not curve.u_on_curve(u) or curve.v_squared(u) == 0:
            continue
        m_point = curve.lift_x(u)[0]
        w_point = iso.to_weierstrass(m_point)
        assert w_point in iso.weierstrass
        assert iso.to_montgomery(w_point) == m_point
