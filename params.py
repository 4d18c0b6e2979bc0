"""
Named parameter sets.

The 128-bit curve below comes in two isomorphic forms:

    y^2 = x^3 - 95051*x + 11279326     (short Weierstrass)
    v^2 = u^3 + 534*u^2 + u            (Montgomery, u = x - 178)

Its group has order 8 * n with n prime; the base point generates the order n
subgroup.
"""
from typing import List, NamedTuple, Tuple

from elliptic_curve import (
    CurveIsomorphism,
    EllipticCurveIdentity,
    MontgomeryCurve,
    WeierstrassCurve,
)
from groups import MontgomeryGroup, MultiplicativeGroup, WeierstrassGroup
from numtheory import is_prime


class CurveParameters(NamedTuple):
    p: int
    a: int
    b: int
    base: Tuple[int, int]
    n: int  # order of base
    group_order: int

    def curve(self) -> WeierstrassCurve:
        return WeierstrassCurve(self.p, self.a, self.b)

    def group(self) -> WeierstrassGroup:
        return WeierstrassGroup(self.curve(), self.base, self.n)


class MontgomeryParameters(NamedTuple):
    p: int
    a: int
    b: int
    base_u: int
    n: int
    group_order: int

    def curve(self) -> MontgomeryCurve:
        return MontgomeryCurve(self.p, self.a, self.b)

    def group(self) -> MontgomeryGroup:
        return MontgomeryGroup(self.curve(), self.base_u, self.n)

    def isomorphism(self) -> CurveIsomorphism:
        return CurveIsomorphism.from_montgomery(self.curve())

    def twist_order(self) -> int:
        return 2 * self.p + 2 - self.group_order


class InvalidCurve(NamedTuple):
    """
    Sibling of a curve: same p and a, different b, with its point count
    """
    b: int
    order: int


class DHGroupParameters(NamedTuple):
    p: int
    g: int
    q: int  # order of g
    j: int  # cofactor, (p - 1) / q

    def group(self) -> MultiplicativeGroup:
        return MultiplicativeGroup(self.p, self.g, self.q)


P128 = 233970423115425145524320034830162017933

WEIERSTRASS_128 = CurveParameters(
    p=P128,
    a=-95051,
    b=11279326,
    base=(182, 85518893674295321206118380980485522083),
    n=29246302889428143187362802287225875743,
    group_order=233970423115425145498902418297807005944,
)

MONTGOMERY_128 = MontgomeryParameters(
    p=P128,
    a=534,
    b=1,
    base_u=4,
    n=WEIERSTRASS_128.n,
    group_order=WEIERSTRASS_128.group_order,
)

MONTGOMERY_SHIFT = 178

INVALID_CURVES_128: List[InvalidCurve] = [
    InvalidCurve(210, 233970423115425145550826547352470124412),
    InvalidCurve(504, 233970423115425145544350131142039591210),
    InvalidCurve(727, 233970423115425145545378039958152057148),
]

# j has many small factors, enough to recover a whole secret mod q
DH_SMOOTH_COFACTOR = DHGroupParameters(
    p=7199773997391911030609999317773941274322764333428698921736339643928346453700085358802973900485592910475480089726140708102474957429903531369589969318716771,
    g=4565356397095740655436854503483826832136106141639563487732438195343690437606117828318042418238184896212352329118608100083187535033402010599512641674644143,
    q=236234353446506858198510045061214171961,
    j=30477252323177606811760882179058908038824640750610513771646768011063128035873508507547741559514324673960576895059570,
)

# Only part of a secret falls out of j's small factors here; the rest is
# left to the kangaroo
DH_KANGAROO = DHGroupParameters(
    p=11470374874925275658116663507232161402086650258453896274534991676898999262641581519101074740642369848233294239851519212341844337347119899874391456329785623,
    g=622952335333961296978159266084741085889881358738459939978290179936063635566740258555167783009058567397963466103140082647486611657350811560630587013183357,
    q=335062023296420808191071248367701059461,
    j=34233586850807404623475048381328686211071196701374230492615844865929237417097514638999377942356150481334217896204702,
)

# g^705485 and g^359579674340 in DH_KANGAROO; indices in [0, 2^20] and
# [0, 2^40]
KANGAROO_Y_20 = 7760073848032689505395005705677365876654629189298052775754597607446617558600394076764814236081991643094239886772481052254010323780165093955236429914607119
KANGAROO_Y_40 = 9388897478013399550694114614498790691034187453089355259602614074132918843899833277397448144245883225611726912025846772975325932794909655215329941809013733


def test_named_curves_agree():
    iso = MONTGOMERY_128.isomorphism()
    assert iso.shift == MONTGOMERY_SHIFT
    assert iso.weierstrass == WEIERSTRASS_128.curve()
    assert iso.u_to_x(MONTGOMERY_128.base_u) == WEIERSTRASS_128.base[0]


def test_named_orders():
    assert is_prime(WEIERSTRASS_128.n)
    w = WEIERSTRASS_128.group()
    assert w.is_identity(w.scale(w.base, w.order()))
    m = MONTGOMERY_128.group()
    assert m.is_identity(m.scale(m.base, m.order()))
    assert MONTGOMERY_128.twist_order() % 107 == 0

    curve = WEIERSTRASS_128.curve()
    for invalid in INVALID_CURVES_128:
        sibling = curve.with_b(invalid.b)
        pt = sibling.find_point_on_curve()
        assert sibling.scalar_mult(pt, invalid.order) is EllipticCurveIdentity


def test_dh_groups():
    for params in [DH_SMOOTH_COFACTOR, DH_KANGAROO]:
        assert params.j * params.q == params.p - 1
        assert is_prime(params.p)
        assert is_prime(params.q)
        group = params.group()
        assert group.is_identity(group.scale(group.base, group.order()))

    assert pow(DH_KANGAROO.g, 705485, DH_KANGAROO.p) == KANGAROO_Y_20
    assert pow(DH_KANGAROO.g, 359579674340, DH_KANGAROO.p) == KANGAROO_Y_40
