"""
End to end key recovery: subgroup confinement for as much of the secret as
the small factors give, CRT, then the kangaroo for whatever is left.
"""
import logging
from random import randint
from typing import Optional, Tuple

import pytest

from crt import CombinedResidues, combine_constraints, prune_candidates
from elliptic_curve import AffinePoint, CurveIsomorphism
from errors import NoCollisionFoundError, ResidueNotFoundError
from groups import Group, GroupElement, WeierstrassGroup
from kangaroo import kangaroo_from_residue
from params import (
    DH_SMOOTH_COFACTOR,
    INVALID_CURVES_128,
    MONTGOMERY_128,
    WEIERSTRASS_128,
    CurveParameters,
    DHGroupParameters,
    MontgomeryParameters,
)
from subgroup_attack import (
    AttackConfig,
    InvalidCurveProbes,
    MultiplicativeProbes,
    SubgroupConfinementAttack,
    TwistProbes,
    Victim,
)

logger = logging.getLogger(__name__)


def finish_recovery(group: Group,
                    public: GroupElement,
                    combined: CombinedResidues,
                    upper: Optional[int] = None,
                    **kwargs) -> int:
    """
    Turn secret mod M into the secret.  When M covers the whole order the
    candidates are checked against the public key directly; otherwise each
    one is handed to the kangaroo.
    """
    order = group.order()
    if combined.modulus >= order:
        matches = prune_candidates(
            combined, lambda c: group.scale(group.base, c) == public)
        if not matches.candidates:
            raise ResidueNotFoundError(
                f'None of {len(combined.candidates)} candidates matches the public key')
        return min(matches.candidates) % order

    for candidate in sorted(combined.candidates):
        try:
            return kangaroo_from_residue(group, public, candidate, combined.modulus,
                                         upper=upper, **kwargs)
        except NoCollisionFoundError:
            logger.info('Candidate %d mod %d did not pan out', candidate, combined.modulus)

    raise NoCollisionFoundError(
        f'Kangaroo failed for every candidate mod {combined.modulus}')


def weierstrass_view(params: MontgomeryParameters) -> Tuple[WeierstrassGroup, CurveIsomorphism]:
    """
    The same group written as Weierstrass points, where points can be added
    """
    iso = params.isomorphism()
    base = iso.to_weierstrass(params.curve().lift_x(params.base_u)[0])
    return WeierstrassGroup(iso.weierstrass, base, params.n), iso


def recover_integer_secret(victim: Victim,
                           public: int,
                           params: DHGroupParameters = DH_SMOOTH_COFACTOR,
                           config: AttackConfig = AttackConfig(),
                           **kwargs) -> int:
    group = params.group()
    source = MultiplicativeProbes(params.p, params.j)
    attack = SubgroupConfinementAttack(victim, params.q, source, config)
    combined = combine_constraints(attack.run())

    secret = finish_recovery(group, public, combined, **kwargs)
    logger.info('Recovered secret %d', secret)
    return secret


def recover_invalid_curve_secret(victim: Victim,
                                 public: AffinePoint,
                                 params: CurveParameters = WEIERSTRASS_128,
                                 invalid_curves=INVALID_CURVES_128,
                                 config: AttackConfig = AttackConfig(),
                                 **kwargs) -> int:
    group = params.group()
    source = InvalidCurveProbes(params.curve(), invalid_curves)
    attack = SubgroupConfinementAttack(victim, params.n, source, config)
    combined = combine_constraints(attack.run())

    secret = finish_recovery(group, public, combined, **kwargs)
    logger.info('Recovered secret %d', secret)
    return secret


def recover_twist_secret(victim: Victim,
                         public_u: int,
                         params: MontgomeryParameters = MONTGOMERY_128,
                         config: AttackConfig = AttackConfig(),
                         upper: Optional[int] = None,
                         **kwargs) -> int:
    """
    Recover x with ladder(base_u, x) = public_u.

    Only u is ever public, and u(xG) = u(-xG), so this is x or n - x; there is
    no telling which.  The kangaroo runs on the Weierstrass form, against both
    lifts of public_u.
    """
    curve = params.curve()
    source = TwistProbes(curve, params.twist_order())
    attack = SubgroupConfinementAttack(victim, params.n, source, config)
    combined = attack.disambiguate(attack.run())

    group, iso = weierstrass_view(params)
    lifted = iso.to_weierstrass(curve.lift_x(public_u)[0])
    for public in [lifted, group.invert(lifted)]:
        try:
            secret = finish_recovery(group, public, combined, upper=upper, **kwargs)
        except (NoCollisionFoundError, ResidueNotFoundError):
            continue

        assert curve.ladder(params.base_u, secret) == public_u % params.p, \
            'Recovered secret does not reproduce the public key'
        logger.info('Recovered secret %d (up to sign)', secret)
        return secret

    raise NoCollisionFoundError(f'Could not recover a secret for u = {public_u}')


def test_finish_recovery_full_modulus():
    group = DH_SMOOTH_COFACTOR.group()
    secret = randint(1, group.order() - 1)
    public = group.scale(group.base, secret)
    combined = CombinedResidues(group.order() * 5, frozenset([secret + 1, secret]))
    assert finish_recovery(group, public, combined) == secret

    with pytest.raises(ResidueNotFoundError):
        finish_recovery(group, public, CombinedResidues(group.order(), frozenset([secret + 1])))


def test_finish_recovery_kangaroo():
    group = WEIERSTRASS_128.group()
    secret = randint(1, group.order() - 1)
    public = group.scale(group.base, secret)
    r = group.order() // 2**16 + 1
    combined = CombinedResidues(r, frozenset([secret % r, (secret + 1) % r]))
    assert finish_recovery(group, public, combined, attempts=3) == secret


def test_weierstrass_view():
    group, iso = weierstrass_view(MONTGOMERY_128)
    assert group.curve == WEIERSTRASS_128.curve()
    assert group.base[0] == WEIERSTRASS_128.base[0]
    x = randint(1, MONTGOMERY_128.n - 1)
    assert iso.x_to_u(group.scale(group.base, x)[0]) == \
        MONTGOMERY_128.curve().ladder(MONTGOMERY_128.base_u, x)


def test_weierstrass_view_combines_where_montgomery_cannot():
    m_group = MONTGOMERY_128.group()
    with pytest.raises(NotImplementedError):
        m_group.combine(m_group.base, m_group.base)

    group, iso = weierstrass_view(MONTGOMERY_128)
    five = group.combine(group.scale(group.base, 2), group.scale(group.base, 3))
    assert iso.x_to_u(five[0]) == m_group.scale(m_group.base, 5)
