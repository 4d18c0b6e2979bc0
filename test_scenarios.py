"""
Whole attacks against a victim holding a random key pair
"""
import random

import pytest

from diffie_hellman import DHConfig, DHKeypair, DiffieHellman
from errors import PointNotOnCurveError
from key_recovery import (
    recover_integer_secret,
    recover_invalid_curve_secret,
    recover_twist_secret,
)
from params import (
    DH_KANGAROO,
    DH_SMOOTH_COFACTOR,
    INVALID_CURVES_128,
    MONTGOMERY_128,
    WEIERSTRASS_128,
)
from subgroup_attack import AttackConfig, InvalidCurveProbes, SubgroupConfinementAttack


def planted_keypair(group, secret: int) -> DHKeypair:
    return DHKeypair(DHConfig(group), secret, group.scale(group.base, secret))


def test_integer_group_full_recovery():
    random.seed(57)
    bob_keypair = DiffieHellman(DH_SMOOTH_COFACTOR.group()).generate_keypair()
    recovered = recover_integer_secret(bob_keypair.compute_secret, bob_keypair.public)
    assert recovered == bob_keypair.secret


def test_integer_group_partial_then_kangaroo():
    random.seed(58)
    # j's small factors give about 88 bits, the kangaroo covers the rest
    secret = random.randint(1, 2**100)
    bob_keypair = planted_keypair(DH_KANGAROO.group(), secret)
    recovered = recover_integer_secret(bob_keypair.compute_secret,
                                       bob_keypair.public,
                                       params=DH_KANGAROO,
                                       upper=2**100 + 1)
    assert recovered == secret


def test_invalid_curve_full_recovery():
    random.seed(59)
    bob_keypair = DiffieHellman(WEIERSTRASS_128.group()).generate_keypair()
    recovered = recover_invalid_curve_secret(bob_keypair.compute_secret, bob_keypair.public)
    assert recovered == bob_keypair.secret


def test_invalid_curve_then_kangaroo():
    random.seed(5920)
    bob_keypair = DiffieHellman(WEIERSTRASS_128.group()).generate_keypair()
    # stop with about 20 bits still unknown
    config = AttackConfig(target=WEIERSTRASS_128.n // 2**20)
    recovered = recover_invalid_curve_secret(bob_keypair.compute_secret,
                                             bob_keypair.public,
                                             config=config)
    assert recovered == bob_keypair.secret


def test_invalid_curve_parallel_probes():
    random.seed(5921)
    bob_keypair = DiffieHellman(WEIERSTRASS_128.group()).generate_keypair()
    recovered = recover_invalid_curve_secret(bob_keypair.compute_secret,
                                             bob_keypair.public,
                                             config=AttackConfig(workers=4))
    assert recovered == bob_keypair.secret


def test_validating_victim_is_not_fooled():
    bob_keypair = DiffieHellman(WEIERSTRASS_128.group()).generate_keypair()
    source = InvalidCurveProbes(WEIERSTRASS_128.curve(), INVALID_CURVES_128)
    attack = SubgroupConfinementAttack(bob_keypair.compute_validated_secret,
                                       WEIERSTRASS_128.n,
                                       source)
    with pytest.raises(PointNotOnCurveError):
        attack.run()


def test_twist_recovery_up_to_sign():
    random.seed(60)
    secret = random.randint(1, 2**44)
    bob_keypair = planted_keypair(MONTGOMERY_128.group(), secret)
    recovered = recover_twist_secret(bob_keypair.compute_secret,
                                     bob_keypair.public,
                                     config=AttackConfig(factor_bound=2048),
                                     upper=2**44 + 1,
                                     attempts=3)
    assert recovered in [secret, MONTGOMERY_128.n - secret]
