from random import randint
from typing import NamedTuple, Tuple

import pytest

from errors import PointNotOnCurveError
from groups import Group, GroupElement, MontgomeryGroup, MultiplicativeGroup
from params import MONTGOMERY_128, WEIERSTRASS_128


class DHConfig(NamedTuple):
    group: Group

    @property
    def n(self) -> int:
        return self.group.order()

    def rand_scalar(self) -> int:
        return randint(1, self.n - 1)

    def scale_base(self, k: int) -> GroupElement:
        return self.group.scale(self.group.base, k)

    def is_valid(self) -> bool:
        return self.group.is_identity(self.scale_base(self.n))

    def validate_peer(self, peer_public: GroupElement) -> GroupElement:
        """
        Reject peer elements that are not in the group.  The attacks in
        subgroup_attack.py are what happens when nobody calls this.

        For the curve groups this only checks the curve equation, not the
        subgroup: the 128-bit curves have cofactor 8, so on-curve points whose
        order divides 8 get through.  Only the integer group checks
        peer^q = 1.
        """
        if self.group.is_identity(peer_public) or not self.group.contains(peer_public):
            raise PointNotOnCurveError(
                f'Peer public {peer_public} is not a valid element of {self.group}')

        return peer_public


class DHKeypair(NamedTuple):
    config: DHConfig
    secret: int
    public: GroupElement

    def compute_secret(self, peer_public: GroupElement) -> GroupElement:
        """
        Compute peer_public ^ secret.  No validation of peer_public.
        """
        return self.config.group.scale(peer_public, self.secret)

    def compute_validated_secret(self, peer_public: GroupElement) -> GroupElement:
        return self.compute_secret(self.config.validate_peer(peer_public))

    def is_valid(self) -> bool:
        return self.public == self.config.scale_base(self.secret)


class DiffieHellman:
    def __init__(self, group: Group):
        self.config = DHConfig(group)

    def generate_keypair(self) -> DHKeypair:
        """
        Generate a Diffie-Hellman keypair.

        Alice and Bob agree on a group and a generator g of order n.  (Public
        information)

        Alice and Bob both generate a random integer between 1 and n - 1.
        (Secret information)

        Diffie-Hellman then works as follows:
        Alice keypair: (secret_A, g^secret_A)
        Bob keypair: (secret_B, g^secret_B)

        Alice and Bob then create the shared key:
            (g^secret_A)^(secret_B) = (g^secret_B)^(secret_A)
        """
        secret = self.config.rand_scalar()
        public = self.config.scale_base(secret)

        return DHKeypair(self.config, secret, public)

    def handshake(self) -> Tuple[DHKeypair, DHKeypair, GroupElement]:
        alice_keypair = self.generate_keypair()
        bob_keypair = self.generate_keypair()

        alice_key = alice_keypair.compute_secret(bob_keypair.public)
        bob_key = bob_keypair.compute_secret(alice_keypair.public)
        assert alice_key == bob_key, 'Key should have been shared'

        return alice_keypair, bob_keypair, alice_key


def test_ecdh_weierstrass():
    dh = DiffieHellman(WEIERSTRASS_128.group())
    assert dh.config.is_valid()

    alice_keypair = dh.generate_keypair()
    bob_keypair = dh.generate_keypair()
    assert 1 <= alice_keypair.secret < WEIERSTRASS_128.n
    assert alice_keypair.is_valid()

    alice_key = alice_keypair.compute_secret(bob_keypair.public)
    bob_key = bob_keypair.compute_secret(alice_keypair.public)
    assert alice_key == bob_key, 'Key should have been shared'


def test_ecdh_montgomery():
    dh = DiffieHellman(MONTGOMERY_128.group())
    _, _, shared = dh.handshake()
    assert shared != 0


def test_dh_integers():
    dh = DiffieHellman(MultiplicativeGroup(23, 2, 11))
    alice_keypair, bob_keypair, shared = dh.handshake()
    assert pow(2, alice_keypair.secret * bob_keypair.secret, 23) == shared


def test_validate_peer():
    dh = DiffieHellman(WEIERSTRASS_128.group())
    alice_keypair = dh.generate_keypair()
    bob_keypair = dh.generate_keypair()
    assert alice_keypair.compute_validated_secret(bob_keypair.public) == \
        bob_keypair.compute_secret(alice_keypair.public)

    bogus = WEIERSTRASS_128.curve().with_b(210).find_point_on_curve()
    with pytest.raises(PointNotOnCurveError):
        alice_keypair.compute_validated_secret(bogus)
    # without the check the victim happily answers
    alice_keypair.compute_secret(bogus)


def test_validate_peer_misses_small_order_points():
    curve = WEIERSTRASS_128.curve()
    config = DHConfig(WEIERSTRASS_128.group())
    small = curve.find_point_of_order(8, WEIERSTRASS_128.group_order, factors=[2])
    assert config.validate_peer(small) == small
    assert curve.point_order_divides(small, 8)
    assert not curve.point_order_divides(small, WEIERSTRASS_128.n)


def test_validate_twist_peer():
    dh = DiffieHellman(MontgomeryGroup(MONTGOMERY_128.curve(), 4, MONTGOMERY_128.n))
    keypair = dh.generate_keypair()
    with pytest.raises(PointNotOnCurveError):
        keypair.compute_validated_secret(76600469441198017145391791613091732004)
