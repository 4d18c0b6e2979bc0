"""
Command line front end: dlog-attacks <command>
"""
import argparse
import logging
import random
from typing import List, Optional

from diffie_hellman import DHConfig, DHKeypair, DiffieHellman
from groups import Group, MultiplicativeGroup
from kangaroo import solve_bounded_dlog
from key_recovery import (
    recover_integer_secret,
    recover_invalid_curve_secret,
    recover_twist_secret,
)
from params import (
    DH_KANGAROO,
    DH_SMOOTH_COFACTOR,
    KANGAROO_Y_20,
    KANGAROO_Y_40,
    MONTGOMERY_128,
    WEIERSTRASS_128,
)
from subgroup_attack import AttackConfig

DH_GROUPS = {
    'smooth': DH_SMOOTH_COFACTOR,
    'kangaroo': DH_KANGAROO,
}

# y = g^x with x known to be below 2^20 or 2^40
KANGAROO_INSTANCES = {
    'y20': (KANGAROO_Y_20, 2**20),
    'y40': (KANGAROO_Y_40, 2**40),
}


def integer(s: str) -> int:
    # accepts 0x... as well
    return int(s, 0)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dlog-attacks',
        description='Subgroup confinement, invalid curve, twist and kangaroo attacks on Diffie-Hellman',
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    parser.add_argument('--seed', type=int, default=None, help='Random seed for reproducibility')

    sub = parser.add_subparsers(dest='command')

    # ecdh
    ecdh = sub.add_parser('ecdh', help='ECDH handshake on the 128-bit curve')
    ecdh.add_argument('--form', choices=['weierstrass', 'montgomery'], default='weierstrass')

    def attack_options(p: argparse.ArgumentParser, factor_bound: int) -> None:
        p.add_argument('--factor-bound', type=integer, default=factor_bound,
                       help=f'Largest small factor to probe (default {factor_bound})')
        p.add_argument('--workers', type=int, default=1, help='Probe threads')
        p.add_argument('--max-tries', type=int, default=AttackConfig().max_tries,
                       help='Attempts at finding an element of each order')
        p.add_argument('--secret-bits', type=int, default=None,
                       help='Plant a victim secret below 2^bits instead of a full size one')

    # invalid-curve
    invalid = sub.add_parser('invalid-curve', help='Recover an ECDH secret with points on sibling curves')
    attack_options(invalid, 2**16)

    # twist
    twist = sub.add_parser('twist', help='Recover an x-only ECDH secret with points on the twist')
    attack_options(twist, 2**24)

    # subgroup
    subgroup = sub.add_parser('subgroup', help='Recover a DH secret with elements of small order mod p')
    subgroup.add_argument('--group', choices=sorted(DH_GROUPS), default='smooth')
    attack_options(subgroup, 2**16)

    # kangaroo
    kangaroo = sub.add_parser('kangaroo', help='Solve g^x = y mod p for x in [a, b]')
    kangaroo.add_argument('--p', type=integer, default=DH_KANGAROO.p)
    kangaroo.add_argument('--g', type=integer, default=DH_KANGAROO.g)
    kangaroo.add_argument('--q', type=integer, default=DH_KANGAROO.q, help='Order of g')
    kangaroo.add_argument('--instance', choices=sorted(KANGAROO_INSTANCES), default='y20',
                          help='Built in y and b, unless --y and --b are given')
    kangaroo.add_argument('--y', type=integer, default=None)
    kangaroo.add_argument('--a', type=integer, default=0)
    kangaroo.add_argument('--b', type=integer, default=None)
    kangaroo.add_argument('--k', type=int, default=None, help='Jump function size (default from b - a)')
    kangaroo.add_argument('--attempts', type=int, default=6)

    return parser


def attack_config(args: argparse.Namespace) -> AttackConfig:
    return AttackConfig(factor_bound=args.factor_bound,
                        max_tries=args.max_tries,
                        workers=args.workers)


def victim_keypair(group: Group, secret_bits: Optional[int]) -> DHKeypair:
    if secret_bits is None:
        return DiffieHellman(group).generate_keypair()

    secret = random.randint(1, 2 ** secret_bits)
    return DHKeypair(DHConfig(group), secret, group.scale(group.base, secret))


def upper_bound(args: argparse.Namespace) -> Optional[int]:
    if args.secret_bits is None:
        return None
    return 2 ** args.secret_bits + 1


def report(secret: int, *recovered: int) -> None:
    print(f'Victim secret:    {secret}')
    print(f'Recovered secret: {" or ".join(str(r) for r in recovered)}')
    print('Success!' if secret in recovered else 'Recovered value does not match')


def run_ecdh(args: argparse.Namespace) -> None:
    params = WEIERSTRASS_128 if args.form == 'weierstrass' else MONTGOMERY_128
    alice_keypair, bob_keypair, shared = DiffieHellman(params.group()).handshake()
    print(f'Alice public: {alice_keypair.public}')
    print(f'Bob public:   {bob_keypair.public}')
    print(f'Shared:       {shared}')


def run_invalid_curve(args: argparse.Namespace) -> None:
    keypair = victim_keypair(WEIERSTRASS_128.group(), args.secret_bits)
    recovered = recover_invalid_curve_secret(keypair.compute_secret,
                                             keypair.public,
                                             config=attack_config(args),
                                             upper=upper_bound(args))
    report(keypair.secret, recovered)


def run_twist(args: argparse.Namespace) -> None:
    keypair = victim_keypair(MONTGOMERY_128.group(), args.secret_bits)
    recovered = recover_twist_secret(keypair.compute_secret,
                                     keypair.public,
                                     config=attack_config(args),
                                     upper=upper_bound(args))
    # only known up to sign
    report(keypair.secret, recovered, MONTGOMERY_128.n - recovered)


def run_subgroup(args: argparse.Namespace) -> None:
    params = DH_GROUPS[args.group]
    keypair = victim_keypair(params.group(), args.secret_bits)
    recovered = recover_integer_secret(keypair.compute_secret,
                                       keypair.public,
                                       params=params,
                                       config=attack_config(args),
                                       upper=upper_bound(args))
    report(keypair.secret, recovered)


def run_kangaroo(args: argparse.Namespace) -> None:
    group = MultiplicativeGroup(args.p, args.g, args.q)
    y, b = KANGAROO_INSTANCES[args.instance]
    if args.y is not None:
        y = args.y
    if args.b is not None:
        b = args.b
    x = solve_bounded_dlog(group, group.base, y, args.a, b,
                           attempts=args.attempts, k=args.k)
    print(f'Found index: {x}')


COMMANDS = {
    'ecdh': run_ecdh,
    'invalid-curve': run_invalid_curve,
    'twist': run_twist,
    'subgroup': run_subgroup,
    'kangaroo': run_kangaroo,
}


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(name)s %(levelname)s %(message)s',
    )
    if args.seed is not None:
        random.seed(args.seed)

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return

    command(args)


def test_kangaroo_command(capsys):
    main(['kangaroo'])
    assert 'Found index: 705485' in capsys.readouterr().out


def test_kangaroo_explicit_range(capsys):
    main(['kangaroo', '--y', str(DH_KANGAROO.g ** 3 % DH_KANGAROO.p), '--b', '16'])
    assert 'Found index: 3' in capsys.readouterr().out


def test_kangaroo_instance_option():
    args = build_parser().parse_args(['kangaroo', '--instance', 'y40'])
    assert KANGAROO_INSTANCES[args.instance] == (KANGAROO_Y_40, 2**40)
    assert args.y is None and args.b is None


def test_twist_defaults():
    args = build_parser().parse_args(['twist'])
    assert args.factor_bound == 2**24
    assert attack_config(args).factor_bound == 2**24


def test_twist_command(capsys):
    main(['--seed', '60', 'twist', '--secret-bits', '40'])
    out = capsys.readouterr().out
    assert ' or ' in out
    assert 'Success!' in out


def test_ecdh_command(capsys):
    main(['--seed', '1', 'ecdh', '--form', 'montgomery'])
    assert 'Shared:' in capsys.readouterr().out


def test_subgroup_command(capsys):
    main(['--seed', '57', 'subgroup'])
    assert 'Success!' in capsys.readouterr().out


def test_no_command(capsys):
    main([])
    assert 'usage: dlog-attacks' in capsys.readouterr().out


if __name__ == '__main__':
    main()
