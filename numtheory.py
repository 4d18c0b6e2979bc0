from random import randrange
from typing import Generator, List, NamedTuple, Tuple

import gmpy2
import pytest

from errors import NoInverseError, NonCoprimeModuliError, NotASquareError


def mod_add(a: int, b: int, m: int) -> int:
    return (a + b) % m


def mod_sub(a: int, b: int, m: int) -> int:
    return (a - b) % m


def mod_mul(a: int, b: int, m: int) -> int:
    return (a * b) % m


def mod_exp(base: int, exp: int, m: int) -> int:
    """
    Square-and-multiply: walk the bits of exp from the bottom up
    """
    if exp < 0:
        return mod_exp(mod_inverse(base, m), -exp, m)

    result = 1 % m
    base = base % m
    while exp > 0:
        if exp & 1:
            result = (result * base) % m
        base = (base * base) % m
        exp >>= 1

    return result


def test_mod_exp():
    assert mod_exp(4, 13, 497) == 445
    assert mod_exp(3, 0, 7) == 1
    assert mod_exp(3, -1, 7) == 5
    p = 233970423115425145524320034830162017933
    assert mod_exp(2, p - 1, p) == 1


def euclid_extended(a: int, b: int) -> Tuple[int, int, int]:
    """
    Return (u, v, d) such that ua + vb = d and d = (a, b)
    """
    u = 1
    d = a
    if b == 0:
        return (u, 0, d)

    v1 = 0
    v3 = b
    while v3 != 0:
        q, t3 = divmod(d, v3)
        t1 = u - q * v1
        u, d = v1, v3
        v1, v3 = t1, t3

    v = (d - a * u) // b
    return (u, v, d)


def test_euclid_extended():
    u, v, d = euclid_extended(240, 46)
    assert d == 2
    assert 240 * u + 46 * v == 2
    assert euclid_extended(7, 0) == (1, 0, 7)
    u, _, d = euclid_extended(17, 3120)
    assert d == 1
    assert u % 3120 == mod_inverse(17, 3120)


def mod_inverse(a: int, m: int) -> int:
    # pow(a, -1, m) runs extended Euclid natively
    try:
        return pow(a, -1, m)
    except ValueError as err:
        raise NoInverseError(f'{a} has no inverse mod {m}') from err


def test_mod_inverse():
    assert mod_inverse(5, 7) == 3
    assert mod_inverse(17, 3120) == 2753
    assert mod_inverse(-2, 7) == 3

    p = 233970423115425145524320034830162017933
    for a in [2, 95051, p - 1, 85518893674295321206118380980485522083]:
        assert (a * mod_inverse(a, p)) % p == 1

    with pytest.raises(NoInverseError):
        mod_inverse(0, 7)
    with pytest.raises(NoInverseError):
        mod_inverse(6, 9)


def mod_divide(m: int, n: int, p: int) -> int:
    """
    Return m / n mod p
    """
    if n == 1:
        return m % p

    return (m * mod_inverse(n, p)) % p


def test_mod_divide():
    assert mod_divide(3, 5, 7) == 2
    assert mod_divide(10, 1, 7) == 3


def is_square(a: int, p: int) -> bool:
    """
    Euler's criterion.  0 counts as a square (its root is 0).
    """
    a = a % p
    if a == 0 or p == 2:
        return True

    return pow(a, (p - 1) // 2, p) == 1


def test_is_square():
    assert is_square(4, 7)
    assert is_square(2, 7)
    assert not is_square(5, 7)
    assert is_square(0, 7)
    assert not is_square(3, 5)


def mod_sqrt(a: int, p: int) -> int:
    """
    Tonelli/Shanks Algorithm for modular square root
    """
    a = a % p
    if a == 0 or p == 2:
        return a

    if not is_square(a, p):
        raise NotASquareError(f'{a} was not a quadratic residue mod {p}')

    if p % 4 == 3:
        return pow(a, (p + 1) // 4, p)

    # p - 1 = q * 2^e with q odd
    e = 0
    q = p - 1
    while q % 2 == 0:
        e += 1
        q //= 2

    while True:
        z = randrange(2, p)
        if not is_square(z, p):
            break

    m = e
    c = pow(z, q, p)
    t = pow(a, q, p)
    r = pow(a, (q + 1) // 2, p)
    while t != 1:
        # smallest i with t^(2^i) = 1; i < m since a is a residue
        i = 0
        t2 = t
        while t2 != 1:
            t2 = (t2 * t2) % p
            i += 1
        assert i < m, 'Tonelli-Shanks did not converge'

        b = pow(c, 1 << (m - i - 1), p)
        m = i
        c = (b * b) % p
        t = (t * c) % p
        r = (r * b) % p

    return r


def test_mod_sqrt():
    assert mod_sqrt(4, 7) in [2, 5]
    assert mod_sqrt(2, 7) in [3, 4]
    assert mod_sqrt(58, 101) in [82, 19]
    assert mod_sqrt(0, 13) == 0
    with pytest.raises(NotASquareError) as excinfo:
        mod_sqrt(5, 7)
    assert "not a quadratic residue" in str(excinfo.value)


@pytest.mark.parametrize('p', [13, 17, 41, 97, 101, 65537])
def test_mod_sqrt_exhaustive(p):
    for a in range(0, p if p < 200 else 200):
        if is_square(a, p):
            assert pow(mod_sqrt(a, p), 2, p) == a
        else:
            with pytest.raises(NotASquareError):
                mod_sqrt(a, p)


def test_mod_sqrt_large_prime():
    # p = 3 mod 4 takes the shortcut
    p = 11470374874925275658116663507232161402086650258453896274534991676898999262641581519101074740642369848233294239851519212341844337347119899874391456329785623
    y = 7760073848032689505395005705677365876654629189298052775754597607446617558600394076764814236081991643094239886772481052254010323780165093955236429914607119
    a = (y * y) % p
    assert pow(mod_sqrt(a, p), 2, p) == a

    # p = 1 mod 4 goes through the general loop
    p = 233970423115425145524320034830162017933
    y = 85518893674295321206118380980485522083
    assert mod_sqrt((y * y) % p, p) in [y, p - y]


class PrimeField(NamedTuple):
    """
    Integers mod a fixed prime.  Every operation reduces into [0, p).
    """
    p: int

    def element(self, a: int) -> int:
        return a % self.p

    def add(self, a: int, b: int) -> int:
        return mod_add(a, b, self.p)

    def sub(self, a: int, b: int) -> int:
        return mod_sub(a, b, self.p)

    def mul(self, a: int, b: int) -> int:
        return mod_mul(a, b, self.p)

    def neg(self, a: int) -> int:
        return (-a) % self.p

    def inverse(self, a: int) -> int:
        return mod_inverse(a, self.p)

    def divide(self, a: int, b: int) -> int:
        return mod_divide(a, b, self.p)

    def pow(self, a: int, e: int) -> int:
        return mod_exp(a, e, self.p)

    def is_square(self, a: int) -> bool:
        return is_square(a, self.p)

    def sqrt(self, a: int) -> int:
        return mod_sqrt(a, self.p)

    def random_element(self) -> int:
        return randrange(0, self.p)


def test_prime_field():
    field = PrimeField(101)
    assert field.add(100, 5) == 4
    assert field.sub(3, 5) == 99
    assert field.mul(50, 3) == 49
    assert field.neg(1) == 100
    assert field.mul(field.inverse(7), 7) == 1
    assert field.divide(1, 7) == field.inverse(7)
    assert field.pow(2, 100) == 1
    assert field.sqrt(58) in [82, 19]
    assert 0 <= field.random_element() < 101


def is_prime(n: int) -> bool:
    return bool(gmpy2.is_prime(n))


def test_is_prime():
    assert is_prime(233970423115425145524320034830162017933)
    assert is_prime(29246302889428143187362802287225875743)
    assert not is_prime(233970423115425145498902418297807005944)
    assert not is_prime(1)


def small_factors(j: int, max_factor: int = 2**16) -> Generator[int, None, None]:
    """
    Yield the distinct prime factors of j below max_factor, smallest first
    """
    for i in range(2, max_factor):
        if i > j:
            break
        if j % i == 0:
            yield i
            while j % i == 0:
                j = j // i


def test_small_factors():
    assert list(small_factors(2**3 * 3 * 11 * 65537)) == [2, 3, 11]
    assert list(small_factors(360, max_factor=4)) == [2, 3]
    assert list(small_factors(97)) == [97]


def prime_power_factor(n: int, p: int) -> int:
    x = 0
    while n % p == 0:
        x += 1
        n = n // p

    return x


def test_prime_power_factor():
    assert prime_power_factor(8, 2) == 3
    assert prime_power_factor(233970423115425145498902418297807005944, 2) == 3
    assert prime_power_factor(12, 5) == 0


def small_prime_powers(n: int, max_factor: int = 2**16) -> Generator[int, None, None]:
    """
    Yield q^e for each small prime q of n, e as large as n and max_factor
    allow
    """
    for q in small_factors(n, max_factor=max_factor):
        e = prime_power_factor(n, q)
        while q ** e > max_factor:
            e -= 1
        yield q ** e


def test_small_prime_powers():
    assert list(small_prime_powers(2**3 * 3 * 11 * 65537)) == [8, 3, 11]
    assert list(small_prime_powers(2**5 * 3**2, max_factor=10)) == [8, 9]
    assert list(small_prime_powers(97)) == [97]


def prime_factors(n: int) -> List[int]:
    """
    Distinct prime factors of n by trial division.  Only for small n.
    """
    factors = []
    f = 2
    while f * f <= n:
        if n % f == 0:
            factors.append(f)
            while n % f == 0:
                n = n // f
        f += 1

    if n > 1:
        factors.append(n)
    return factors


def test_prime_factors():
    assert prime_factors(4) == [2]
    assert prime_factors(4 * 107) == [2, 107]
    assert prime_factors(2323367) == [2323367]
    assert prime_factors(1) == []


def crt_inductive(residue_list: List[Tuple[int, int]]) -> Tuple[int, int]:
    """
    Merge [(x_1, m_1), ...] into (x, m_1 * m_2 * ...) with x = x_i mod m_i
    """
    assert len(residue_list) > 0, 'List must be non-empty'
    x, m = residue_list[0]
    x = x % m
    for x_, m_ in residue_list[1:]:
        u, v, d = euclid_extended(m, m_)
        if d != 1:
            raise NonCoprimeModuliError(
                f'Moduli {m} and {m_} share the factor {d}')
        x = x * v * m_ + x_ * u * m
        m = m * m_
        x = x % m

    return x, m


def test_crt_inductive():
    assert crt_inductive([(0, 3), (3, 4), (4, 5)]) == (39, 60)
    assert crt_inductive([(5, 7)]) == (5, 7)
    with pytest.raises(NonCoprimeModuliError):
        crt_inductive([(2, 4), (0, 6)])


def test_crt_round_trip():
    m1 = 29246302889428143187362802287225875743
    m2 = 2323367
    for r1, r2 in [(0, 0), (1, 2323366), (m1 - 1, 12345)]:
        x, m = crt_inductive([(r1, m1), (r2, m2)])
        assert m == m1 * m2
        assert 0 <= x < m
        assert x % m1 == r1
        assert x % m2 == r2
