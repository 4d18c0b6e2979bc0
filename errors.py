"""
Errors raised by the arithmetic, curve and attack modules.

Everything derives from ValueError so callers that only care about "this
input did not work out" can keep catching that.
"""


class CryptanalysisError(ValueError):
    pass


class NoInverseError(CryptanalysisError):
    """
    Element has no inverse mod m (gcd(a, m) != 1).  On a prime modulus this
    means the input was 0 mod p, which is a bug in whatever produced it.
    """


class NotASquareError(CryptanalysisError):
    """
    Asked for the square root of a quadratic non-residue.  Expected while
    sampling random curve points; callers retry with a new candidate.
    """


class PointNotOnCurveError(CryptanalysisError):
    pass


class NonCoprimeModuliError(CryptanalysisError):
    pass


class NoCollisionFoundError(CryptanalysisError):
    """
    Wild kangaroo went past the tame kangaroo without landing on it.  Retry
    with a different jump function or a longer tame run.
    """


class PointOfOrderNotFoundError(CryptanalysisError):
    pass


class ResidueNotFoundError(CryptanalysisError):
    pass
