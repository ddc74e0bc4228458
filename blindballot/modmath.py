"""
Big-integer modular arithmetic used by both sides of the blind signature.
"""

from Crypto.Random import random as crandom


def egcd(a: int, b: int) -> tuple:
    """Extended Euclid. Returns (g, x, y) with a*x + b*y == g == gcd(a, b)."""
    x, last_x = 0, 1
    y, last_y = 1, 0
    while b:
        q, r = divmod(a, b)
        a, b = b, r
        x, last_x = last_x - q * x, x
        y, last_y = last_y - q * y, y
    if a < 0:
        return -a, -last_x, -last_y
    return a, last_x, last_y


def gcd(a: int, b: int) -> int:
    return egcd(a, b)[0]


def mod_inverse(a: int, n: int) -> int:
    """
    Inverse of a modulo n via the extended Euclidean algorithm.

    Raises ValueError if gcd(a, n) != 1.
    """
    if n <= 0:
        raise ValueError("modulus must be positive")
    if n == 1:
        return 0
    g, x, _ = egcd(a % n, n)
    if g != 1:
        raise ValueError("value has no inverse modulo n")
    return x % n


def mod_pow(base: int, exponent: int, n: int) -> int:
    """base^exponent mod n; a negative exponent goes through the inverse."""
    if n <= 0:
        raise ValueError("modulus must be positive")
    if exponent < 0:
        return pow(mod_inverse(base, n), -exponent, n)
    return pow(base, exponent, n)


def random_coprime(n: int) -> int:
    """
    Uniform random r with 1 < r < n and gcd(r, n) == 1.

    Rejection sampling over a CSPRNG; for an RSA modulus a retry is
    vanishingly rare.
    """
    if n <= 3:
        raise ValueError("modulus too small to sample a blinding factor")
    while True:
        r = crandom.randrange(2, n)
        if gcd(r, n) == 1:
            return r
