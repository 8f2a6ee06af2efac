"""Balancer V2 weighted-pool fixed point and log/exp math on integers."""

from __future__ import annotations

_U256_MAX = 2**256 - 1

ONE_18 = 10**18
ONE_20 = 10**20
ONE_36 = 10**36

MAX_NATURAL_EXPONENT = 130 * 10**18
MIN_NATURAL_EXPONENT = -41 * 10**18

LN_36_LOWER_BOUND = 10**18 - 10**17
LN_36_UPPER_BOUND = 10**18 + 10**17

MILD_EXPONENT_BOUND = 2**254 // 10**20

MAX_POW_RELATIVE_ERROR = 10000

X0 = 128000000000000000000
A0 = 38877084059945950922200000000000000000000000000000000000
X1 = 64000000000000000000
A1 = 6235149080811616882910000000

_TERMS_20 = (
    (3200000000000000000000, 7896296018268069516100000000000000),
    (1600000000000000000000, 888611052050787263676000000),
    (800000000000000000000, 298095798704172827474000),
    (400000000000000000000, 5459815003314423907810),
    (200000000000000000000, 738905609893065022723),
    (100000000000000000000, 271828182845904523536),
    (50000000000000000000, 164872127070012814685),
    (25000000000000000000, 128402541668774148407),
    (12500000000000000000, 113314845306682631683),
    (6250000000000000000, 106449445891785942956),
)


class BalancerMathError(ArithmeticError):
    """Raised when an input is out of the range the math supports."""


def _tdiv(a: int, b: int) -> int:
    """Signed division truncating toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def _tmod(a: int, b: int) -> int:
    return a - b * _tdiv(a, b)


def _u256(value: int) -> int:
    if value < 0 or value > _U256_MAX:
        raise BalancerMathError("uint256 overflow")
    return value


def _add(a: int, b: int) -> int:
    return _u256(a + b)


def _sub(a: int, b: int) -> int:
    return _u256(a - b)


def exp(x: int) -> int:
    """e**x for an 18-decimal fixed point exponent."""
    if not MIN_NATURAL_EXPONENT <= x <= MAX_NATURAL_EXPONENT:
        raise BalancerMathError("INVALID_EXPONENT")
    if x < 0:
        return _tdiv(ONE_18 * ONE_18, exp(-x))

    if x >= X0:
        x -= X0
        first_an = A0
    elif x >= X1:
        x -= X1
        first_an = A1
    else:
        first_an = 1

    x *= 100
    product = ONE_20
    for x_n, a_n in _TERMS_20[:8]:
        if x >= x_n:
            x -= x_n
            product = product * a_n // ONE_20

    series_sum = ONE_20
    term = x
    series_sum += term
    for n in range(2, 13):
        term = term * x // ONE_20 // n
        series_sum += term

    return product * series_sum // ONE_20 * first_an // 100


def ln(a: int) -> int:
    """Natural logarithm of an 18-decimal fixed point value."""
    if a <= 0:
        raise BalancerMathError("OUT_OF_BOUNDS")
    if a < ONE_18:
        return -ln(ONE_18 * ONE_18 // a)

    total = 0
    if a >= A0 * ONE_18:
        a //= A0
        total += X0
    if a >= A1 * ONE_18:
        a //= A1
        total += X1

    total *= 100
    a *= 100
    for x_n, a_n in _TERMS_20:
        if a >= a_n:
            a = a * ONE_20 // a_n
            total += x_n

    z = _tdiv((a - ONE_20) * ONE_20, a + ONE_20)
    z_squared = _tdiv(z * z, ONE_20)
    num = z
    series_sum = num
    for divisor in (3, 5, 7, 9, 11):
        num = _tdiv(num * z_squared, ONE_20)
        series_sum += _tdiv(num, divisor)
    series_sum *= 2

    return _tdiv(total + series_sum, 100)


def ln_36(x: int) -> int:
    """High precision natural logarithm returning 36 decimals, for x near one."""
    x = x * ONE_18
    z = _tdiv((x - ONE_36) * ONE_36, x + ONE_36)
    z_squared = _tdiv(z * z, ONE_36)
    num = z
    series_sum = num
    for n in range(1, 8):
        num = _tdiv(num * z_squared, ONE_36)
        series_sum += _tdiv(num, 2 * n + 1)
    return series_sum * 2


def log_exp_pow(x: int, y: int) -> int:
    """x**y with both operands as 18-decimal fixed point values."""
    if y == 0:
        return ONE_18
    if x == 0:
        return 0
    if not 0 < x < 2**255:
        raise BalancerMathError("X_OUT_OF_BOUNDS")
    if not 0 <= y < MILD_EXPONENT_BOUND:
        raise BalancerMathError("Y_OUT_OF_BOUNDS")

    if LN_36_LOWER_BOUND < x < LN_36_UPPER_BOUND:
        ln_36_x = ln_36(x)
        logx_times_y = _tdiv(ln_36_x, ONE_18) * y + _tdiv(_tmod(ln_36_x, ONE_18) * y, ONE_18)
    else:
        logx_times_y = ln(x) * y
    logx_times_y = _tdiv(logx_times_y, ONE_18)

    if not MIN_NATURAL_EXPONENT <= logx_times_y <= MAX_NATURAL_EXPONENT:
        raise BalancerMathError("PRODUCT_OUT_OF_BOUNDS")
    return abs(exp(logx_times_y))


def scale(value: int, decimals: int) -> int:
    """Multiply by 10**decimals."""
    if decimals < 0:
        raise BalancerMathError("negative scaling factor")
    return _u256(value * 10**decimals)


def div_up(a: int, b: int) -> int:
    if a == 0:
        return 0
    return (_u256(a * ONE_18) - 1) // b + 1


def div_down(a: int, b: int) -> int:
    if a == 0:
        return 0
    return _u256(a * ONE_18) // b


def mul_up(a: int, b: int) -> int:
    product = _u256(a * b)
    if product == 0:
        return 0
    return (product - 1) // ONE_18 + 1


def mul_down(a: int, b: int) -> int:
    return _u256(a * b) // ONE_18


def pow_up(x: int, y: int) -> int:
    """x**y rounded up, with exact shortcuts for exponents one, two and four."""
    if y == ONE_18:
        return x
    if y == 2 * ONE_18:
        return mul_up(x, x)
    if y == 4 * ONE_18:
        square = mul_up(x, x)
        return mul_up(square, square)
    raw = log_exp_pow(x, y)
    max_error = _add(mul_up(raw, MAX_POW_RELATIVE_ERROR), 1)
    return _add(raw, max_error)


def complement(x: int) -> int:
    return ONE_18 - x if x < ONE_18 else 0


def balancer_v2_out(
    amount_in: int,
    balance_in: int,
    balance_out: int,
    weight_in: int,
    weight_out: int,
    swap_fee: int,
    token_decimals: int,
) -> int:
    """Output amount of a weighted-pool swap given exact input."""
    scaling_factor = 18 - token_decimals
    scaled_amount_in = scale(amount_in, scaling_factor)
    without_fees = _sub(scaled_amount_in, mul_up(scaled_amount_in, swap_fee))
    amount_in = scale(without_fees, scaling_factor)

    denominator = _add(balance_in, amount_in)
    base = div_up(balance_in, denominator)
    exponent = div_down(weight_in, weight_out)
    power = pow_up(base, exponent)
    return mul_down(balance_out, complement(power))