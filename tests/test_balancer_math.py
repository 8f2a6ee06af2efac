import pytest

from basebuster.balancer_math import (
    BalancerMathError,
    balancer_v2_out,
    complement,
    div_down,
    div_up,
    exp,
    ln,
    ln_36,
    log_exp_pow,
    mul_down,
    mul_up,
    pow_up,
    scale,
)

ONE = 10**18


def test_exp_of_zero_is_one():
    assert exp(0) == ONE


def test_exp_of_one_is_e():
    e_scaled = 271828182845904523536 // 100
    assert abs(exp(ONE) - e_scaled) < 10**6


def test_exp_negative_is_reciprocal():
    product = exp(2 * ONE) * exp(-2 * ONE)
    assert abs(product - ONE * ONE) < ONE * 10**4


def test_exp_out_of_range():
    with pytest.raises(BalancerMathError):
        exp(131 * ONE)
    with pytest.raises(BalancerMathError):
        exp(-42 * ONE)


def test_ln_of_one_is_zero():
    assert ln(ONE) == 0
    assert ln_36(ONE) == 0


@pytest.mark.parametrize("x", [3 * ONE, ONE // 2, 70 * ONE])
def test_ln_exp_round_trip(x):
    assert abs(ln(exp(x)) - x) < 10**8


def test_ln_rejects_non_positive():
    with pytest.raises(BalancerMathError):
        ln(0)


def test_pow_trivial_cases():
    assert log_exp_pow(5 * ONE, 0) == ONE
    assert log_exp_pow(0, 3 * ONE) == 0


def test_pow_square_root():
    assert abs(log_exp_pow(4 * ONE, ONE // 2) - 2 * ONE) < 10**6


def test_pow_near_one_uses_precise_branch():
    x = ONE + 10**16
    assert abs(log_exp_pow(x, 2 * ONE) - mul_down(x, x)) < 10**6


def test_pow_bounds():
    with pytest.raises(BalancerMathError):
        log_exp_pow(2**255, ONE)
    with pytest.raises(BalancerMathError):
        log_exp_pow(ONE, 2**254)


def test_rounding_pairs():
    a, b = 123456789123456789, 987654321987654321
    assert 0 <= mul_up(a, b) - mul_down(a, b) <= 1
    assert 0 <= div_up(a, b) - div_down(a, b) <= 1
    assert div_up(0, b) == 0
    assert div_down(0, b) == 0
    assert mul_up(0, b) == 0


def test_pow_up_shortcuts():
    x = 3 * ONE // 4
    assert pow_up(x, ONE) == x
    assert pow_up(x, 2 * ONE) == mul_up(x, x)
    assert pow_up(x, 4 * ONE) == mul_up(mul_up(x, x), mul_up(x, x))
    assert pow_up(x, 3 * ONE) > log_exp_pow(x, 3 * ONE)


def test_complement():
    assert complement(ONE // 4) == ONE - ONE // 4
    assert complement(2 * ONE) == 0


def test_scale():
    assert scale(7, 0) == 7
    assert scale(7, 3) == 7000
    with pytest.raises(BalancerMathError):
        scale(7, -1)


def test_equal_weights_behave_like_constant_product():
    balance_in, balance_out, amount = 1000 * ONE, 2000 * ONE, 10 * ONE
    out = balancer_v2_out(amount, balance_in, balance_out, ONE // 2, ONE // 2, 0, 18)
    ideal = balance_out * amount // (balance_in + amount)
    assert out <= ideal
    assert ideal - out < 10**4


def test_fee_reduces_output():
    args = (10 * ONE, 1000 * ONE, 2000 * ONE, ONE // 2, ONE // 2)
    assert balancer_v2_out(*args, 3 * 10**15, 18) < balancer_v2_out(*args, 0, 18)


def test_decimals_above_eighteen_rejected():
    with pytest.raises(BalancerMathError):
        balancer_v2_out(ONE, ONE, ONE, ONE, ONE, 0, 19)