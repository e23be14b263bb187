from scipy import stats
import math


def two_proportion_z_test(successes_a: int, total_a: int, successes_b: int, total_b: int) -> tuple[float, float]:
    """
    Pooled two-proportion z-test of B against A.

    Returns (z_score, two_sided_p_value). When the pooled standard error is zero
    (both groups at 0% or both at 100%) there is no evidence of a difference and
    (0.0, 1.0) is returned.
    """
    if total_a <= 0 or total_b <= 0:
        raise ValueError("both groups need at least one observation")

    rate_a = successes_a / total_a
    rate_b = successes_b / total_b
    pooled = (successes_a + successes_b) / (total_a + total_b)
    standard_error = math.sqrt(pooled * (1 - pooled) * (1 / total_a + 1 / total_b))

    if standard_error == 0:
        return 0.0, 1.0

    z_score = (rate_b - rate_a) / standard_error
    p_value = 2 * stats.norm.sf(abs(z_score))
    return float(z_score), float(p_value)
