import numpyro.distributions as dist


def half_student_t(df: float = 3.0, scale: float = 2.5) -> dist.Distribution:
    """Student-t folded at zero, used as a scale prior."""
    return dist.FoldedDistribution(dist.StudentT(df, 0.0, scale))
