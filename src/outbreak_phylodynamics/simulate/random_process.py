# src/outbreak_phylodynamics/simulate/random_process.py
# Per-step random draws for the discrete-time SIR process:
#   recoveries ~ Binomial(I, gamma * dt)
#   infections ~ NegBin(mean = rec * R0 * S/N, dispersion = rec * k)
# and the split of a step's infections between the individuals recovering in it.
import logging

import numpy as np
from scipy.stats import nbinom

from ..errors import InvalidParameter

logger = logging.getLogger(__name__)


def draw_recoveries(infected, recovery_rate, dt, rng):
    """Number of infected individuals removed during one step

    Args:
        infected (int): currently infected count
        recovery_rate (float): per-unit-time removal rate (1/Tg)
        dt (float): step size
        rng (np.random.Generator): seeded random source
    Returns:
        int: Binomial(infected, recovery_rate * dt) draw
    Raises:
        InvalidParameter
    """
    p = recovery_rate * dt
    if not 0.0 <= p <= 1.0:
        raise InvalidParameter(f"Recovery probability per step must be in [0, 1], got {p}")
    if infected < 0:
        raise InvalidParameter("Infected count must be >= 0")
    if infected == 0:
        return 0
    return int(rng.binomial(int(infected), p))


def draw_infections(recoveries, R0, k, susceptible_fraction, rng, susceptible=None):
    """Total new infections generated by the individuals recovering this step

    The offspring of `recoveries` independent NegBin(mean=R0*sf, size=k)
    individuals sum to NegBin(mean=recoveries*R0*sf, size=recoveries*k),
    so a single aggregate draw is made. The result is capped at `susceptible`.
    """
    if R0 <= 0 or k <= 0:
        raise InvalidParameter("R0 and k must be > 0")
    if not 0.0 <= susceptible_fraction <= 1.0:
        raise InvalidParameter(f"Susceptible fraction must be in [0, 1], got {susceptible_fraction}")
    if recoveries <= 0:
        return 0

    mean = recoveries * R0 * susceptible_fraction
    if mean <= 0.0:
        return 0
    size = recoveries * k
    # scipy parameterisation: n = dispersion, p = n / (n + mean)
    draw = int(nbinom(n=size, p=size / (size + mean)).rvs(random_state=rng))

    if susceptible is not None:
        draw = min(draw, int(susceptible))
    return draw


def allocate_offspring(total, recovering_ids, k, rng):
    """Partition `total` infections among the recovering individuals

    Given their sum, independent NegBin(k) offspring counts follow a
    Dirichlet-multinomial law with concentration k per individual; the
    split is drawn from that law.

    Returns:
        dict: individual id -> offspring count (non-negative, sums to total)
    """
    ids = [int(i) for i in recovering_ids]
    if total < 0:
        raise InvalidParameter("Total infections must be >= 0")
    if not ids:
        if total > 0:
            raise InvalidParameter("Cannot allocate infections without recovering individuals")
        return {}
    if total == 0:
        return {i: 0 for i in ids}
    if len(ids) == 1:
        return {ids[0]: int(total)}

    weights = rng.dirichlet(np.full(len(ids), float(k)))
    # Dirichlet draws with small k can underflow to all zeros; the k -> 0 limit
    # of the law gives every infection to one individual
    if not np.isfinite(weights).all() or weights.sum() <= 0.0:
        logger.debug("Dirichlet weights underflowed for k=%g; giving all %d infections to one individual",
                     k, total)
        weights = np.zeros(len(ids))
        weights[rng.integers(len(ids))] = 1.0
    counts = rng.multinomial(int(total), weights / weights.sum())
    return {i: int(c) for i, c in zip(ids, counts)}
