"""Lefkovitch (size-structured) population matrix model.

Builds the projection matrix ``A = U + F`` from transition counts, where
``U[i, j] = s_j · g_ij`` (survival times survival-conditioned fate) and
``F[0, j] = f_j`` (recruited fragments per colony of class j), then
performs the eigen-analysis:

- λ: dominant eigenvalue (largest modulus), must be real and positive
- w: stable stage distribution (right eigenvector, sums to 1)
- v: reproductive values (left eigenvector, sums to 1)
- sensitivity ``s_ij = v_i w_j / <v, w>`` and elasticity ``a_ij s_ij / λ``
- generation time ``log(R0) / log(λ)`` with R0 the dominant eigenvalue
  of ``F (I - U)^-1``
- damping ratio ``λ / |λ2|``

Uncertainty in λ comes from a parametric bootstrap over the transition
counts (binomial survival, multinomial fates, binomial fragmentation per
source class). Replicates are independent and may run on a thread pool;
each chunk draws from its own stream spawned from one SeedSequence, and
the summary uses percentiles only, so results do not depend on
scheduling order.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence
import logging

import numpy as np

from coralstats.contracts import assert_elasticity_total, assert_projection_matrix, require
from coralstats.demography.transitions import TransitionCounts
from coralstats.errors import InvalidMatrix, InvalidParameter

__all__ = [
    'TransitionMatrix',
    'EigenAnalysis',
    'BootstrapResult',
    'PopulationModelResult',
    'PopulationMatrixEngine',
    'build',
    'solve',
    'dominant_eigenvalue',
    'bootstrap_lambda',
    'project_population',
    'transition_type',
]

logger = logging.getLogger(__name__)


def transition_type(row: int, col: int) -> str:
    """Row is the destination class, column the source class."""
    if row == col:
        return "stasis"
    if row > col:
        return "growth"
    return "shrinkage"


@dataclass(frozen=True)
class TransitionMatrix:
    """Dense square projection matrix split into survival and fragmentation parts."""
    labels: tuple
    survival_part: np.ndarray
    fragmentation_part: np.ndarray

    @property
    def values(self) -> np.ndarray:
        return self.survival_part + self.fragmentation_part

    @property
    def n_classes(self) -> int:
        return len(self.labels)

    @classmethod
    def from_array(cls, values, labels: Optional[Sequence[str]] = None,
                   fragmentation=None) -> "TransitionMatrix":
        """Wrap a full matrix; ``fragmentation`` marks the reproduction share."""
        values = np.asarray(values, dtype=float)
        if values.ndim != 2 or values.shape[0] != values.shape[1]:
            raise InvalidMatrix(f"Projection matrix must be square, got shape {values.shape}",
                                details={"shape": list(values.shape)})
        k = values.shape[0]
        if labels is None:
            labels = [f"SC{i}" for i in range(1, k + 1)]
        frag = np.zeros_like(values) if fragmentation is None else np.asarray(fragmentation, dtype=float)
        matrix = cls(tuple(labels), values - frag, frag)
        matrix.validate()
        return matrix

    def validate(self) -> None:
        if len(self.labels) != self.survival_part.shape[0]:
            raise InvalidMatrix("Label count does not match matrix size",
                                details={"labels": list(self.labels)})
        if not np.all(np.isfinite(self.values)):
            raise InvalidMatrix("Projection matrix has non-finite cells")
        if np.any(self.survival_part < 0) or np.any(self.fragmentation_part < 0) \
                or np.any(self.values > 1.0 + 1e-9):
            raise InvalidMatrix("Projection matrix cells must lie in [0, 1]",
                                details={"matrix": np.round(self.values, 6).tolist()})
        if np.any(self.survival_part.sum(axis=0) > 1.0 + 1e-9):
            raise InvalidMatrix(
                "Survival-conditioned fates exceed 1 for a source class",
                details={"column_sums": np.round(self.survival_part.sum(axis=0), 6).tolist()},
            )
        assert_projection_matrix(self.survival_part, self.fragmentation_part)

    def with_cells(self, cells: Sequence[tuple], new_values: Sequence[float]) -> "TransitionMatrix":
        """Copy with ``cells`` set to ``new_values``.

        A cell's survival and fragmentation shares are rescaled together;
        a cell that was 0 receives the new value as survival share.

        Raises
        ------
        InvalidParameter
            Cell outside the matrix, value outside [0, 1], or a source
            class whose survival-conditioned fates would sum above 1.
        """
        if len(cells) != len(new_values):
            raise InvalidParameter("cells and values must have equal length",
                                   parameter="cells", value=len(cells))
        k = self.n_classes
        u = self.survival_part.copy()
        f = self.fragmentation_part.copy()
        for (i, j), value in zip(cells, new_values):
            if not (0 <= i < k and 0 <= j < k):
                raise InvalidParameter(f"Cell ({i}, {j}) outside a {k}x{k} matrix",
                                       parameter="cells", value=[i, j])
            if not (0.0 <= value <= 1.0):
                raise InvalidParameter(f"Cell ({i}, {j}) value {value} outside [0, 1]",
                                       parameter="values", value=value)
            current = u[i, j] + f[i, j]
            if current > 0:
                u[i, j] *= value / current
                f[i, j] *= value / current
            else:
                u[i, j] = value
        column_survival = u.sum(axis=0)
        for j in sorted(set(j for _, j in cells)):
            if column_survival[j] > 1.0 + 1e-9:
                raise InvalidParameter(
                    f"Survival of source class {self.labels[j]} would be "
                    f"{column_survival[j]:.4f}, above 1",
                    parameter="cells", value=self.labels[j],
                )
        matrix = TransitionMatrix(self.labels, u, f)
        matrix.validate()
        return matrix

    def to_records(self) -> list:
        """Long format: one record per cell."""
        records = []
        for i, dest in enumerate(self.labels):
            for j, src in enumerate(self.labels):
                records.append({
                    "from_class": src,
                    "to_class": dest,
                    "value": float(self.values[i, j]),
                    "survival_part": float(self.survival_part[i, j]),
                    "fragmentation_part": float(self.fragmentation_part[i, j]),
                    "transition_type": transition_type(i, j),
                })
        return records


def build(counts: TransitionCounts) -> TransitionMatrix:
    """Projection matrix from transition counts.

    Missing transitions are 0; the matrix is always dense and square.

    Raises
    ------
    InvalidMatrix
        If a combined first-row cell (shrinkage plus fragmentation) exceeds 1.
    """
    k = counts.n_classes
    survival = counts.survival_rates()
    fates = counts.fate_probabilities()
    u = fates * survival[None, :]
    f = np.zeros((k, k))
    f[0, :] = counts.fragmentation_rates()
    matrix = TransitionMatrix(tuple(counts.labels), u, f)
    matrix.validate()
    return matrix


@dataclass(frozen=True)
class EigenAnalysis:
    lambda_: float
    stable_stage_distribution: np.ndarray
    reproductive_values: np.ndarray
    sensitivity: np.ndarray
    elasticity: np.ndarray          # percent, sums to ~100
    generation_time: Optional[float]
    damping_ratio: Optional[float]


def dominant_eigenvalue(values: np.ndarray, tolerance: float = 1e-8) -> float:
    """Largest-modulus eigenvalue, required to be real and positive.

    Raises
    ------
    InvalidMatrix
        Complex dominant eigenvalue or λ <= 0.
    """
    eigvals = np.linalg.eigvals(values)
    lam = eigvals[np.argmax(np.abs(eigvals))]
    if abs(lam.imag) > tolerance:
        raise InvalidMatrix("Dominant eigenvalue is complex",
                            details={"real": float(lam.real), "imag": float(lam.imag)})
    if lam.real <= 0:
        raise InvalidMatrix("Dominant eigenvalue is not positive",
                            details={"lambda": float(lam.real)})
    return float(lam.real)


def _perron_vector(values: np.ndarray, tolerance: float) -> tuple:
    eigvals, eigvecs = np.linalg.eig(values)
    idx = int(np.argmax(np.abs(eigvals)))
    lam = eigvals[idx]
    if abs(lam.imag) > tolerance:
        raise InvalidMatrix("Dominant eigenvalue is complex",
                            details={"real": float(lam.real), "imag": float(lam.imag)})
    if lam.real <= 0:
        raise InvalidMatrix("Dominant eigenvalue is not positive",
                            details={"lambda": float(lam.real)})
    vec = np.real(eigvecs[:, idx])
    total = vec.sum()
    if total == 0:
        raise InvalidMatrix("Dominant eigenvector cannot be normalized")
    vec = vec / total
    vec[np.abs(vec) < tolerance] = 0.0
    if np.any(vec < 0):
        raise InvalidMatrix("Dominant eigenvector has mixed signs",
                            details={"vector": vec.tolist()})
    return float(lam.real), vec, eigvals


def _generation_time(matrix: TransitionMatrix, lam: float) -> Optional[float]:
    k = matrix.n_classes
    f = matrix.fragmentation_part
    if not np.any(f > 0) or np.isclose(lam, 1.0):
        return None
    try:
        fundamental = np.linalg.inv(np.eye(k) - matrix.survival_part)
    except np.linalg.LinAlgError:
        return None
    r0 = float(np.max(np.abs(np.linalg.eigvals(f @ fundamental))))
    if r0 <= 0:
        return None
    t = float(np.log(r0) / np.log(lam))
    return t if np.isfinite(t) and t > 0 else None


def solve(matrix: TransitionMatrix, eigen_tolerance: float = 1e-8,
          elasticity_tolerance_pct: float = 0.5) -> EigenAnalysis:
    """Eigen-analysis of a projection matrix.

    Parameters
    ----------
    matrix : TransitionMatrix
    eigen_tolerance : float
        Largest imaginary part accepted on the dominant eigenvalue.
    elasticity_tolerance_pct : float
        Allowed deviation of the elasticity total from 100%.

    Returns
    -------
    EigenAnalysis

    Raises
    ------
    InvalidMatrix
        Complex or non-positive dominant eigenvalue, or degenerate eigenvectors.
    """
    a = matrix.values
    lam, w, eigvals = _perron_vector(a, eigen_tolerance)
    _, v, _ = _perron_vector(a.T, eigen_tolerance)

    vw = float(v @ w)
    if vw <= 0:
        raise InvalidMatrix("Reproductive values and stable distribution are orthogonal",
                            details={"lambda": lam})
    sensitivity = np.outer(v, w) / vw
    elasticity = a * sensitivity / lam * 100.0
    assert_elasticity_total(elasticity, elasticity_tolerance_pct)
    require(np.isclose(w.sum(), 1.0), "Stable stage distribution does not sum to 1")

    moduli = np.sort(np.abs(eigvals))[::-1]
    damping = float(lam / moduli[1]) if len(moduli) > 1 and moduli[1] > eigen_tolerance else None

    return EigenAnalysis(
        lambda_=lam,
        stable_stage_distribution=w,
        reproductive_values=v,
        sensitivity=sensitivity,
        elasticity=elasticity,
        generation_time=_generation_time(matrix, lam),
        damping_ratio=damping,
    )


@dataclass(frozen=True)
class BootstrapResult:
    lambdas: np.ndarray
    requested: int
    failed: int
    ci_lower: Optional[float]
    ci_upper: Optional[float]
    ci_level: float
    p_decline: Optional[float]
    low_confidence: bool

    @property
    def successful(self) -> int:
        return int(len(self.lambdas))


def _resample(counts: TransitionCounts, rng: np.random.Generator) -> TransitionCounts:
    survival_events = rng.binomial(counts.survival_n, counts.survival_rates())
    probs = counts.fate_probabilities()
    totals = counts.fates.sum(axis=0)
    fates = np.zeros_like(counts.fates)
    for j in range(counts.n_classes):
        if totals[j] > 0:
            fates[:, j] = rng.multinomial(totals[j], probs[:, j] / probs[:, j].sum())
    frag_events = None
    if counts.has_fragmentation:
        frag_events = rng.binomial(counts.fragmentation_n, counts.fragmentation_rates())
    return TransitionCounts(counts.labels, fates, counts.survival_n, survival_events,
                            counts.fragmentation_n, frag_events)


def _bootstrap_chunk(counts: TransitionCounts, n: int, seed: np.random.SeedSequence,
                     tolerance: float) -> tuple:
    rng = np.random.default_rng(seed)
    lambdas = []
    failed = 0
    for _ in range(n):
        try:
            lambdas.append(dominant_eigenvalue(build(_resample(counts, rng)).values, tolerance))
        except InvalidMatrix:
            failed += 1
    return lambdas, failed


def bootstrap_lambda(
    counts: TransitionCounts,
    replicates: int = 1000,
    seed: Optional[int] = 42,
    n_jobs: int = 1,
    ci_level: float = 0.95,
    min_replicates: int = 500,
    eigen_tolerance: float = 1e-8,
) -> BootstrapResult:
    """Percentile bootstrap CI for λ.

    Fewer than ``min_replicates`` replicates is allowed but flagged
    ``low_confidence``. Replicates whose matrix has no valid λ are skipped
    and counted in ``failed``.
    """
    if replicates < 1:
        raise InvalidParameter("replicates must be >= 1", parameter="replicates", value=replicates)
    low_confidence = replicates < min_replicates
    if low_confidence:
        logger.warning("Bootstrap with %d replicates (< %d): CI flagged low-confidence",
                       replicates, min_replicates)

    n_chunks = max(1, min(n_jobs, replicates))
    sizes = [replicates // n_chunks + (1 if i < replicates % n_chunks else 0)
             for i in range(n_chunks)]
    seeds = np.random.SeedSequence(seed).spawn(n_chunks)

    if n_chunks == 1:
        results = [_bootstrap_chunk(counts, sizes[0], seeds[0], eigen_tolerance)]
    else:
        with ThreadPoolExecutor(max_workers=n_chunks) as pool:
            futures = [pool.submit(_bootstrap_chunk, counts, n, s, eigen_tolerance)
                       for n, s in zip(sizes, seeds)]
            results = [f.result() for f in futures]

    lambdas = np.array([lam for chunk, _ in results for lam in chunk], dtype=float)
    failed = sum(f for _, f in results)
    if failed:
        logger.warning("Skipped %d of %d bootstrap replicates without a valid λ",
                       failed, replicates)

    if len(lambdas) == 0:
        return BootstrapResult(lambdas, replicates, failed, None, None, ci_level, None, True)

    alpha = (1.0 - ci_level) / 2.0
    lower, upper = np.percentile(lambdas, [alpha * 100, (1 - alpha) * 100])
    return BootstrapResult(
        lambdas=lambdas,
        requested=replicates,
        failed=failed,
        ci_lower=float(lower),
        ci_upper=float(upper),
        ci_level=ci_level,
        p_decline=float(np.mean(lambdas < 1.0)),
        low_confidence=low_confidence,
    )


def project_population(lambda_: float, years: int, ci: Optional[tuple] = None,
                       start: float = 100.0) -> list:
    """Relative population size ``start · λ^t`` for t = 0..years."""
    if not 1 <= years <= 100:
        raise InvalidParameter("years must be between 1 and 100", parameter="years", value=years)
    rows = []
    for t in range(years + 1):
        row = {"year": t, "population": start * lambda_ ** t}
        if ci is not None and ci[0] is not None:
            row["ci_lower"] = start * ci[0] ** t
            row["ci_upper"] = start * ci[1] ** t
        rows.append(row)
    return rows


@dataclass(frozen=True)
class PopulationModelResult:
    labels: tuple
    matrix: TransitionMatrix
    lambda_: float
    lambda_ci: tuple
    bootstrap: Optional[BootstrapResult]
    stable_stage_distribution: np.ndarray
    reproductive_values: np.ndarray
    sensitivity: np.ndarray
    elasticity: np.ndarray
    generation_time: Optional[float]
    damping_ratio: Optional[float]

    @property
    def interpretation(self) -> str:
        return "Population declining" if self.lambda_ < 1 else "Population stable or growing"


class PopulationMatrixEngine:
    """Build, solve and bootstrap the matrix model under one configuration.

    Parameters
    ----------
    config : InternalPopulationConfig
    """

    def __init__(self, config):
        self.config = config

    def solve(self, matrix: TransitionMatrix) -> EigenAnalysis:
        return solve(matrix, self.config.eigen_tolerance, self.config.elasticity_tolerance_pct)

    def analyze(self, counts: TransitionCounts, bootstrap: bool = True) -> PopulationModelResult:
        """Point estimate plus (optionally) the bootstrap CI for λ."""
        cfg = self.config
        matrix = build(counts)
        eigen = self.solve(matrix)
        boot = None
        ci = (None, None)
        if bootstrap:
            boot = bootstrap_lambda(counts, cfg.bootstrap_replicates, cfg.seed, cfg.n_jobs,
                                    cfg.ci_level, cfg.min_bootstrap_replicates,
                                    cfg.eigen_tolerance)
            ci = (boot.ci_lower, boot.ci_upper)
        logger.info("Population model: λ=%.4f, CI=%s", eigen.lambda_, ci)
        return PopulationModelResult(
            labels=matrix.labels,
            matrix=matrix,
            lambda_=eigen.lambda_,
            lambda_ci=ci,
            bootstrap=boot,
            stable_stage_distribution=eigen.stable_stage_distribution,
            reproductive_values=eigen.reproductive_values,
            sensitivity=eigen.sensitivity,
            elasticity=eigen.elasticity,
            generation_time=eigen.generation_time,
            damping_ratio=eigen.damping_ratio,
        )
