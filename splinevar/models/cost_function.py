"""
Cost function of the spline analysis and its minimiser.

The control variable ``q`` lives in the whitened space of the background error
covariance, so the background term is simply ``0.5 * |q|^2``. The increment
coefficients are ``A = P sigma F q`` and the observation term compares the
increment seen by the observations with the innovation ``d = y - H(x_b)``::

    J(q) = 0.5 |q|^2 + 0.5 sum((H(dx) - d) * inverse_error)^2 + mc * |div(U_b + dU)|^2

The gradient is assembled with the adjoint chain rather than autograd, the
minimiser is :class:`torch.optim.LBFGS` driven one iteration at a time so that
every iteration can be logged and checked for convergence.
"""
import enum
import math
import warnings
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import torch
import torch.nn as nn

from splinevar.data.observations import ObservationSet, ObservationType
from splinevar.models.basis import BasisLookup
from splinevar.models.config import AnalysisConfig
from splinevar.models.continuity import MassContinuity
from splinevar.models.grid import Grid3D
from splinevar.models.observation_operator import ObservationOperator
from splinevar.models.transforms import StateTransform
from splinevar.utils.constants import NUM_VARS
from splinevar.utils.errors import DivergenceWarning, StateError
from splinevar.utils.input_validation import as_tensor, validate_control_vector, validate_mish_state
from splinevar.utils.logger import get_logger

LOGGER = get_logger(__name__)


class CostState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    MINIMIZING = "minimizing"
    CONVERGED = "converged"
    MAX_ITER_REACHED = "max_iter_reached"
    FINALIZED = "finalized"


_EVALUABLE = (CostState.INITIALIZED, CostState.MINIMIZING, CostState.CONVERGED, CostState.MAX_ITER_REACHED)
_DONE = (CostState.CONVERGED, CostState.MAX_ITER_REACHED)


class CostFunction3D:
    """
    Variational cost function over the spline coefficients of one grid.

    Args:
        grid: analysis grid, already adjusted for ghost margins
        config: analysis configuration
        dtype: floating point type of every buffer
    """

    def __init__(self, grid: Grid3D, config: AnalysisConfig, dtype=torch.float64):
        self.grid = grid
        self.config = config
        self.dtype = dtype
        self.device = torch.device(config.device)
        self.state = CostState.UNINITIALIZED
        self.iterations = 0
        self.statistics: Optional[pd.DataFrame] = None
        self.analysis_coefficients: Optional[torch.Tensor] = None
        self._history: List[Dict] = []
        self._q: Optional[nn.Parameter] = None
        self._analysis: Optional[torch.Tensor] = None

    def _require(self, allowed, operation: str):
        if self.state not in allowed:
            raise StateError(f"Cannot {operation} while the cost function is {self.state.value}")

    @property
    def shape(self):
        return (NUM_VARS,) + self.grid.node_shape

    def initialize(self, background=None, observations: Optional[ObservationSet] = None):
        """
        Build the operators and the fixed parts of the cost.

        Args:
            background: mish background ``[var, x, y, z]``, zero when None
            observations: observations inside the usable domain
        """
        self._require((CostState.UNINITIALIZED,), "initialize")
        cfg = self.config
        bc_table = cfg.bc_table()
        if background is None:
            background = torch.zeros((NUM_VARS,) + self.grid.mish_shape, dtype=self.dtype, device=self.device)
        self.background = validate_mish_state(as_tensor(background, self.dtype, self.device), self.grid.mish_shape)
        if observations is None:
            observations = ObservationSet.empty(dtype=self.dtype, device=self.device)
        self.observations = observations

        lookup = BasisLookup(self.grid, bc_table, dtype=self.dtype, device=self.device)
        self.transform = StateTransform(
            self.grid,
            bc_table,
            lookup=lookup,
            filter_lengths=cfg.filter_lengths,
            filter_passes=cfg.filter_passes,
            bg_error=cfg.bg_error,
            dtype=self.dtype,
            device=self.device,
        )
        self.operator = ObservationOperator(
            self.grid, observations, bc_table, mode=cfg.obs_interpolation, dtype=self.dtype, device=self.device
        )
        self.continuity = MassContinuity(self.grid, cfg.mc_weight, dtype=self.dtype, device=self.device)

        self.background_coefficients = self.transform.fit(self.background)
        self.innovation = self.operator.innovation(self._operator_state(self.background, self.background_coefficients))
        self._inverse_variance = self.operator.inverse_error**2

        if cfg.obs_interpolation == "linear" and len(observations):
            coverage = self.operator.adjoint(torch.ones_like(self.innovation)).abs().sum(dim=0)
            LOGGER.info("%d of %d mish points are not seen by any observation", int((coverage == 0).sum()), coverage.numel())
        LOGGER.info(
            "Cost function initialized: %d control values, %d observations, mass continuity weight %g",
            self.grid.state_size,
            len(observations),
            cfg.mc_weight,
        )
        self.state = CostState.INITIALIZED

    def _operator_state(self, mish: torch.Tensor, coefficients: torch.Tensor) -> torch.Tensor:
        return mish if self.operator.mode == "linear" else coefficients

    def _as_control(self, q) -> torch.Tensor:
        q = as_tensor(q, self.dtype, self.device)
        if q.ndim == 1:
            q = validate_control_vector(q, self.grid.state_size).reshape(self.shape)
        elif tuple(q.shape) != self.shape:
            raise ValueError(f"Expected control variable shape {self.shape}, got {tuple(q.shape)}")
        return q

    def init_state(self, iteration: int = 0):
        """Zero the control variable on the first pass, keep the previous one on later passes"""
        self._require(_EVALUABLE, "init_state")
        if iteration == 0 or self._q is None:
            self._q = nn.Parameter(torch.zeros(self.shape, dtype=self.dtype, device=self.device))
        self._history = []
        self.iterations = 0
        self._analysis = None
        self.state = CostState.INITIALIZED

    def _residual(self, A: torch.Tensor):
        """Observation residual ``H(dx) - d`` and the increment on the mish"""
        dU = self.transform.synthesize(A, "mish")
        return self.operator.forward(self._operator_state(dU, A)) - self.innovation, dU

    def _forward(self, q):
        q = self._as_control(q)
        r, dU = self._residual(self.transform.filter_transform(q))
        return q, r, dU

    def _value(self, q: torch.Tensor, r: torch.Tensor, dU: torch.Tensor) -> float:
        cost = 0.5 * (q * q).sum() + 0.5 * (r * r * self._inverse_variance).sum()
        if self.continuity.enabled:
            cost = cost + self.continuity.cost(self.background + dU)
        return float(cost)

    def _gradient(self, q: torch.Tensor, r: torch.Tensor, dU: torch.Tensor) -> torch.Tensor:
        adj = self.operator.adjoint(r * self._inverse_variance)
        if self.operator.mode == "linear":
            g_mish = adj
            g_coeff = None
        else:
            g_mish = None
            g_coeff = adj
        if self.continuity.enabled:
            mc = self.continuity.gradient(self.background + dU)
            g_mish = mc if g_mish is None else g_mish + mc
        g = torch.zeros(self.shape, dtype=self.dtype, device=self.device)
        if g_mish is not None:
            g = g + self.transform.synthesize_transpose(g_mish, "mish")
        if g_coeff is not None:
            g = g + g_coeff
        return self.transform.filter_transpose(g) + q

    def func_value(self, q) -> float:
        self._require(_EVALUABLE, "evaluate the cost")
        return self._value(*self._forward(q))

    def func_gradient(self, q) -> torch.Tensor:
        self._require(_EVALUABLE, "evaluate the gradient")
        return self._gradient(*self._forward(q))

    def evaluate(self, q) -> Tuple[float, torch.Tensor]:
        """Cost and gradient from a single forward transform"""
        self._require(_EVALUABLE, "evaluate the cost")
        terms = self._forward(q)
        return self._value(*terms), self._gradient(*terms)

    def minimize(self) -> pd.DataFrame:
        """
        Run L-BFGS until the gradient or cost criterion is met or the iteration
        cap is reached.

        Returns:
            The iteration history
        """
        self._require((CostState.INITIALIZED,), "minimize")
        if self._q is None:
            raise StateError("init_state must be called before minimize")
        cfg = self.config
        q = self._q
        optimizer = torch.optim.LBFGS(
            [q],
            lr=1.0,
            max_iter=1,
            tolerance_grad=0.0,
            tolerance_change=0.0,
            history_size=10,
            line_search_fn="strong_wolfe",
        )

        # last point evaluated by the line search, reused when the step accepts it
        last = {}

        def closure():
            with torch.no_grad():
                value, grad = self.evaluate(q.detach())
                q.grad = grad
                last.update(point=q.detach().clone(), cost=value, grad=grad)
                return torch.tensor(value, dtype=self.dtype)

        def current():
            if "point" in last and torch.equal(last["point"], q.detach()):
                return last["cost"], last["grad"]
            with torch.no_grad():
                return self.evaluate(q.detach())

        self.state = CostState.MINIMIZING
        cost, grad = current()
        gnorm0 = float(torch.linalg.norm(grad))
        self._record(cost, gnorm0)
        LOGGER.info("Initial cost %.8e, gradient norm %.8e", cost, gnorm0)
        gtol = cfg.gradient_tolerance * max(1.0, gnorm0)
        if gnorm0 <= gtol:
            self.state = CostState.CONVERGED
            LOGGER.info("Converged before the first iteration")
            return self.history

        while self.iterations < cfg.max_iterations:
            optimizer.step(closure)
            self.iterations += 1
            previous = cost
            cost, grad = current()
            gnorm = float(torch.linalg.norm(grad))
            self._record(cost, gnorm)
            LOGGER.info("Iteration %d: cost %.8e, gradient norm %.8e", self.iterations, cost, gnorm)
            if not math.isfinite(cost):
                raise FloatingPointError(f"Cost became non-finite at iteration {self.iterations}")
            if gnorm <= gtol or abs(previous - cost) <= cfg.cost_tolerance * max(abs(previous), 1.0):
                self.state = CostState.CONVERGED
                LOGGER.info("Converged after %d iterations", self.iterations)
                return self.history
            if cost >= previous:
                LOGGER.warning("Cost did not decrease at iteration %d (%.8e >= %.8e)", self.iterations, cost, previous)
                warnings.warn(f"Cost did not decrease at iteration {self.iterations}", DivergenceWarning)

        self.state = CostState.MAX_ITER_REACHED
        LOGGER.warning("Reached the iteration cap of %d", cfg.max_iterations)
        return self.history

    def _record(self, cost: float, gnorm: float):
        self._history.append({"iteration": self.iterations, "cost": cost, "gradient_norm": gnorm})

    @property
    def history(self) -> pd.DataFrame:
        return pd.DataFrame(self._history, columns=["iteration", "cost", "gradient_norm"])

    @property
    def control(self) -> torch.Tensor:
        if self._q is None:
            raise StateError("The control variable has not been initialized")
        return self._q.detach()

    def update_bg(self) -> torch.Tensor:
        """Add the synthesised increment to the background, the background itself is left untouched"""
        self._require(_DONE, "update the background")
        with torch.no_grad():
            increment = self.transform.filter_transform(self.control)
            self._analysis = self.background + self.transform.synthesize(increment, "mish")
            self.analysis_coefficients = self.background_coefficients + increment
            self.statistics = self._statistics()
        return self._analysis

    def _statistics(self) -> pd.DataFrame:
        """Observation minus background and minus analysis, per observation type"""
        obs = self.operator.values
        omb = self.innovation
        oma = obs - self.operator.forward(self._operator_state(self._analysis, self.analysis_coefficients))
        df = pd.DataFrame(
            {
                "type": [ObservationType.label(t) for t in self.observations.types.cpu().numpy()],
                "omb": omb.cpu().numpy(),
                "oma": oma.cpu().numpy(),
            }
        )
        if df.empty:
            return pd.DataFrame(columns=["count", "omb_mean", "omb_rms", "oma_mean", "oma_rms"])
        grouped = df.groupby("type")
        stats = pd.DataFrame(
            {
                "count": grouped.size(),
                "omb_mean": grouped["omb"].mean(),
                "omb_rms": grouped["omb"].apply(lambda s: float(np.sqrt(np.mean(s**2)))),
                "oma_mean": grouped["oma"].mean(),
                "oma_rms": grouped["oma"].apply(lambda s: float(np.sqrt(np.mean(s**2)))),
            }
        )
        for label, row in stats.iterrows():
            LOGGER.info(
                "%s: %d obs, O-B rms %.4f, O-A rms %.4f", label, int(row["count"]), row["omb_rms"], row["oma_rms"]
            )
        return stats

    def finalize(self) -> torch.Tensor:
        """Release the operators and return the mish analysis"""
        self._require(_DONE, "finalize")
        analysis = self._analysis if self._analysis is not None else self.update_bg()
        del self.transform, self.operator, self.continuity, self.innovation, self._inverse_variance
        self._q = None
        self.state = CostState.FINALIZED
        return analysis
