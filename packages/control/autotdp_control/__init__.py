"""Frame-rate targeting TDP control: performance curves, filters and the controller."""

from .bias import BiasEstimator
from .controller import AdaptiveController, ControllerSettings, SceneChangeDetector, SetpointHistory, TickResult
from .curve import PerformanceCurve, PerformanceCurveNode
from .errors import CurveError, LookupOutOfRange
from .filters import LowPassFilter, OneEuroFilter
from .library import DEFAULT_APPLICATION, DEFAULT_CURVE_POINTS, CurveLibrary
from .published import PublishedValue, Snapshot
from .strategy import BiasRatioStrategy, ControlInputs, ControllerState, ControlStrategy, StepResult

__all__ = [
    "AdaptiveController",
    "BiasEstimator",
    "BiasRatioStrategy",
    "ControlInputs",
    "ControlStrategy",
    "ControllerSettings",
    "ControllerState",
    "CurveError",
    "CurveLibrary",
    "DEFAULT_APPLICATION",
    "DEFAULT_CURVE_POINTS",
    "LookupOutOfRange",
    "LowPassFilter",
    "OneEuroFilter",
    "PerformanceCurve",
    "PerformanceCurveNode",
    "PublishedValue",
    "SceneChangeDetector",
    "SetpointHistory",
    "Snapshot",
    "StepResult",
    "TickResult",
]
