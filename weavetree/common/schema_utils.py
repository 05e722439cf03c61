import copy
import json
import math
from dataclasses import asdict, dataclass, fields, is_dataclass
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any, Dict, Optional

Parameters = Dict[str, str]


def _qfloat(x: float, places: int = 8) -> float:
    # stable decimal rounding: converts via str -> Decimal -> quantize
    q = Decimal(1) / (Decimal(10) ** places)
    d = Decimal(str(x)).quantize(q, rounding=ROUND_HALF_EVEN)
    f = float(d)
    return 0.0 if f == 0.0 else f


def _canon(obj: Any, places: int = 8):
    if isinstance(obj, float):
        if math.isnan(obj):
            return "NaN"
        return _qfloat(obj, places)
    if is_dataclass(obj):
        return _canon(asdict(obj), places)
    if isinstance(obj, dict):
        return {str(k): _canon(v, places) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_canon(v, places) for v in obj]
    return obj


def canonical_json(obj: Any, places: int = 8) -> str:
    return json.dumps(
        _canon(obj, places),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def parameters_key(parameters: Optional[Parameters]) -> str:
    """Structural equality key for a parameter map. None and {} are equal."""
    return canonical_json(parameters or {})


def parameters_equal(
    first: Optional[Parameters], second: Optional[Parameters]
) -> bool:
    return parameters_key(first) == parameters_key(second)


def copy_parameters(parameters: Optional[Parameters]) -> Optional[Parameters]:
    # Siblings must never share one parameter dict
    if parameters is None:
        return None
    return copy.deepcopy(dict(parameters))


@dataclass
class SchemaClass:
    # For logging ease
    def __str__(self) -> str:
        return json.dumps(asdict(self), indent=4)

    # Configs are handed to several documents; none may alias another's state
    def __post_init__(self):
        for f in fields(self):
            setattr(self, f.name, copy.deepcopy(getattr(self, f.name)))

    def __copy__(self):
        return self.__deepcopy__({})

    def __deepcopy__(self, memo):
        cls = self.__class__
        kwargs = {
            f.name: copy.deepcopy(getattr(self, f.name), memo) for f in fields(self)
        }
        return cls(**kwargs)

    def __setattr__(self, name, value):
        super().__setattr__(name, copy.deepcopy(value))
