from dataclasses import dataclass, field
from typing import Dict, Iterable, List


@dataclass(frozen=True)
class FeatureSchema:
    """
    Declared column kinds for a modelling table.

    Downstream stages (trainer, importance aggregation, correlation pruning)
    consult the schema instead of inspecting dtypes at runtime.
    """
    response: str
    numeric: List[str] = field(default_factory=list)
    categorical: List[str] = field(default_factory=list)

    @property
    def predictors(self) -> List[str]:
        return list(self.numeric) + list(self.categorical)

    def is_categorical(self, name: str) -> bool:
        return name in self.categorical

    def restrict(self, features: Iterable[str]) -> "FeatureSchema":
        """Schema limited to the given predictors (order of the schema is kept)."""
        keep = set(features)
        return FeatureSchema(
            response=self.response,
            numeric=[c for c in self.numeric if c in keep],
            categorical=[c for c in self.categorical if c in keep],
        )

    def to_dict(self) -> Dict[str, object]:
        return {'response': self.response, 'numeric': list(self.numeric), 'categorical': list(self.categorical)}

    @classmethod
    def from_dict(cls, payload: Dict[str, object]) -> "FeatureSchema":
        return cls(
            response=payload['response'],
            numeric=list(payload.get('numeric', [])),
            categorical=list(payload.get('categorical', [])),
        )
