import inspect
from typing import Dict, Any, List
from sklearn.ensemble import ExtraTreesRegressor, RandomForestRegressor

class ModelFactory:
    """
    Factory for the random-forest base learners, keyed by split rule.

    'variance' grows classic CART-style trees on bootstrap samples, 'extratrees'
    draws split points at random (extremely randomized trees).
    """

    SPLIT_RULES = {
        'variance': RandomForestRegressor,
        'extratrees': ExtraTreesRegressor,
    }

    # Grid-level names mapped onto scikit-learn constructor arguments
    PARAM_ALIASES = {
        'mtry': 'max_features',
        'min_node_size': 'min_samples_leaf',
        'num_trees': 'n_estimators',
    }

    @classmethod
    def create(cls, split_rule: str, params: Dict[str, Any] = None) -> Any:
        """
        Create and return an instantiated model.
        """
        if params is None:
            params = {}

        if split_rule not in cls.SPLIT_RULES:
            raise ValueError(f"Unknown split rule: {split_rule}. Available: {cls.get_available_split_rules()}")

        model_class = cls.SPLIT_RULES[split_rule]
        translated = {cls.PARAM_ALIASES.get(k, k): v for k, v in params.items()}
        valid_params = cls._filter_params(model_class, translated)
        return model_class(**valid_params)

    @classmethod
    def get_available_split_rules(cls) -> List[str]:
        """Return list of all supported split rules."""
        return list(cls.SPLIT_RULES.keys())

    @staticmethod
    def _filter_params(model_class, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Remove parameters from `params` that are not accepted by `model_class` constructor.
        """
        sig = inspect.signature(model_class.__init__)

        valid_keys = [
            p.name for p in sig.parameters.values()
            if p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY)
        ]

        # Always allow **kwargs if the model supports it
        has_kwargs = any(p.kind == p.VAR_KEYWORD for p in sig.parameters.values())

        if has_kwargs:
            return params

        return {k: v for k, v in params.items() if k in valid_keys}
