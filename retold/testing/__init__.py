from .aggregate_scenario import AggregateScenario
from .read_model_scenario import ReadModelScenario

__all__ = ["AggregateScenario", "ReadModelScenario"]
