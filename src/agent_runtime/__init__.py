"""Agent runtime: character-driven chat agents over a provider/action/evaluator pipeline."""

__version__ = "0.1.0"
