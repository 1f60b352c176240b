"""Voice assessment queue: durable, prioritized CEFR scoring of candidate recordings."""

__version__ = "0.1.0"
