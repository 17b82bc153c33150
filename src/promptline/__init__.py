"""promptline: budgeted, guarded LLM request pipeline."""

__version__ = "0.1.0"
