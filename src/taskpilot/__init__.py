"""Decision core of a task agent: template reuse, PII-safe extraction, repair gating."""

__version__ = "0.1.0"
