"""Alert models, templates, pipeline stages, an alert store, a webhook receiver and tenant sidecars."""

__version__ = "0.1.0"