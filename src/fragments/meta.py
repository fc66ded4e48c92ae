"""Package metadata for fragments-engine."""

__app_name__ = "fragments"
__version__ = "0.4.0"
__description__ = "Declarative command DSL and step execution engine"
__license_type__ = "MIT"

__all__ = [
    "__app_name__",
    "__description__",
    "__license_type__",
    "__version__",
]
