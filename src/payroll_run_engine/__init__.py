"""Philippine payroll run calculation engine."""

__version__ = "0.1.0"
