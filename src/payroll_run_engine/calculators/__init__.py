"""Payroll calculation engine."""

from payroll_run_engine.calculators.engine import (
    EmployeeCalculation,
    PayrollEngine,
    RunCalculation,
)
from payroll_run_engine.calculators.line_builder import LineItemBuilder
from payroll_run_engine.calculators.tax_calculator import StatutoryTables, TaxCalculator

__all__ = [
    "EmployeeCalculation",
    "LineItemBuilder",
    "PayrollEngine",
    "RunCalculation",
    "StatutoryTables",
    "TaxCalculator",
]
