"""Script preparation helpers."""

from lt_runner.scripts.injector import InjectionParams, ParameterInjector

__all__ = ["InjectionParams", "ParameterInjector"]
