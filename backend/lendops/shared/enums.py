from __future__ import annotations

from enum import Enum


class Env(str, Enum):
    dev = "dev"
    prod = "prod"
    test = "test"


class DispatchMode(str, Enum):
    inline = "inline"
    background = "background"


class AnalyticsDomain(str, Enum):
    loans = "loans"
    funds = "funds"
    payments = "payments"
    inspections = "inspections"
