"""Result log parsing and correlation."""

from dotnet_test_explorer.results.correlator import ResultCorrelator
from dotnet_test_explorer.results.locator import find_result_log
from dotnet_test_explorer.results.trx import TrxDocument, load_trx, parse_trx

__all__ = [
    "ResultCorrelator",
    "TrxDocument",
    "find_result_log",
    "load_trx",
    "parse_trx",
]
