"""Care-Assist session ledger.

UF arithmetic, aggregation, filtering and trend building over one patient's
dialysis records, plus the client-side collaborators that feed them.
"""

__version__ = "0.1.0"
