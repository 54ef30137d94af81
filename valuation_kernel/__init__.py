"""
Valuation Kernel

Shared foundation for the FIFO inventory valuation system:
- Decimal-only money and currency value objects
- Inventory ledger and stock snapshot records
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Injectable clock
- Persistent exchange-rate cache storage
"""

__version__ = "0.1.0"
