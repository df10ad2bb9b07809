from pathlib import Path
import csv
import time
from typing import Any, Dict

from ..core.ledger import Transaction

TRANSACTION_COLUMNS = [
    "id", "timestamp", "type", "currency", "pair", "side", "amount",
    "price", "total", "order_id", "address", "status", "tx_hash",
]


def _cell(v: Any):
    if v is None:
        return ""
    return getattr(v, "value", v)


class TransactionLogger:
    """Append-only CSV journal of ledger transactions and portfolio snapshots."""

    def __init__(self, transactions_path: str = "logs/transactions.csv", equity_path: str = "logs/equity.csv"):
        self.transactions_path = Path(transactions_path)
        self.equity_path = Path(equity_path)
        self.transactions_path.parent.mkdir(parents=True, exist_ok=True)
        self.equity_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_header(self.transactions_path, TRANSACTION_COLUMNS)
        self._ensure_header(self.equity_path, ["ts", "total_value", "total_pnl", "total_pnl_percent"])

    @staticmethod
    def _ensure_header(path: Path, columns):
        if not path.exists() or path.stat().st_size == 0:
            with path.open("w", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(columns)

    def log_transaction(self, tx: Transaction):
        with self.transactions_path.open("a", newline="", encoding="utf-8") as f:
            w = csv.writer(f)
            w.writerow([_cell(getattr(tx, col)) for col in TRANSACTION_COLUMNS])

    def log_equity(self, summary: Dict[str, Any]):
        with self.equity_path.open("a", newline="", encoding="utf-8") as f:
            w = csv.writer(f)
            w.writerow([
                time.time(),
                summary.get("total_value", ""),
                summary.get("total_pnl", ""),
                summary.get("total_pnl_percent", ""),
            ])
