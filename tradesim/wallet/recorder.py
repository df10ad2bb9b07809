import asyncio
import re
import secrets
from typing import Any, Dict, List, Optional

from loguru import logger

from ..core.errors import InsufficientBalanceError, ValidationError
from ..core.order import require_positive
from ..core.ledger import OrderLedger, Transaction, TransactionType

SUPPORTED_CURRENCIES = [
    {"symbol": "BTC", "name": "Bitcoin", "decimals": 8},
    {"symbol": "ETH", "name": "Ethereum", "decimals": 18},
    {"symbol": "ADA", "name": "Cardano", "decimals": 6},
    {"symbol": "SOL", "name": "Solana", "decimals": 9},
    {"symbol": "BNB", "name": "Binance Coin", "decimals": 18},
    {"symbol": "USDT", "name": "Tether", "decimals": 6},
]

ADDRESS_PREFIXES = {"BTC": "1", "ETH": "0x", "ADA": "addr1", "SOL": "", "BNB": "bnb", "USDT": "0x"}

ADDRESS_PATTERNS = {
    "BTC": re.compile(r"^[13][a-km-zA-HJ-NP-Z1-9]{25,34}$"),
    "ETH": re.compile(r"^0x[a-fA-F0-9]{40}$"),
    "ADA": re.compile(r"^addr1[a-z0-9]{98}$"),
    "SOL": re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$"),
    "BNB": re.compile(r"^bnb[a-z0-9]{39}$"),
    "USDT": re.compile(r"^0x[a-fA-F0-9]{40}$"),
}


class WalletRecorder:
    """Deposits and withdrawals against the ledger, plus the transaction history view.

    The delays model settlement latency only; each balance change happens in a
    single synchronous block after the delay.
    """

    def __init__(self, ledger: OrderLedger, deposit_delay_ms: int = 2000, withdraw_delay_ms: int = 3000):
        self.ledger = ledger
        self.deposit_delay_sec = deposit_delay_ms / 1000.0
        self.withdraw_delay_sec = withdraw_delay_ms / 1000.0
        self.addresses: Dict[str, str] = {}

    def get_balance(self) -> Dict[str, float]:
        return self.ledger.get_balances()

    async def deposit(self, currency: str, amount: float, address: Optional[str] = None) -> Transaction:
        amount = require_positive(amount, "amount")
        if not currency:
            raise ValidationError("currency is required")
        logger.info(f"Processing deposit: {amount} {currency}")
        await asyncio.sleep(self.deposit_delay_sec)
        self.ledger.credit(currency, amount)
        tx = self.ledger.append_transaction(
            TransactionType.DEPOSIT,
            amount,
            currency=currency,
            address=address or self.get_deposit_address(currency),
            tx_hash=self._mock_hash(),
        )
        logger.info(f"Deposit completed: {amount} {currency} (tx {tx.id})")
        return tx

    async def withdraw(self, currency: str, amount: float, address: str) -> Transaction:
        amount = require_positive(amount, "amount")
        if not address:
            raise ValidationError("withdrawal address is required")
        available = self.ledger.get_balance(currency)
        if available < amount:
            logger.warning(f"Withdrawal rejected: {amount} {currency} > {available}")
            raise InsufficientBalanceError(currency, amount, available)
        logger.info(f"Processing withdrawal: {amount} {currency} to {address}")
        await asyncio.sleep(self.withdraw_delay_sec)
        # balance may have moved while we slept; debit re-checks
        self.ledger.debit(currency, amount)
        tx = self.ledger.append_transaction(
            TransactionType.WITHDRAWAL,
            amount,
            currency=currency,
            address=address,
            tx_hash=self._mock_hash(),
        )
        logger.info(f"Withdrawal completed: {amount} {currency} (tx {tx.id})")
        return tx

    # ---- history ----
    def get_transaction_history(self, limit: int = 50) -> List[Transaction]:
        return self.ledger.get_transactions(limit)

    def get_transaction(self, tx_id: int) -> Optional[Transaction]:
        for tx in self.ledger.transactions:
            if tx.id == tx_id:
                return tx
        return None

    def get_transactions_by_type(self, tx_type: str) -> List[Transaction]:
        tx_type = TransactionType(tx_type)
        return [tx for tx in self.ledger.transactions if tx.type == tx_type]

    def get_transactions_by_currency(self, currency: str) -> List[Transaction]:
        return [tx for tx in self.ledger.transactions if tx.currency == currency]

    def get_wallet_stats(self) -> Dict[str, Any]:
        # whole log: trades share it, so the 50-entry history view can hide deposits
        history = self.ledger.transactions
        return {
            "total_deposits": sum(t.amount for t in history if t.type == TransactionType.DEPOSIT),
            "total_withdrawals": sum(t.amount for t in history if t.type == TransactionType.WITHDRAWAL),
            "total_transactions": len(history),
            "balance": self.get_balance(),
            "last_transaction": history[0] if history else None,
        }

    # ---- addresses ----
    def generate_deposit_address(self, currency: str) -> str:
        address = ADDRESS_PREFIXES.get(currency, "") + secrets.token_hex(10)
        self.addresses[currency] = address
        logger.info(f"Generated deposit address for {currency}: {address}")
        return address

    def get_deposit_address(self, currency: str) -> str:
        return self.addresses.get(currency) or self.generate_deposit_address(currency)

    @staticmethod
    def validate_address(currency: str, address: str) -> bool:
        pattern = ADDRESS_PATTERNS.get(currency)
        return bool(pattern.match(address)) if pattern else True

    @staticmethod
    def get_supported_currencies() -> List[Dict[str, Any]]:
        return [dict(c) for c in SUPPORTED_CURRENCIES]

    @staticmethod
    def _mock_hash() -> str:
        return "0x" + secrets.token_hex(32)
