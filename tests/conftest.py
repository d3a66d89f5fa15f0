"""Pytest fixtures for testing"""

import json
import pytest
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from loan_monitor.api.main import create_app
from loan_monitor.domain.exceptions import ExchangeAPIError
from loan_monitor.domain.loan_metrics import LoanMonitor
from loan_monitor.domain.models import Balance, TradeResult, TransferResult
from loan_monitor.domain.obligations import ObligationRegistry
from loan_monitor.domain.planner import RepaymentPlanner
from loan_monitor.infrastructure.database.models import Base
from loan_monitor.infrastructure.database.session import get_db
from loan_monitor.runner.scheduler import RepaymentScheduler


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeMarket:
    """In-memory market: fixed prices, one fiat balance, scripted failures"""

    def __init__(self, fiat_balance: float = 0.0, dry_run: bool = True):
        self.dry_run = dry_run
        self.fiat_currency = "ZAR"
        self.funding_account = "funding-account"
        self.fiat_balance = fiat_balance
        self.prices = {"BTC": 1_000_000.0, "ETH": 50_000.0, "USDT": 18.0}
        self.principal_balances: List[Balance] = []
        self.fail_buy: set = set()
        self.fail_transfer: set = set()
        self.balance_error = False
        self.history_error = False
        self.transaction_history: List[Dict[str, Any]] = []
        self.history_requests: List[tuple] = []
        self.trades: List[tuple] = []
        self.transfers: List[tuple] = []

    async def get_price(self, currency: str) -> float:
        if currency == self.fiat_currency:
            return 1.0
        if currency not in self.prices:
            raise ExchangeAPIError(f"VALR API error: 404 unknown pair {currency}{self.fiat_currency}")
        return self.prices[currency]

    async def buy_with_fiat(self, currency: str, fiat_amount: float) -> TradeResult:
        if currency in self.fail_buy:
            return TradeResult(success=False, error="VALR API error: 400 insufficient liquidity")
        price = await self.get_price(currency)
        self.trades.append((currency, fiat_amount))
        return TradeResult(
            success=True,
            crypto_received=fiat_amount / price,
            fiat_spent=fiat_amount,
            price=price,
            order_id=f"order-{len(self.trades)}",
        )

    async def transfer_to_recipient(self, currency, amount, from_account, recipient) -> TransferResult:
        return self._transfer(currency, amount, from_account, recipient.value)

    async def transfer_between_accounts(self, currency, amount, from_account, to_account) -> TransferResult:
        return self._transfer(currency, amount, from_account, to_account)

    def _transfer(self, currency, amount, from_account, destination) -> TransferResult:
        if currency in self.fail_transfer:
            return TransferResult(success=False, error="VALR API error: 400 recipient not found")
        self.transfers.append((currency, amount, from_account, destination))
        return TransferResult(success=True, transfer_id=f"transfer-{len(self.transfers)}")

    async def get_all_balances(self, account: str | None = None, exclude_zero: bool = True) -> List[Balance]:
        if self.balance_error:
            raise ExchangeAPIError("VALR API timeout after 10.0s")
        if account is None or account == self.funding_account:
            return [Balance(self.fiat_currency, self.fiat_balance, self.fiat_balance)]
        return list(self.principal_balances)

    async def get_transaction_history(self, account: str, since: datetime | None = None) -> List[Dict[str, Any]]:
        self.history_requests.append((account, since))
        if self.history_error:
            raise ExchangeAPIError("VALR API timeout after 10.0s")
        return list(self.transaction_history)

    async def get_balance(self, currency: str, account: str | None = None) -> float:
        for balance in await self.get_all_balances(account, exclude_zero=False):
            if balance.currency == currency:
                return balance.available
        return 0.0


def _loan_entry(**overrides: Any) -> Dict[str, Any]:
    """One loan in the obligations document format"""
    entry = {
        "id": "loan-1",
        "name": "Aunt Thandi",
        "principal": 12000,
        "currency": "ZAR",
        "recipient": {"type": "email", "value": "thandi@example.com"},
        "interestRate": 0.12,
        "startDate": "2024-01-01T00:00:00Z",
        "cryptoPreference": "USDT",
        "active": True,
        "notes": "Car deposit",
    }
    entry.update(overrides)
    return entry


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def write_obligations(tmp_path: Path) -> Callable[..., Path]:
    """Write an obligations document and return its path"""

    def _write(loans: List[Dict[str, Any]], version: Any = "1.0", name: str = "obligations.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps({"version": version, "loans": loans}), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_loan() -> Callable[..., Dict[str, Any]]:
    return _loan_entry


@pytest.fixture
def obligations_file(write_obligations) -> Path:
    return write_obligations([_loan_entry()])


@pytest.fixture
def registry(obligations_file: Path) -> ObligationRegistry:
    return ObligationRegistry(obligations_file)


@pytest.fixture
def fake_market() -> FakeMarket:
    market = FakeMarket(fiat_balance=500.0)
    market.principal_balances = [
        Balance("BTC", -0.01, -0.01),
        Balance("ETH", -0.5, -0.5),
        Balance("USDT", 5000.0, 5000.0),
    ]
    return market


@pytest.fixture
def loan_monitor(fake_market: FakeMarket) -> LoanMonitor:
    return LoanMonitor(fake_market, principal_account="principal-account")


@pytest.fixture
def planner(fake_market: FakeMarket, registry: ObligationRegistry) -> RepaymentPlanner:
    return RepaymentPlanner(fake_market, registry, minimum_reserve=50.0)


@pytest.fixture
def session_factory(db) -> sessionmaker:
    """Sessions on the test database, for code that opens its own"""
    return TestingSessionLocal


@pytest.fixture
def scheduler(session_factory, fake_market, registry, loan_monitor, planner) -> RepaymentScheduler:
    return RepaymentScheduler(session_factory, fake_market, registry, loan_monitor, planner)


@pytest.fixture
def client(db: Session, scheduler: RepaymentScheduler) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app(scheduler=scheduler)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def interest_transactions() -> List[Dict[str, Any]]:
    """Exchange interest charges: ETH carries the higher hourly rate"""
    return [
        {
            "id": "tx-btc-1",
            "transactionType": {"type": "MARGIN_INTEREST_CHARGE", "description": "Margin interest"},
            "debitCurrency": "BTC",
            "debitValue": "0.000002",
            "eventAt": "2024-06-01T10:00:00Z",
            "additionalInfo": {"hourlyRate": "0.00001"},
        },
        {
            "id": "tx-eth-1",
            "transactionType": {"type": "MARGIN_INTEREST_CHARGE", "description": "Margin interest"},
            "debitCurrency": "ETH",
            "debitValue": "0.0001",
            "eventAt": "2024-06-01T11:00:00Z",
            "additionalInfo": {"hourlyRate": "0.00002"},
        },
        {
            "id": "tx-eth-2",
            "transactionType": {"type": "MARGIN_INTEREST_CHARGE", "description": "Margin interest"},
            "debitCurrency": "ETH",
            "debitValue": "0.0001",
            "eventAt": "2024-06-01T12:00:00Z",
            "additionalInfo": {"hourlyRate": "0.00002"},
        },
    ]
