"""
FastAPI REST API Module

Provides REST API endpoints for the deposit bank, its credit ledger, the
development accounts that use them, and audit queries. Runs on port 8090.

Callers name the address they act as in each request, the way an unlocked
development node accepts transactions from its own accounts. Amounts travel
as decimal strings of the smallest unit.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from fastapi import FastAPI, HTTPException, Depends, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from .bank import DepositBank, Investor
from .chain import Chain
from .clock import ManualClock, SystemClock
from .config import BankConfig, get_config
from .deploy import deploy
from .errors import LedgerError, Unauthorized
from .logging_config import setup_logging, log_action
from .storage import create_storage
from .token import CreditLedger
from .units import format_ether, parse_amount


logger = logging.getLogger(__name__)

AMOUNT_PATTERN = r"^[0-9]+$"


# Pydantic models for API requests
class CreateAccountRequest(BaseModel):
    balance: str = Field("0", pattern=AMOUNT_PATTERN, description="Initial balance in wei")


class DepositRequest(BaseModel):
    sender: str = Field(..., min_length=1)
    value: str = Field(..., pattern=AMOUNT_PATTERN, description="Attached value in wei")


class WithdrawRequest(BaseModel):
    sender: str = Field(..., min_length=1)


class TokenTransferRequest(BaseModel):
    sender: str = Field(..., min_length=1)
    to: str = Field(..., min_length=1)
    amount: str = Field(..., pattern=AMOUNT_PATTERN)


class TokenTransferFromRequest(BaseModel):
    sender: str = Field(..., min_length=1)
    owner: str = Field(..., min_length=1)
    to: str = Field(..., min_length=1)
    amount: str = Field(..., pattern=AMOUNT_PATTERN)


class TokenApproveRequest(BaseModel):
    sender: str = Field(..., min_length=1)
    spender: str = Field(..., min_length=1)
    amount: str = Field(..., pattern=AMOUNT_PATTERN)


class MintRequest(BaseModel):
    sender: str = Field(..., min_length=1)
    to: str = Field(..., min_length=1)
    amount: str = Field(..., pattern=AMOUNT_PATTERN)


class PassMinterRoleRequest(BaseModel):
    sender: str = Field(..., min_length=1)
    new_minter: str = Field(..., min_length=1)


class AdvanceClockRequest(BaseModel):
    seconds: int = Field(..., ge=0)


# Bank System Context
class BankSystem:
    """Chain, credit ledger and bank, wired together from configuration"""

    DEPLOYMENTS_TABLE = "deployments"
    DEPLOYMENT_ID = "default"

    def __init__(self, config: Optional[BankConfig] = None):
        self.config = config or get_config()

        self.storage = create_storage(self.config.database_url)
        if self.config.clock == "manual":
            self.clock = ManualClock(self.config.clock_start)
        else:
            self.clock = SystemClock()
        self.chain = Chain(self.storage, self.clock)

        record = self.storage.load(self.DEPLOYMENTS_TABLE, self.DEPLOYMENT_ID)
        if record:
            # Reuse contracts persisted by an earlier run
            self.credit_ledger = CreditLedger.at(self.chain, record['credit_ledger'])
            self.bank = DepositBank.at(self.chain, record['bank'])
            self.deployer = record['deployer']
            self.dev_accounts: List[str] = record['dev_accounts']
            logger.info("Attached to bank %s", self.bank.address)
        else:
            self._bootstrap()

    def _bootstrap(self) -> None:
        self.dev_accounts = [
            self.chain.create_account(self.config.dev_account_balance)
            for _ in range(self.config.dev_account_count)
        ]
        # The first development account deploys, like accounts[0] on a dev node
        self.deployer = self.dev_accounts[0] if self.dev_accounts else self.chain.create_account()

        deployment = deploy(
            self.chain,
            self.deployer,
            yearly_return_rate=self.config.yearly_return_rate,
            token_name=self.config.token_name,
            token_symbol=self.config.token_symbol
        )
        self.credit_ledger = deployment.credit_ledger
        self.bank = deployment.bank

        self.storage.save(self.DEPLOYMENTS_TABLE, self.DEPLOYMENT_ID, {
            'credit_ledger': self.credit_ledger.address,
            'bank': self.bank.address,
            'deployer': self.deployer,
            'dev_accounts': self.dev_accounts
        })

    def close(self) -> None:
        self.storage.close()


# Global bank system instance, built on first use
bank_system: Optional[BankSystem] = None


# Create FastAPI app
app = FastAPI(
    title="BBSE Bank API",
    description="Interest-bearing deposit bank paying interest in credit tokens",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependency to get bank system
def get_bank_system() -> BankSystem:
    global bank_system
    if bank_system is None:
        bank_system = BankSystem()
    return bank_system


def _to_http_error(error: LedgerError) -> HTTPException:
    if isinstance(error, Unauthorized):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error.reason)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.reason)


def _investor_to_dict(investor: Investor) -> dict:
    return {
        "address": investor.address,
        "has_active_deposit": investor.has_active_deposit,
        "amount": str(investor.amount),
        "start_time": investor.start_time
    }


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


# Account Endpoints
@app.post("/accounts", status_code=status.HTTP_201_CREATED)
async def create_account(
    request: CreateAccountRequest,
    system: BankSystem = Depends(get_bank_system)
):
    """Create a new development account"""
    address = system.chain.create_account(parse_amount(request.balance))
    return {"address": address, "balance": request.balance, "message": "Account created successfully"}


@app.get("/accounts")
async def list_accounts(system: BankSystem = Depends(get_bank_system)):
    """List the development accounts funded at startup"""
    return {"accounts": system.dev_accounts, "deployer": system.deployer}


@app.get("/accounts/{address}")
async def get_account(
    address: str,
    system: BankSystem = Depends(get_bank_system)
):
    """Get native balance, credit balance and deposit of an address"""
    balance = system.chain.get_balance(address)
    return {
        "address": address,
        "balance": str(balance),
        "balance_display": format_ether(balance),
        "credit_balance": str(system.credit_ledger.balance_of(address)),
        "deposit": _investor_to_dict(system.bank.investors(address))
    }


# Bank Endpoints
@app.get("/bank")
async def get_bank(system: BankSystem = Depends(get_bank_system)):
    """Get bank configuration and custodial balance"""
    summary = system.bank.get_summary()
    summary["custodial_balance"] = str(summary["custodial_balance"])
    return summary


@app.get("/bank/investors/{address}")
async def get_investor(
    address: str,
    system: BankSystem = Depends(get_bank_system)
):
    """Get the deposit record of an address and the interest accrued so far"""
    result = _investor_to_dict(system.bank.investors(address))
    result["accrued_interest"] = str(system.bank.accrued_interest(address))
    return result


@app.post("/bank/deposit")
async def deposit(
    request: DepositRequest,
    system: BankSystem = Depends(get_bank_system)
):
    """Deposit native currency with the bank"""
    try:
        investor = system.bank.deposit(request.sender, parse_amount(request.value))
    except LedgerError as e:
        log_action(logger, "info", f"Deposit rejected: {e.reason}",
                   caller=request.sender, action="deposit", contract=system.bank.address)
        raise _to_http_error(e)

    return {"message": "Deposit accepted", "deposit": _investor_to_dict(investor)}


@app.post("/bank/withdraw")
async def withdraw(
    request: WithdrawRequest,
    system: BankSystem = Depends(get_bank_system)
):
    """Withdraw principal and receive interest as credit"""
    try:
        receipt = system.bank.withdraw(request.sender)
    except LedgerError as e:
        log_action(logger, "info", f"Withdrawal rejected: {e.reason}",
                   caller=request.sender, action="withdraw", contract=system.bank.address)
        raise _to_http_error(e)

    return {
        "message": "Withdrawal completed",
        "principal": str(receipt.principal),
        "interest": str(receipt.interest),
        "elapsed_seconds": receipt.elapsed_seconds
    }


# Credit Token Endpoints
@app.get("/token")
async def get_token(system: BankSystem = Depends(get_bank_system)):
    """Get credit token metadata, supply and current minter"""
    summary = system.credit_ledger.get_summary()
    summary["total_supply"] = str(summary["total_supply"])
    return summary


@app.get("/token/balances/{address}")
async def get_token_balance(
    address: str,
    system: BankSystem = Depends(get_bank_system)
):
    """Get the credit balance of an address"""
    return {"address": address, "balance": str(system.credit_ledger.balance_of(address))}


@app.get("/token/allowances/{owner}/{spender}")
async def get_token_allowance(
    owner: str,
    spender: str,
    system: BankSystem = Depends(get_bank_system)
):
    """Get how much spender may move out of owner's balance"""
    return {
        "owner": owner,
        "spender": spender,
        "amount": str(system.credit_ledger.allowance(owner, spender))
    }


@app.post("/token/transfer")
async def transfer_credit(
    request: TokenTransferRequest,
    system: BankSystem = Depends(get_bank_system)
):
    """Transfer credit to another address"""
    try:
        system.credit_ledger.transfer(request.sender, request.to, parse_amount(request.amount))
    except LedgerError as e:
        raise _to_http_error(e)
    return {"message": "Transfer completed"}


@app.post("/token/approve")
async def approve_credit(
    request: TokenApproveRequest,
    system: BankSystem = Depends(get_bank_system)
):
    """Allow another address to spend the sender's credit"""
    try:
        system.credit_ledger.approve(request.sender, request.spender, parse_amount(request.amount))
    except LedgerError as e:
        raise _to_http_error(e)
    return {"message": "Approval recorded"}


@app.post("/token/transfer-from")
async def transfer_credit_from(
    request: TokenTransferFromRequest,
    system: BankSystem = Depends(get_bank_system)
):
    """Spend an allowance on another address's credit"""
    try:
        system.credit_ledger.transfer_from(
            request.sender, request.owner, request.to, parse_amount(request.amount)
        )
    except LedgerError as e:
        raise _to_http_error(e)
    return {"message": "Transfer completed"}


@app.post("/token/mint")
async def mint_credit(
    request: MintRequest,
    system: BankSystem = Depends(get_bank_system)
):
    """Mint credit; only the current minter may call this"""
    try:
        new_balance = system.credit_ledger.mint(request.sender, request.to, parse_amount(request.amount))
    except LedgerError as e:
        log_action(logger, "warning", f"Mint rejected: {e.reason}",
                   caller=request.sender, action="mint", contract=system.credit_ledger.address)
        raise _to_http_error(e)
    return {"message": "Mint completed", "balance": str(new_balance)}


@app.post("/token/minter")
async def pass_minter_role(
    request: PassMinterRoleRequest,
    system: BankSystem = Depends(get_bank_system)
):
    """Hand the minter role to another address"""
    try:
        system.credit_ledger.pass_minter_role(request.sender, request.new_minter)
    except LedgerError as e:
        log_action(logger, "warning", f"Minter hand-off rejected: {e.reason}",
                   caller=request.sender, action="pass_minter_role",
                   contract=system.credit_ledger.address)
        raise _to_http_error(e)
    return {"message": "Minter role passed", "minter": request.new_minter}


# Audit Endpoints
@app.get("/audit/events")
async def get_audit_events(
    limit: Optional[int] = Query(None, ge=1),
    system: BankSystem = Depends(get_bank_system)
):
    """Get audit events in chain order"""
    events = system.chain.audit_trail.get_all_events(limit=limit)

    result = []
    for event in events:
        result.append({
            "id": event.id,
            "sequence": event.sequence,
            "event_type": event.event_type.value,
            "entity_type": event.entity_type,
            "entity_id": event.entity_id,
            "user_id": event.user_id,
            "metadata": event.metadata,
            "created_at": event.created_at.isoformat(),
            "hash": event.current_hash
        })

    return {"events": result}


@app.get("/audit/integrity")
async def verify_audit_integrity(system: BankSystem = Depends(get_bank_system)):
    """Verify audit trail integrity"""
    return system.chain.audit_trail.verify_integrity()


# Admin Endpoints
@app.post("/admin/clock/advance")
async def advance_clock(
    request: AdvanceClockRequest,
    system: BankSystem = Depends(get_bank_system)
):
    """Move the manual clock forward to let interest accrue"""
    if not isinstance(system.clock, ManualClock):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT,
                            detail="Clock is not manual")
    return {"timestamp": system.clock.advance(request.seconds)}


# System Information
@app.get("/")
async def root():
    """Root endpoint with system information"""
    return {
        "system": "BBSE Bank",
        "version": "1.0.0",
        "description": "Interest-bearing deposit bank paying interest in credit tokens",
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "accounts": "/accounts",
            "bank": "/bank",
            "token": "/token",
            "audit": "/audit"
        }
    }


# Run server function
def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, config.log_format)
    uvicorn.run(
        "bbse_bank.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
