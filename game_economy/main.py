# game_economy/main.py
from contextlib import asynccontextmanager
import logging
from typing import Any, Dict, Literal, Optional, Union

from fastapi import Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, StrictFloat, StrictInt

from game_economy.auth import current_user_id
from game_economy.db import connect_to_mongo, close_mongo_connection
from game_economy.errors import EconomyError
from game_economy.settings import settings

# services
from game_economy.services import banking, player_state, starter_bonus, stocks
from game_economy.services.mappers import map_document, map_documents, map_player_state
from game_economy.services.sync import sync_user

logger = logging.getLogger("game_economy")

VERSION = "1.0.0"

# ---------------- helpers & models ----------------

# strict: "100" or true are not amounts
Number = Union[StrictInt, StrictFloat]


def ok(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return body


class RupeesReq(BaseModel):
    rupees: Number
    operation: Literal["set", "add", "subtract"] = "set"

class PositionReq(BaseModel):
    x: Number
    y: Number
    scene: str = "main"

class SettingsReq(BaseModel):
    soundEnabled: Optional[bool] = None
    musicEnabled: Optional[bool] = None
    autoSave: Optional[bool] = None

class CreateBankAccountReq(BaseModel):
    accountHolder: str
    initialDeposit: Number = 0

class AmountReq(BaseModel):
    amount: Number

class CreateFixedDepositReq(BaseModel):
    amount: Number
    duration: Number  # days

class BuyStockReq(BaseModel):
    stockId: str
    stockName: str
    quantity: Number
    price: Number

class SellStockReq(BaseModel):
    stockId: str
    quantity: Number
    price: Number

class HealthResponse(BaseModel):
    status: str
    env: str
    version: str
    db_connected: bool

# ---------------- lifespan ----------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.state.mongodb = await connect_to_mongo()
    logger.info("Connected to Mongo database %s (%s)", settings.mongodb_db, settings.app_env)
    try:
        yield
    finally:
        await close_mongo_connection()

app = FastAPI(
    title="Game Economy",
    version=VERSION,
    lifespan=lifespan,
)


def get_db(request: Request):
    return request.app.state.mongodb

# ---------------- errors ----------------

@app.exception_handler(EconomyError)
async def economy_error_handler(request: Request, exc: EconomyError):
    return JSONResponse({"success": False, "error": exc.message}, status_code=exc.status_code)

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = ", ".join(".".join(str(p) for p in e.get("loc", ())[1:]) for e in exc.errors())
    return JSONResponse(
        {"success": False, "error": "Invalid request parameters", "message": fields or None},
        status_code=400,
    )

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"success": False, "error": "Internal server error"}, status_code=500)

# ---------------- health ----------------

@app.get("/healthz", response_model=HealthResponse)
async def healthz(request: Request):
    try:
        await request.app.state.mongodb.command("ping")
        db_ok = True
    except Exception as e:
        logger.warning("Mongo health ping failed: %r", e)
        db_ok = False
    return HealthResponse(
        status="ok",
        env=settings.app_env,
        version=VERSION,
        db_connected=db_ok,
    )

# ---------------- player state ----------------

@app.get("/game/player-state")
async def get_player_state(user_id: str = Depends(current_user_id), db=Depends(get_db)):
    state = await player_state.get_or_create(db, user_id)
    return ok(map_player_state(state))

@app.put("/game/player-state")
async def put_player_state(
    body: Dict[str, Any] = Body(...),
    user_id: str = Depends(current_user_id),
    db=Depends(get_db),
):
    state = await player_state.update_player_state(db, user_id, body)
    return ok(map_player_state(state), "Player state updated")

@app.put("/game/player-state/rupees")
async def put_rupees(req: RupeesReq, user_id: str = Depends(current_user_id), db=Depends(get_db)):
    rupees = await player_state.update_rupees(db, user_id, req.rupees, req.operation)
    return ok({"rupees": rupees})

@app.put("/game/player-state/position")
async def put_position(req: PositionReq, user_id: str = Depends(current_user_id), db=Depends(get_db)):
    position = await player_state.update_position(db, user_id, req.x, req.y, req.scene)
    return ok(position)

@app.put("/game/player-state/settings")
async def put_settings(req: SettingsReq, user_id: str = Depends(current_user_id), db=Depends(get_db)):
    new_settings = await player_state.update_settings(db, user_id, **req.model_dump(exclude_none=True))
    return ok(new_settings)

@app.get("/game/player-state/starter-status")
async def starter_status(user_id: str = Depends(current_user_id), db=Depends(get_db)):
    return ok(await player_state.get_starter_status(db, user_id))

@app.post("/game/player-state/claim-starter")
async def claim_starter(user_id: str = Depends(current_user_id), db=Depends(get_db)):
    result = await starter_bonus.grant_starter_bonus(db, user_id)
    message = "Starter money claimed" if result["newlyGranted"] else "Starter money already claimed"
    return ok(result, message)

# ---------------- banking ----------------

@app.post("/game/bank-account/create")
async def create_bank_account(req: CreateBankAccountReq, user_id: str = Depends(current_user_id), db=Depends(get_db)):
    account = await banking.create_bank_account(db, user_id, req.accountHolder, req.initialDeposit)
    suffix = f" with initial deposit of ₹{req.initialDeposit}" if req.initialDeposit > 0 else ""
    return ok(map_document(account), f"Bank account created successfully{suffix}")

@app.get("/game/bank-account")
async def get_bank_account(user_id: str = Depends(current_user_id), db=Depends(get_db)):
    return ok(map_document(await banking.get_bank_account(db, user_id)))

@app.post("/game/bank-account/deposit")
async def deposit(req: AmountReq, user_id: str = Depends(current_user_id), db=Depends(get_db)):
    account = await banking.deposit(db, user_id, req.amount)
    return ok(
        {"account": map_document(account), "transaction": map_document(account["transactions"][-1])},
        f"Successfully deposited ₹{req.amount}",
    )

@app.post("/game/bank-account/withdraw")
async def withdraw(req: AmountReq, user_id: str = Depends(current_user_id), db=Depends(get_db)):
    account = await banking.withdraw(db, user_id, req.amount)
    return ok(
        {"account": map_document(account), "transaction": map_document(account["transactions"][-1])},
        f"Successfully withdrew ₹{req.amount}",
    )

# ---------------- fixed deposits ----------------

@app.get("/game/fixed-deposits")
async def get_fixed_deposits(user_id: str = Depends(current_user_id), db=Depends(get_db)):
    return ok(map_documents(await banking.list_fixed_deposits(db, user_id)))

@app.post("/game/fixed-deposits")
async def create_fixed_deposit(req: CreateFixedDepositReq, user_id: str = Depends(current_user_id), db=Depends(get_db)):
    fd = await banking.create_fixed_deposit(db, user_id, req.amount, req.duration)
    return ok(map_document(fd), "Fixed deposit created successfully")

@app.post("/game/fixed-deposits/{deposit_id}/claim")
async def claim_fixed_deposit(deposit_id: str, user_id: str = Depends(current_user_id), db=Depends(get_db)):
    payout = await banking.claim_fixed_deposit(db, user_id, deposit_id)
    return ok(payout, "Fixed deposit claimed successfully")

# ---------------- stocks ----------------

@app.get("/game/stock-portfolio")
async def get_stock_portfolio(user_id: str = Depends(current_user_id), db=Depends(get_db)):
    return ok(map_document(await stocks.get_portfolio(db, user_id)))

@app.get("/game/stock-transactions")
async def get_stock_transactions(user_id: str = Depends(current_user_id), db=Depends(get_db)):
    return ok(map_documents(await stocks.list_stock_transactions(db, user_id)))

@app.post("/game/stock-portfolio/buy")
async def buy_stock(req: BuyStockReq, user_id: str = Depends(current_user_id), db=Depends(get_db)):
    result = await stocks.buy_stock(db, user_id, req.stockId, req.stockName, req.quantity, req.price)
    return ok(
        {
            "transaction": map_document(result["transaction"]),
            "totalCost": result["totalCost"],
            "holding": map_document(result["holding"]),
        },
        f"Successfully purchased {req.quantity} shares of {req.stockName}",
    )

@app.post("/game/stock-portfolio/sell")
async def sell_stock(req: SellStockReq, user_id: str = Depends(current_user_id), db=Depends(get_db)):
    result = await stocks.sell_stock(db, user_id, req.stockId, req.quantity, req.price)
    txn = result["transaction"]
    return ok(
        {
            "transaction": map_document(txn),
            "saleValue": result["saleValue"],
            "profit": result["profit"],
            "profitPercent": result["profitPercent"],
            "holding": map_document(result["holding"]),
        },
        f"Successfully sold {req.quantity} shares of {txn['stockName']}",
    )

# ---------------- sync ----------------

@app.get("/game/sync")
async def sync(user_id: str = Depends(current_user_id), db=Depends(get_db)):
    return ok(await sync_user(db, user_id))
