# game_economy/mongo_collections.py

PLAYER_STATES = "playerStates"
BANK_ACCOUNTS = "bankAccounts"
FIXED_DEPOSITS = "fixedDeposits"
STOCK_PORTFOLIOS = "stockPortfolios"
STOCK_TRANSACTIONS = "stockTransactions"

# Notes:
# - Every doc is keyed by userId (string from the auth service), one owner per doc.
# - playerStates / bankAccounts / stockPortfolios hold exactly one doc per user.
# - stockTransactions is append-only; fixedDeposits are never deleted.
