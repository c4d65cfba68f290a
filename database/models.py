"""
Database Schema
===============
Defines all the tables in the swarm's SQLite database.

The swarm's filing system:
- positions: Every position the executor ever opened (OPEN until closed)
- scanned_tokens: Every token the hunter scored, with its latest verdict
- narratives: The current market narratives (replaced wholesale each scan)
- trade_history: Every swap we attempted, success or failure (audit trail)

We use raw SQL (not an ORM) to keep things simple and fast.
All timestamps are epoch milliseconds (INTEGER).
"""

CREATE_TABLES_SQL = """

-- =============================================
-- Positions opened by the executor
-- =============================================
CREATE TABLE IF NOT EXISTS positions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,

    token_address TEXT NOT NULL,           -- Token mint address
    symbol TEXT NOT NULL,

    entry_price REAL NOT NULL,             -- USD price when we bought
    entry_sol REAL NOT NULL,               -- SOL spent on entry
    token_amount REAL NOT NULL,            -- Tokens received (UI units)
    token_decimals INTEGER DEFAULT 6,

    current_price REAL,                    -- Last price seen by the price updater
    pnl_pct REAL DEFAULT 0,                -- (current - entry) / entry * 100

    status TEXT DEFAULT 'OPEN',            -- OPEN, CLOSED, STOPPED, TP_HIT
    entry_tx TEXT,
    exit_tx TEXT,
    exit_price REAL,                       -- SOL per token realized on the exit swap
    entry_time INTEGER NOT NULL,
    exit_time INTEGER,

    score REAL,                            -- Hunter score at entry (0 for manual)
    narrative TEXT                         -- Matched narrative ("Manual" for manual buys)
);

-- =============================================
-- Tokens the hunter has scored
-- =============================================
CREATE TABLE IF NOT EXISTS scanned_tokens (
    address TEXT PRIMARY KEY,
    symbol TEXT,
    score REAL,
    signal TEXT,                           -- BUY, WATCH, SKIP, RISKY
    reasoning TEXT,
    narrative TEXT,
    mcap REAL,
    liquidity REAL,
    first_seen INTEGER,
    last_seen INTEGER,
    times_seen INTEGER DEFAULT 1
);

-- =============================================
-- Current market narratives
-- =============================================
CREATE TABLE IF NOT EXISTS narratives (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    score REAL,
    trend TEXT,                            -- rising, stable, falling
    tokens TEXT,                           -- JSON list of symbols
    updated_at INTEGER
);

-- =============================================
-- Every attempted swap (append-only)
-- =============================================
CREATE TABLE IF NOT EXISTS trade_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token_address TEXT NOT NULL,
    symbol TEXT,
    side TEXT NOT NULL,                    -- BUY or SELL
    sol_amount REAL,
    token_amount REAL,
    price REAL,
    tx_hash TEXT,
    success INTEGER NOT NULL,              -- 1 or 0
    error TEXT,
    timestamp INTEGER NOT NULL
);

-- =============================================
-- Indexes for faster queries
-- =============================================
CREATE INDEX IF NOT EXISTS idx_positions_status ON positions(status);
CREATE INDEX IF NOT EXISTS idx_positions_token ON positions(token_address);
CREATE INDEX IF NOT EXISTS idx_scanned_score ON scanned_tokens(score);
CREATE INDEX IF NOT EXISTS idx_trade_history_ts ON trade_history(timestamp);
"""
