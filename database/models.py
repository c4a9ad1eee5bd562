"""
Database Schema
===============
All tables in the bot's SQLite database.

- wallets: one row per user (address, encrypted key, trading config)
- positions: tracked token holdings with their cost basis
- auto_sell_triggers: one-shot sell rules per user
- dca_campaigns: scheduled recurring buys
- trades: every transaction we submitted (the audit trail)

Raw SQL, no ORM. Child tables are rewritten as a whole when a wallet
record is saved, so their row order is the record's list order.
"""

CREATE_TABLES_SQL = """

-- =============================================
-- One wallet per chat user
-- =============================================
CREATE TABLE IF NOT EXISTS wallets (
    user_id TEXT PRIMARY KEY,               -- Telegram user id (as text)
    address TEXT NOT NULL,                  -- Public EVM address (checksummed)
    encrypted_key TEXT NOT NULL,            -- AES-GCM "nonce:tag:ciphertext" hex
    auto_buy INTEGER DEFAULT 0,             -- Buy automatically when a token address is pasted
    slippage INTEGER DEFAULT 10,            -- Whole percent, 1-50
    default_buy_amount TEXT DEFAULT '0.1',  -- MON, decimal string
    auto_sell_enabled INTEGER DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- =============================================
-- Tracked positions (balance is always read live)
-- =============================================
CREATE TABLE IF NOT EXISTS positions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    seq INTEGER NOT NULL,                   -- Acquisition order
    token_address TEXT NOT NULL,
    buy_price TEXT NOT NULL,                -- MON per token at first buy
    buy_time INTEGER NOT NULL,              -- Epoch ms of first buy
    UNIQUE (user_id, token_address),
    FOREIGN KEY (user_id) REFERENCES wallets(user_id)
);

-- =============================================
-- Auto-sell rules (removed once fired)
-- =============================================
CREATE TABLE IF NOT EXISTS auto_sell_triggers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    seq INTEGER NOT NULL,
    trigger_type TEXT NOT NULL,             -- marketcap / profit / loss / time
    value TEXT NOT NULL,                    -- Decimal string (ms for time)
    percentage INTEGER NOT NULL,            -- 1-100 of the live balance
    FOREIGN KEY (user_id) REFERENCES wallets(user_id)
);

-- =============================================
-- DCA campaigns
-- =============================================
CREATE TABLE IF NOT EXISTS dca_campaigns (
    id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    seq INTEGER NOT NULL,
    token_address TEXT NOT NULL,
    amount_per_buy TEXT NOT NULL,           -- MON per execution
    interval_minutes INTEGER NOT NULL,
    max_executions INTEGER NOT NULL,
    executed_count INTEGER DEFAULT 0,
    active INTEGER DEFAULT 1,
    next_execution_at INTEGER NOT NULL,     -- Epoch ms
    PRIMARY KEY (user_id, id),
    FOREIGN KEY (user_id) REFERENCES wallets(user_id)
);

-- =============================================
-- Every transaction we submitted
-- =============================================
CREATE TABLE IF NOT EXISTS trades (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    token_address TEXT NOT NULL,
    side TEXT NOT NULL,                     -- "buy" or "sell"
    venue TEXT,                             -- CURVE or DEX
    amount_in TEXT,                         -- wei (native for buys, token units for sells)
    min_out TEXT,                           -- wei floor sent to the router
    percentage INTEGER,                     -- sells only
    reason TEXT,                            -- manual / auto_buy / dca / auto_sell_<type>
    tx_hash TEXT,
    status TEXT DEFAULT 'pending',          -- pending / confirmed / reverted / timeout / failed
    error_message TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    confirmed_at TIMESTAMP
);

-- =============================================
-- Indexes
-- =============================================
CREATE INDEX IF NOT EXISTS idx_positions_user ON positions(user_id, seq);
CREATE INDEX IF NOT EXISTS idx_triggers_user ON auto_sell_triggers(user_id, seq);
CREATE INDEX IF NOT EXISTS idx_campaigns_user ON dca_campaigns(user_id, seq);
CREATE INDEX IF NOT EXISTS idx_trades_user ON trades(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_trades_tx ON trades(tx_hash);
"""
