"""
sql_queries.py
--------------

SQL statements used by the DuckDB ledger store.

Big integers (liquidity, amounts, quote values, sqrtPriceX96) are stored as
VARCHAR to keep uint256 values exact. Timestamps are epoch milliseconds.
Input-hash uniqueness is checked by the store rather than an index, since a
sync deletes and re-inserts the same rows inside one transaction.
"""

# =====================================================================
# Schema
# =====================================================================

CREATE_LEDGER_EVENTS = """
CREATE TABLE IF NOT EXISTS ledger_events (
    id VARCHAR NOT NULL,
    position_id VARCHAR NOT NULL,
    previous_id VARCHAR,
    chain_id INTEGER NOT NULL,
    nft_id VARCHAR NOT NULL,
    block_number BIGINT NOT NULL,
    tx_index INTEGER NOT NULL,
    log_index INTEGER NOT NULL,
    tx_hash VARCHAR NOT NULL,
    timestamp_ms BIGINT NOT NULL,
    event_type VARCHAR NOT NULL,
    delta_liquidity VARCHAR NOT NULL,
    liquidity_after VARCHAR NOT NULL,
    delta_cost_basis VARCHAR NOT NULL,
    cost_basis_after VARCHAR NOT NULL,
    delta_pnl VARCHAR NOT NULL,
    pnl_after VARCHAR NOT NULL,
    uncollected_principal0_after VARCHAR NOT NULL,
    uncollected_principal1_after VARCHAR NOT NULL,
    fees_collected0 VARCHAR NOT NULL,
    fees_collected1 VARCHAR NOT NULL,
    token0_amount VARCHAR NOT NULL,
    token1_amount VARCHAR NOT NULL,
    token_value VARCHAR NOT NULL,
    sqrt_price_x96 VARCHAR NOT NULL,
    pool_price VARCHAR NOT NULL,
    rewards VARCHAR NOT NULL,
    state VARCHAR NOT NULL,
    input_hash VARCHAR NOT NULL
)
"""

CREATE_SYNC_STATES = """
CREATE TABLE IF NOT EXISTS sync_states (
    position_id VARCHAR NOT NULL,
    state VARCHAR NOT NULL,
    last_sync_at_ms BIGINT,
    last_sync_by VARCHAR
)
"""

CREATE_APR_PERIODS = """
CREATE TABLE IF NOT EXISTS apr_periods (
    position_id VARCHAR NOT NULL,
    start_event_id VARCHAR NOT NULL,
    end_event_id VARCHAR NOT NULL,
    start_timestamp_ms BIGINT NOT NULL,
    end_timestamp_ms BIGINT NOT NULL,
    duration_seconds BIGINT NOT NULL,
    cost_basis VARCHAR NOT NULL,
    collected_fee_value VARCHAR NOT NULL,
    apr_bps BIGINT NOT NULL,
    event_count INTEGER NOT NULL
)
"""

SCHEMA = (CREATE_LEDGER_EVENTS, CREATE_SYNC_STATES, CREATE_APR_PERIODS)


# =====================================================================
# Ledger events
# =====================================================================

LEDGER_COLUMNS = (
    "id",
    "position_id",
    "previous_id",
    "chain_id",
    "nft_id",
    "block_number",
    "tx_index",
    "log_index",
    "tx_hash",
    "timestamp_ms",
    "event_type",
    "delta_liquidity",
    "liquidity_after",
    "delta_cost_basis",
    "cost_basis_after",
    "delta_pnl",
    "pnl_after",
    "uncollected_principal0_after",
    "uncollected_principal1_after",
    "fees_collected0",
    "fees_collected1",
    "token0_amount",
    "token1_amount",
    "token_value",
    "sqrt_price_x96",
    "pool_price",
    "rewards",
    "state",
    "input_hash",
)

_LEDGER_SELECT = f"SELECT {', '.join(LEDGER_COLUMNS)} FROM ledger_events"

INSERT_LEDGER_EVENT = (
    f"INSERT INTO ledger_events ({', '.join(LEDGER_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in LEDGER_COLUMNS)})"
)

COUNT_INPUT_HASH = "SELECT COUNT(*) FROM ledger_events WHERE position_id = ? AND input_hash = ?"

SELECT_EVENTS_FROM_BLOCK = (
    f"{_LEDGER_SELECT} WHERE position_id = ? AND block_number >= ? "
    "ORDER BY block_number, tx_index, log_index"
)

DELETE_EVENTS_FROM_BLOCK = "DELETE FROM ledger_events WHERE position_id = ? AND block_number >= ?"

SELECT_LAST_EVENT = (
    f"{_LEDGER_SELECT} WHERE position_id = ? "
    "ORDER BY block_number DESC, tx_index DESC, log_index DESC LIMIT 1"
)

SELECT_ALL_EVENTS = (
    f"{_LEDGER_SELECT} WHERE position_id = ? ORDER BY block_number, tx_index, log_index"
)


# =====================================================================
# Sync state
# =====================================================================

SELECT_SYNC_STATE = "SELECT state, last_sync_at_ms, last_sync_by FROM sync_states WHERE position_id = ?"

DELETE_SYNC_STATE = "DELETE FROM sync_states WHERE position_id = ?"

INSERT_SYNC_STATE = (
    "INSERT INTO sync_states (position_id, state, last_sync_at_ms, last_sync_by) VALUES (?, ?, ?, ?)"
)


# =====================================================================
# APR periods
# =====================================================================

APR_COLUMNS = (
    "position_id",
    "start_event_id",
    "end_event_id",
    "start_timestamp_ms",
    "end_timestamp_ms",
    "duration_seconds",
    "cost_basis",
    "collected_fee_value",
    "apr_bps",
    "event_count",
)

DELETE_APR_PERIODS = "DELETE FROM apr_periods WHERE position_id = ?"

INSERT_APR_PERIOD = (
    f"INSERT INTO apr_periods ({', '.join(APR_COLUMNS)}) VALUES ({', '.join('?' for _ in APR_COLUMNS)})"
)

SELECT_APR_PERIODS = (
    f"SELECT {', '.join(APR_COLUMNS)} FROM apr_periods WHERE position_id = ? "
    "ORDER BY start_timestamp_ms DESC"
)


# =====================================================================
# Analysis
# =====================================================================

LEDGER_FRAME = """
SELECT
    block_number,
    tx_index,
    log_index,
    epoch_ms(timestamp_ms) AS timestamp,
    event_type,
    liquidity_after,
    cost_basis_after,
    pnl_after,
    token_value,
    fees_collected0,
    fees_collected1
FROM ledger_events
WHERE position_id = ?
ORDER BY block_number, tx_index, log_index
"""
