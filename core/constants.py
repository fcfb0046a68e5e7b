"""
Protocol constants for the ZKUSD Protocol model.

All token amounts are integers scaled by DECIMAL_PRECISION, so 1 ZKUSD is
represented as 10**18.
"""

# Fixed-point precision
DECIMAL_PRECISION = 10**18
ONE = DECIMAL_PRECISION

# Stability Pool product renormalisation
SCALE_FACTOR = 10**9  # P is multiplied back up by this when it would drop below it

# Collateral parameters
MCR = 11 * DECIMAL_PRECISION // 10  # 110% - Minimum Collateral Ratio for individual troves
PERCENT_DIVISOR = 200  # 0.5% of trove collateral paid as collateral gas compensation

# Debt parameters
GAS_COMPENSATION = 200 * DECIMAL_PRECISION  # ZKUSD reserved in every trove for the liquidator
MIN_NET_DEBT = 1800 * DECIMAL_PRECISION  # Smallest debt a borrower may draw

# Persistence
SNAPSHOT_VERSION = 1
