"""Shared constants for the Beaver triple toolkit.

All share arithmetic runs in GF(p) with the Mersenne prime p = 2^61 - 1.
"""

FIELD_PRIME: int = 2**61 - 1  # 2^61 - 1, fits in a machine word
FIELD_BYTES: int = 8

# 按最低参与方编号指定加常数项的一方 / lowest party index adds public constants
DESIGNATED_PARTY: int = 1

# 可信分发方在模拟网络中的编号 / network id of the trusted dealer
DEALER_ID: int = 0

DEFAULT_ROUND_TIMEOUT: float = 5.0
RECEIVE_POLL_INTERVAL: float = 0.05

# 每个参与方记住的已关闭会话标签数 / closed conversation tags remembered per participant
CLOSED_TAG_HISTORY: int = 256

# 可信分发方最多同时保留的未交付三元组数 / undelivered triples a dealer may hold
DEALER_MAX_PENDING: int = 16

SCHEME_SHAMIR: str = "shamir"
SCHEME_ADDITIVE: str = "additive"

# Default lattice parameters for the threshold homomorphic scheme
HE_DIMENSION: int = 16
HE_MODULUS_BITS: int = 640
HE_ERROR_BOUND: int = 8
HE_SMUDGING_BITS: int = 40
