"""Contract addresses and minimal ABIs used by the autonomy loop (Base mainnet)."""

BASE_CHAIN_ID = 8453
BASE_RPC_URL = "https://mainnet.base.org"

UPSKILL_TOKEN = "0xccaee0bf50E5790243c1D58F3682765709edEB07"
WETH = "0x4200000000000000000000000000000000000006"
FEE_LOCKER = "0xF3622742b1E446D92e45E22923Ef11C2fcD55D68"
CHAINLINK_ETH_USD = "0x71041dddad3595F9CEd3DcCFBe3D1F4b0a16Bb70"

TOKEN_DECIMALS = 18
COMMERCE_POOL_FEE_TIER = 500  # 0.05% Uniswap V3 pool

ERC20_ABI = [
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

FEE_LOCKER_ABI = [
    {
        "inputs": [
            {"name": "feeOwner", "type": "address"},
            {"name": "token", "type": "address"},
        ],
        "name": "feesToClaim",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "feeOwner", "type": "address"},
            {"name": "token", "type": "address"},
        ],
        "name": "claim",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

CHAINLINK_PRICE_FEED_ABI = [
    {
        "inputs": [],
        "name": "latestRoundData",
        "outputs": [
            {"name": "roundId", "type": "uint80"},
            {"name": "answer", "type": "int256"},
            {"name": "startedAt", "type": "uint256"},
            {"name": "updatedAt", "type": "uint256"},
            {"name": "answeredInRound", "type": "uint80"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
]

COMMERCE_ABI = [
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "uint256", "name": "recipientAmount", "type": "uint256"},
                    {"internalType": "uint256", "name": "deadline", "type": "uint256"},
                    {"internalType": "address payable", "name": "recipient", "type": "address"},
                    {"internalType": "address", "name": "recipientCurrency", "type": "address"},
                    {"internalType": "address", "name": "refundDestination", "type": "address"},
                    {"internalType": "uint256", "name": "feeAmount", "type": "uint256"},
                    {"internalType": "bytes16", "name": "id", "type": "bytes16"},
                    {"internalType": "address", "name": "operator", "type": "address"},
                    {"internalType": "bytes", "name": "signature", "type": "bytes"},
                    {"internalType": "bytes", "name": "prefix", "type": "bytes"},
                ],
                "internalType": "struct TransferIntent",
                "name": "_intent",
                "type": "tuple",
            },
            {"internalType": "uint24", "name": "poolFeesTier", "type": "uint24"},
        ],
        "name": "swapAndTransferUniswapV3Native",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
]
