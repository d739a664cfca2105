"""Chain and exchange reference data."""

from typing import Final

ZERO_ADDRESS: Final[str] = "0x0000000000000000000000000000000000000000"

# Block explorers (account pages are built on top of these)
EXPLORERS: Final[dict[str, str]] = {
    "aptos": "https://explorer.aptoslabs.com",
    "solana": "https://solscan.io",
    "sui": "https://suiscan.com",
    "ethereum": "https://etherscan.io",
    "bitcoin": "https://mempool.space",
    "tezos": "https://tzstats.com",
    "flow": "https://flowdiver.io",
    "flow_evm": "https://flowdiver.io/evm",
    "sei": "https://www.seiscan.app",
    "polygon": "https://polygonscan.com",
    "arbitrum": "https://arbiscan.io",
    "arbitrum_one": "https://arbiscan.io",
    "arbitrum_nova": "https://nova.arbiscan.io",
    "optimism": "https://optimistic.etherscan.io",
    "base": "https://basescan.org",
    "avalanche": "https://snowtrace.io",
    "canto": "https://cantoscan.com",
    "fantom": "https://ftmscan.com",
    "blast": "https://blastscan.io",
    "bsc": "https://bscscan.com",
    "moonbeam": "https://moonbeam.moonscan.io",
    "abstract": "https://abstract.explorers.guru",
    "apechain": "https://apechain.explorers.guru",
    "b3": "https://b3.explorers.guru",
    "forma": "https://forma.explorers.guru",
    "proof_of_play": "https://proofofplay.explorers.guru",
    "proof_of_play_boss": "https://proofofplayboss.explorers.guru",
    "rari": "https://rari.explorers.guru",
    "soneium": "https://soneium.explorers.guru",
    "saakuru": "https://explorer.saakuru.network",
    "shape": "https://explorer.shape.network",
    "palm": "https://explorer.palm.io",
    "cyber": "https://explorer.cyber.co",
    "mantle": "https://explorer.mantle.xyz",
    "scroll": "https://scrollscan.com",
    "zora": "https://explorer.zora.energy",
    "gnosis": "https://gnosisscan.io",
    "godwoken": "https://v1.gwscan.com",
    "immutable_zkevm": "https://explorer.immutable.com",
    "linea": "https://lineascan.build",
    "loot": "https://explorer.lootchain.com",
    "manta": "https://pacific-explorer.manta.network",
    "mode": "https://explorer.mode.network",
    "opbnb": "https://opbnbscan.com",
    "polygon_zkevm": "https://zkevm.polygonscan.com",
    "treasure": "https://explorer.treasure.lol",
    "xai": "https://explorer.xai.games",
    "zksync_era": "https://explorer.zksync.io",
    "kraken": "https://www.kraken.com/u/funding",
    "gemini": "https://exchange.gemini.com/balances",
}

# SimpleHash chain name -> EVM chain id
EVM_CHAIN_IDS: Final[dict[str, int]] = {
    "ethereum": 1,
    "polygon": 137,
    "arbitrum": 42161,
    "optimism": 10,
    "base": 8453,
    "avalanche": 43114,
    "bsc": 56,
    "zora": 7777777,
    "blast": 81457,
}

# Every chain name served by the shared EVM handler, including the non-EVM
# names (bitcoin, tezos, flow, sei). Balances on chains missing from
# EVM_CHAIN_IDS are skipped by the parsers.
EVM_CHAINS: Final[tuple[str, ...]] = (
    "ethereum",
    "bitcoin",
    "tezos",
    "flow",
    "flow_evm",
    "sei",
    "polygon",
    "arbitrum",
    "arbitrum_one",
    "optimism",
    "base",
    "arbitrum_nova",
    "avalanche",
    "canto",
    "fantom",
    "blast",
    "bsc",
    "moonbeam",
    "abstract",
    "apechain",
    "b3",
    "forma",
    "proof_of_play",
    "proof_of_play_boss",
    "rari",
    "soneium",
    "saakuru",
    "shape",
    "palm",
    "cyber",
    "mantle",
    "scroll",
    "zora",
    "gnosis",
    "godwoken",
    "immutable_zkevm",
    "linea",
    "loot",
    "manta",
    "mode",
    "opbnb",
    "polygon_zkevm",
    "treasure",
    "xai",
    "zksync_era",
)

EXCHANGES: Final[tuple[str, ...]] = ("kraken", "gemini")

# Short names users type -> registry name
CHAIN_ALIASES: Final[dict[str, str]] = {
    "eth": "ethereum",
    "sol": "solana",
    "apt": "aptos",
    "matic": "polygon",
    "arb": "arbitrum",
    "op": "optimism",
    "avax": "avalanche",
    "bnb": "bsc",
    "binance": "bsc",
    "ftm": "fantom",
}

# Known decimals for exchange-held assets
TOKEN_DECIMALS: Final[dict[str, int]] = {
    "BTC": 8,
    "ETH": 18,
    "SOL": 9,
    "APT": 8,
    "USDC": 6,
    "USDT": 6,
    "USD": 2,
    "EUR": 2,
}
DEFAULT_EXCHANGE_DECIMALS: Final[int] = 8

STABLECOINS: Final[frozenset[str]] = frozenset({"USDC", "USDT", "USD", "DAI"})
