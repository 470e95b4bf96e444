CHAIN_ID_BERACHAIN = 80094
CHAIN_ID_BEPOLIA = 80069

CHAIN_CODE_TO_ID = {
    "berachain": CHAIN_ID_BERACHAIN,
    "bera": CHAIN_ID_BERACHAIN,
    "bepolia": CHAIN_ID_BEPOLIA,
}

CHAIN_ID_TO_CODE: dict[int, str] = {
    v: k for k, v in CHAIN_CODE_TO_ID.items() if k != "bera"
}

DEFAULT_RPC_URLS: dict[int, str] = {
    CHAIN_ID_BERACHAIN: "https://rpc.berachain.com",
    CHAIN_ID_BEPOLIA: "https://bepolia.rpc.berachain.com",
}

GECKO_NETWORK_BY_CHAIN_ID: dict[int, str] = {
    CHAIN_ID_BERACHAIN: "berachain",
}
